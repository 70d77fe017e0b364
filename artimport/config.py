"""Configuration loaded from environment (.env) and defaults."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the project root .env file regardless of CWD
_THIS_DIR = Path(__file__).resolve().parent          # artimport/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM provider for descriptions: openai | anthropic
    artimport_llm_provider: str = "openai"

    # OpenAI
    openai_api_key: str | None = None
    artimport_openai_model: str = "gpt-4o-mini"

    # Anthropic
    anthropic_api_key: str | None = None
    artimport_anthropic_model: str = "claude-3-5-sonnet-20241022"

    # Data directory (job files, cached images)
    artimport_data_dir: str = "./data"

    # Postgres job store; file store under data dir when unset
    artimport_database_url: str | None = None

    # Museum catalog (public collection API v1)
    met_api_base: str = "https://collectionapi.metmuseum.org/public/collection/v1"
    met_request_timeout: float = 30.0

    # Storefront (Shopify Admin REST API)
    shopify_shop_name: str | None = None
    shopify_access_token: str | None = None
    shopify_api_version: str = "2024-10"

    # Engine timings, in seconds
    artimport_poll_interval: float = 5.0
    artimport_item_delay: float = 0.5
    artimport_error_backoff: float = 10.0

    # Rate budgets per external service
    met_requests_per_minute: int = 80
    openai_tokens_per_minute: int = 10000
    shopify_requests_per_second: int = 2
    usage_warning_ratio: float = 0.9

    # Post-hoc filtering during initialization
    filter_sample_size: int = 20
    filter_match_threshold: float = 0.3
    filter_max_candidates: int = 100

    @property
    def data_dir(self) -> Path:
        """Get data directory as Path.

        Relative paths are resolved against the project root (not CWD).
        """
        p = Path(self.artimport_data_dir)
        if not p.is_absolute():
            return (_PROJECT_ROOT / p).resolve()
        return p.resolve()

    @property
    def images_dir(self) -> Path:
        """Cached catalog images, one file per object id."""
        return self.data_dir / "images"

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "jobs"

    def ensure_dirs(self) -> None:
        """Ensure all data directories exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.images_dir.mkdir(parents=True, exist_ok=True)
        self.jobs_dir.mkdir(parents=True, exist_ok=True)


def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
