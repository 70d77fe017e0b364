"""Import job schema, status machine values and progress bookkeeping."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobSource(str, Enum):
    URL = "url"
    CATEGORY = "category"


class PauseReason(str, Enum):
    USER = "user"
    RATE_LIMIT = "rate_limit"
    ERROR = "error"


CANCELLED_MESSAGE = "Cancelled by user"


class JobQuery(BaseModel):
    """Search criteria. ``url`` jobs arrive with these fields already parsed."""

    url: str | None = None
    keywords: str = ""
    artwork_types: list[str] = Field(default_factory=list)
    time_periods: list[str] = Field(default_factory=list)
    department_ids: list[int] = Field(default_factory=list)
    date_begin: int | None = None
    date_end: int | None = None
    has_images: bool = True
    is_on_view: bool = False
    is_highlight: bool = False
    is_public_domain: bool = True
    # Post-hoc filters the search endpoint cannot express
    mediums: list[str] = Field(default_factory=list)
    regions: list[str] = Field(default_factory=list)


class JobOptions(BaseModel):
    max_items: int | None = Field(default=100, ge=1)  # None: no cap
    skip_shopify_upload: bool = False
    skip_existing: bool = True
    default_price: float = Field(default=99.99, ge=0)


class ItemResult(BaseModel):
    """Outcome of one attempted catalog object."""

    object_id: int
    title: str = ""
    artist: str = ""
    date: str = ""
    year: int | None = None
    image_url: str | None = None
    image_path: str | None = None
    raw_description: str = ""
    short_description: str = ""
    expanded_description: str = ""
    collections: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    publish_ref: str | None = None
    processed: bool = False
    error: str | None = None


class ImportJob(BaseModel):
    """Import job: the persisted unit of work and the only record of progress."""

    job_id: str = ""
    name: str = ""
    status: JobStatus = JobStatus.PENDING
    source: JobSource = JobSource.CATEGORY
    query: JobQuery = Field(default_factory=JobQuery)
    options: JobOptions = Field(default_factory=JobOptions)
    object_ids: list[int] = Field(default_factory=list)
    processed_ids: list[int] = Field(default_factory=list)
    failed_ids: list[int] = Field(default_factory=list)
    skipped_ids: list[int] = Field(default_factory=list)
    results: list[ItemResult] = Field(default_factory=list)
    progress: int = Field(default=0, ge=0, le=100)
    total_objects: int = 0
    initialized: bool = False
    pause_reason: PauseReason | None = None
    resume_after: datetime | None = None
    error: str | None = None
    version: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_due(self, now: datetime) -> bool:
        """True when no resume time is set or it has passed."""
        return self.resume_after is None or now >= self.resume_after

    def calculate_progress(self) -> int:
        return round(100 * len(self.processed_ids) / max(1, self.total_objects))

    def set_object_ids(self, object_ids: list[int]) -> None:
        """Write the candidate list once; later calls are rejected."""
        if self.initialized:
            raise ValueError(f"Job {self.job_id} already has its object ids")
        self.object_ids = list(object_ids)
        self.total_objects = len(self.object_ids)
        self.initialized = True
        self.progress = self.calculate_progress()

    def attempted_ids(self) -> set[int]:
        return set(self.processed_ids) | set(self.failed_ids) | set(self.skipped_ids)

    def next_object_id(self) -> int | None:
        """First candidate, in ``object_ids`` order, with no recorded outcome."""
        attempted = self.attempted_ids()
        for object_id in self.object_ids:
            if object_id not in attempted:
                return object_id
        return None

    def record_success(self, result: ItemResult) -> None:
        object_id = result.object_id
        if object_id not in self.object_ids:
            raise ValueError(f"Object {object_id} is not part of job {self.job_id}")
        if object_id in self.processed_ids:
            return
        self.results.append(result)
        self.processed_ids.append(object_id)
        self.progress = self.calculate_progress()

    def record_failure(self, object_id: int, error: str) -> None:
        if object_id in self.failed_ids:
            return
        self.failed_ids.append(object_id)
        self.results.append(ItemResult(object_id=object_id, processed=False, error=error))

    def record_skip(self, object_id: int) -> None:
        if object_id not in self.skipped_ids:
            self.skipped_ids.append(object_id)

    def pause(self, reason: PauseReason, resume_after: datetime | None = None) -> None:
        self.status = JobStatus.PAUSED
        self.pause_reason = reason
        self.resume_after = resume_after if reason == PauseReason.RATE_LIMIT else None

    def clear_pause(self) -> None:
        self.pause_reason = None
        self.resume_after = None

    def complete(self, now: datetime | None = None) -> None:
        self.status = JobStatus.COMPLETED
        self.clear_pause()
        self.completed_at = now or utcnow()

    def fail(self, error: str) -> None:
        self.status = JobStatus.FAILED
        self.clear_pause()
        self.error = error[:2000]
