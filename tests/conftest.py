"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from artimport.describe import ArtworkDescriptions, synthesize_descriptions
from artimport.jobs import FileJobStore
from artimport.ratelimit import MET, RateGovernor


def make_record(object_id: int, **overrides) -> dict:
    """A public-domain catalog record with an image, shaped like the Met API."""
    record = {
        "objectID": object_id,
        "isPublicDomain": True,
        "primaryImage": f"https://images.example.org/{object_id}.jpg",
        "title": f"Study No. {object_id}",
        "artistDisplayName": "Vincent van Gogh",
        "objectDate": "1889",
        "objectBeginDate": 1889,
        "medium": "Oil on canvas",
        "classification": "Paintings",
        "department": "European Paintings",
        "culture": "",
        "country": "",
        "creditLine": "Purchase, 1993",
        "objectDescription": "",
    }
    record.update(overrides)
    return record


class FakeClock:
    """Monotonic seconds clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeWallClock:
    """Timezone-aware wall clock for the scheduler."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeCatalog:
    """In-memory catalog: ``search`` answers from a queue, details from a dict."""

    def __init__(self, records: dict[int, dict] | None = None, search_results=None):
        self.records = records or {}
        self.search_results = list(search_results or [])
        self.searches = []
        self.detail_calls: list[int] = []
        self.errors: dict[int, Exception] = {}

    def search(self, criteria):
        self.searches.append(criteria)
        if self.search_results:
            result = self.search_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return list(result)
        return []

    def get_details(self, object_id):
        self.detail_calls.append(object_id)
        if object_id in self.errors:
            raise self.errors[object_id]
        return self.records.get(object_id)


class BudgetedCatalog(FakeCatalog):
    """FakeCatalog whose every request spends the MET budget of a real governor."""

    def __init__(self, governor, records=None, search_results=None):
        super().__init__(records, search_results)
        self._governor = governor

    def search(self, criteria):
        self._governor.check_budget(MET)
        return super().search(criteria)

    def get_details(self, object_id):
        self._governor.check_budget(MET)
        return super().get_details(object_id)


class FakeImages:
    def __init__(self, tmp_path: Path):
        self.dir = tmp_path / "images"
        self.dir.mkdir(parents=True, exist_ok=True)
        self.fetched: list[int] = []
        self.errors: dict[int, Exception] = {}

    def fetch_or_get_cached(self, url, object_id):
        if object_id in self.errors:
            raise self.errors[object_id]
        self.fetched.append(object_id)
        path = self.dir / f"{object_id}.jpg"
        path.write_bytes(b"\xff\xd8fake")
        return path


class FakeDescriber:
    def generate(self, record) -> ArtworkDescriptions:
        return synthesize_descriptions(record)


class FakePublisher:
    """Records publishes; ``errors`` maps object id → exception (or a list, consumed in order)."""

    def __init__(self):
        self.published: list[int] = []
        self.errors: dict[int, object] = {}

    def publish(self, record, descriptions, image_path, collections, tags, price):
        object_id = record["objectID"]
        error = self.errors.get(object_id)
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error
        self.published.append(object_id)
        return f"gid://shopify/Product/{object_id}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def governor(clock):
    return RateGovernor(clock=clock, sleep=clock.sleep)


@pytest.fixture
def store(tmp_path):
    return FileJobStore(tmp_path / "jobs")


@pytest.fixture
def fake_images(tmp_path):
    return FakeImages(tmp_path)
