"""End-to-end scheduler scenarios against in-memory collaborators."""

import threading

import pytest

from artimport.catalog import CatalogError
from artimport.images import ImageFetchError
from artimport.jobs import (
    ItemResult,
    JobStatus,
    PauseReason,
    cancel_job,
    create_job,
    pause_job,
    resume_job,
)
from artimport.jobs.models import CANCELLED_MESSAGE
from artimport.pipeline import FILTER_CHECKPOINT_KEY, EnrichmentPipeline, ItemOutcome, JobInitializer
from artimport.ratelimit import MET, SHOPIFY, RateGovernor, RateLimitExceeded
from artimport.scheduler import JobProcessor
from artimport.storefront import PublishError

from conftest import (
    BudgetedCatalog,
    FakeCatalog,
    FakeDescriber,
    FakePublisher,
    FakeWallClock,
    make_record,
)


class Harness:
    def __init__(self, store, fake_images, ids=range(1, 11), search_results=None):
        self.store = store
        self.images = fake_images
        self.catalog = FakeCatalog(
            {i: make_record(i) for i in ids},
            search_results=search_results if search_results is not None else [list(ids)],
        )
        self.publisher = FakePublisher()
        self.wall = FakeWallClock()
        self.sleeps = []
        self.pipeline = EnrichmentPipeline(
            self.catalog, self.images, FakeDescriber(), self.publisher, published=store
        )
        self.processor = JobProcessor(
            store,
            JobInitializer(self.catalog),
            self.pipeline,
            item_delay=0.5,
            error_backoff=10,
            now=self.wall,
            sleep=self.sleeps.append,
        )

    def submit(self, max_items=3, **query):
        return create_job(self.store, "category", query, {"max_items": max_items})

    def drain(self, limit=20):
        for _ in range(limit):
            if not self.processor.run_once():
                return
        raise AssertionError("processor did not go idle")


@pytest.fixture
def harness(store, fake_images):
    return Harness(store, fake_images)


def test_job_runs_to_completion(harness):
    job = harness.submit(max_items=3, keywords="van gogh")

    assert harness.processor.run_once()
    initialized = harness.store.get(job.job_id)
    assert initialized.status == JobStatus.INITIALIZED
    assert initialized.object_ids == [1, 2, 3]
    assert initialized.total_objects == 3

    assert harness.processor.run_once()
    done = harness.store.get(job.job_id)
    assert done.status == JobStatus.COMPLETED
    assert done.progress == 100
    assert done.processed_ids == [1, 2, 3]
    assert done.completed_at == harness.wall.now
    assert [r.publish_ref for r in done.results] == [f"gid://shopify/Product/{i}" for i in (1, 2, 3)]
    assert harness.publisher.published == [1, 2, 3]
    assert harness.sleeps == [0.5, 0.5, 0.5]

    assert not harness.processor.run_once()


def test_publish_failure_still_counts_as_processed(harness):
    harness.publisher.errors[2] = PublishError("Shopify API error 422")
    job = harness.submit(max_items=3)
    harness.drain()

    done = harness.store.get(job.job_id)
    assert done.status == JobStatus.COMPLETED
    assert done.progress == 100
    failed_publish = next(r for r in done.results if r.object_id == 2)
    assert failed_publish.processed
    assert failed_publish.publish_ref is None
    assert failed_publish.error.startswith("Shopify upload failed")


def test_item_failure_is_recorded_and_loop_continues(harness):
    harness.images.errors[2] = ImageFetchError("HTTP 500")
    job = harness.submit(max_items=3)
    harness.drain()

    done = harness.store.get(job.job_id)
    assert done.status == JobStatus.COMPLETED
    assert done.processed_ids == [1, 3]
    assert done.failed_ids == [2]
    assert done.progress == 67
    assert any(r.object_id == 2 and r.error == "HTTP 500" for r in done.results)


def test_ineligible_items_are_skipped(harness):
    harness.catalog.records[2]["isPublicDomain"] = False
    del harness.catalog.records[3]
    job = harness.submit(max_items=3)
    harness.drain()

    done = harness.store.get(job.job_id)
    assert done.status == JobStatus.COMPLETED
    assert done.processed_ids == [1]
    assert done.skipped_ids == [2, 3]
    assert done.failed_ids == []


def test_zero_results_fall_back_to_broad_search(store, fake_images):
    harness = Harness(store, fake_images, search_results=[[], [7, 8, 9, 10]])
    job = harness.submit(max_items=2, keywords="nothing matches this")

    harness.processor.run_once()
    initialized = harness.store.get(job.job_id)
    assert initialized.object_ids == [7, 8]
    assert harness.catalog.searches[1].q == "*"


def test_empty_job_completes_immediately(store, fake_images):
    harness = Harness(store, fake_images, search_results=[[], []])
    job = harness.submit()
    harness.drain()

    done = harness.store.get(job.job_id)
    assert done.status == JobStatus.COMPLETED
    assert done.total_objects == 0
    assert done.progress == 0


def test_rate_limit_pauses_and_resumes_after_wait(harness):
    harness.publisher.errors[2] = [RateLimitExceeded(SHOPIFY, 30)]
    job = harness.submit(max_items=3)
    start = harness.wall.now
    harness.drain()

    paused = harness.store.get(job.job_id)
    assert paused.status == JobStatus.PAUSED
    assert paused.pause_reason == PauseReason.RATE_LIMIT
    assert (paused.resume_after - start).total_seconds() == 30
    assert paused.processed_ids == [1]
    assert 2 not in paused.attempted_ids()

    # Not due yet: neither the scheduler nor a manual resume picks it up
    harness.wall.advance(10)
    assert not harness.processor.run_once()
    assert resume_job(harness.store, job.job_id, now=harness.wall.now).status == JobStatus.PAUSED

    harness.wall.advance(20)
    assert harness.processor.run_once()
    done = harness.store.get(job.job_id)
    assert done.status == JobStatus.COMPLETED
    assert done.processed_ids == [1, 2, 3]
    assert done.pause_reason is None
    assert harness.publisher.published == [1, 2, 3]


def test_throttle_during_initialization_defers_job(store, fake_images):
    harness = Harness(store, fake_images, search_results=[RateLimitExceeded(MET, 45), [1, 2]])
    job = harness.submit(max_items=2)

    assert harness.processor.run_once()
    deferred = harness.store.get(job.job_id)
    assert deferred.status == JobStatus.PENDING
    assert deferred.object_ids == []
    assert not deferred.initialized

    harness.wall.advance(44)
    assert harness.processor.next_job() is None

    harness.wall.advance(1)
    harness.drain()
    done = harness.store.get(job.job_id)
    assert done.status == JobStatus.COMPLETED
    assert done.processed_ids == [1, 2]
    assert done.resume_after is None


def test_initialization_error_fails_job(store, fake_images):
    harness = Harness(store, fake_images, search_results=[CatalogError("Catalog search failed: HTTP 503")])
    job = harness.submit()
    harness.processor.run_once()

    failed = harness.store.get(job.job_id)
    assert failed.status == JobStatus.FAILED
    assert failed.error == "Catalog search failed: HTTP 503"
    assert failed.object_ids == []


def test_external_pause_is_respected_between_items(harness):
    job = harness.submit(max_items=3)
    harness.processor.run_once()

    original = harness.publisher.publish

    def pause_during_first(record, *args):
        if record["objectID"] == 1:
            pause_job(harness.store, job.job_id)
        return original(record, *args)

    harness.publisher.publish = pause_during_first
    harness.processor.run_once()

    paused = harness.store.get(job.job_id)
    assert paused.status == JobStatus.PAUSED
    assert paused.pause_reason == PauseReason.USER
    # The in-flight item's outcome is kept
    assert paused.processed_ids == [1]
    assert harness.publisher.published == [1]

    # A user pause is never picked up by the scheduler
    harness.wall.advance(3600)
    assert not harness.processor.run_once()

    resume_job(harness.store, job.job_id, now=harness.wall.now)
    harness.drain()
    assert harness.store.get(job.job_id).processed_ids == [1, 2, 3]


def test_external_cancel_is_never_overwritten(harness):
    job = harness.submit(max_items=3)
    harness.processor.run_once()

    original = harness.publisher.publish

    def cancel_during_first(record, *args):
        cancel_job(harness.store, job.job_id)
        return original(record, *args)

    harness.publisher.publish = cancel_during_first
    harness.processor.run_once()

    cancelled = harness.store.get(job.job_id)
    assert cancelled.status == JobStatus.FAILED
    assert cancelled.error == CANCELLED_MESSAGE
    assert cancelled.processed_ids == []
    assert harness.publisher.published == [1]
    assert not harness.processor.run_once()


def test_jobs_are_processed_oldest_first(harness):
    first = harness.submit(max_items=1)
    second = harness.submit(max_items=1)

    assert harness.processor.next_job().job_id == first.job_id
    harness.processor.run_once()
    harness.processor.run_once()
    assert harness.store.get(first.job_id).status == JobStatus.COMPLETED
    assert harness.store.get(second.job_id).status == JobStatus.PENDING


def test_already_published_objects_are_skipped(harness):
    first = harness.submit(max_items=2)
    harness.drain()
    assert harness.store.get(first.job_id).processed_ids == [1, 2]

    harness.catalog.search_results = [[1, 2, 3]]
    second = harness.submit(max_items=3)
    harness.drain()

    done = harness.store.get(second.job_id)
    assert done.skipped_ids == [1, 2]
    assert done.processed_ids == [3]
    assert harness.publisher.published == [1, 2, 3]


def test_unexpected_error_fails_job_and_backs_off(store, fake_images):
    class BrokenPipeline:
        def process(self, object_id, options):
            # An outcome for an id the job does not own cannot be recorded
            return ItemOutcome(999, result=ItemResult(object_id=999, processed=True))

    harness = Harness(store, fake_images)
    harness.processor = JobProcessor(
        store,
        JobInitializer(harness.catalog),
        BrokenPipeline(),
        error_backoff=10,
        now=harness.wall,
        sleep=harness.sleeps.append,
    )
    job = harness.submit(max_items=2)
    harness.processor.run_once()
    assert harness.processor.run_once()

    failed = harness.store.get(job.job_id)
    assert failed.status == JobStatus.FAILED
    assert "999" in failed.error
    assert harness.sleeps[-1] == 10
    assert not harness.processor.run_once()


def test_recover_interrupted_requeues_inflight_jobs(harness):
    job = harness.submit(max_items=3)
    harness.processor.run_once()
    stuck = harness.store.get(job.job_id)
    stuck.status = JobStatus.PROCESSING
    stuck.record_success(ItemResult(object_id=1, processed=True))
    harness.store.update(stuck)

    assert harness.processor.recover_interrupted() == 1
    assert harness.store.get(job.job_id).status == JobStatus.INITIALIZED

    harness.drain()
    done = harness.store.get(job.job_id)
    assert done.status == JobStatus.COMPLETED
    assert done.processed_ids == [1, 2, 3]


def test_start_and_stop_background_thread(harness):
    processor = JobProcessor(
        harness.store,
        JobInitializer(harness.catalog),
        harness.pipeline,
        poll_interval=0.01,
        now=harness.wall,
    )
    processor.start()
    processor.start()
    assert processor.is_running
    processor.stop(timeout=5)
    assert not processor.is_running


def test_initialization_under_catalog_budget_makes_progress(store, fake_images):
    ids = list(range(1, 151))
    harness = Harness(store, fake_images, ids=ids)
    governor = RateGovernor(clock=lambda: harness.wall.now.timestamp())
    catalog = BudgetedCatalog(governor, harness.catalog.records, search_results=[ids])
    harness.processor = JobProcessor(
        store,
        JobInitializer(catalog),
        harness.pipeline,
        now=harness.wall,
        sleep=harness.sleeps.append,
    )
    job = harness.submit(max_items=None, artwork_types=["Paintings"])

    assert harness.processor.run_once()
    deferred = store.get(job.job_id)
    assert deferred.status == JobStatus.PENDING
    assert deferred.metadata[FILTER_CHECKPOINT_KEY]["examined"] == 79

    harness.wall.advance(60)
    assert harness.processor.run_once()
    initialized = store.get(job.job_id)
    assert initialized.status == JobStatus.INITIALIZED
    assert initialized.object_ids == list(range(1, 101))
    assert FILTER_CHECKPOINT_KEY not in initialized.metadata
    assert len(catalog.searches) == 1
    assert catalog.detail_calls == list(range(1, 101))


def test_stop_requeues_job_after_current_item(harness):
    job = harness.submit(max_items=3)
    harness.processor.run_once()
    original = harness.publisher.publish

    def stop_during_first(record, *args):
        harness.processor.stop()
        return original(record, *args)

    harness.publisher.publish = stop_during_first
    harness.processor.run_once()

    stopped = harness.store.get(job.job_id)
    assert stopped.status == JobStatus.INITIALIZED
    assert stopped.processed_ids == [1]
    assert harness.publisher.published == [1]

    # A fresh processor (next start) continues where the stopped one left off
    harness.publisher.publish = original
    harness.processor = JobProcessor(
        harness.store,
        JobInitializer(harness.catalog),
        harness.pipeline,
        now=harness.wall,
        sleep=harness.sleeps.append,
    )
    harness.drain()
    done = harness.store.get(job.job_id)
    assert done.status == JobStatus.COMPLETED
    assert done.processed_ids == [1, 2, 3]
    assert harness.publisher.published == [1, 2, 3]


def test_stop_timeout_keeps_single_background_loop(harness):
    entered = threading.Event()
    release = threading.Event()
    original = harness.publisher.publish

    def slow_publish(record, *args):
        entered.set()
        release.wait(5)
        return original(record, *args)

    harness.publisher.publish = slow_publish
    processor = JobProcessor(
        harness.store,
        JobInitializer(harness.catalog),
        harness.pipeline,
        poll_interval=0.01,
        item_delay=0.01,
        now=harness.wall,
    )
    job = harness.submit(max_items=3)
    processor.start()
    assert entered.wait(5)

    processor.stop(timeout=0.05)
    # Still finishing item 1: reported as running, and a restart is refused
    assert processor.is_running
    processor.start()
    assert [t.name for t in threading.enumerate()].count("job-processor") == 1

    release.set()
    processor.stop(timeout=5)
    assert not processor.is_running

    stopped = harness.store.get(job.job_id)
    assert stopped.status == JobStatus.INITIALIZED
    assert stopped.processed_ids == [1]
    assert harness.publisher.published == [1]
