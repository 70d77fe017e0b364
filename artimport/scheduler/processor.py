"""Job processor: the single control loop that drives import jobs.

One iteration selects the oldest eligible job and advances it:

* ``pending`` → resolve the query into object ids (initialization);
* ``initialized`` → iterate the remaining ids through the enrichment pipeline;
* ``paused`` for a rate limit whose ``resume_after`` has passed → back to
  ``initialized`` and straight into the item loop.

Exactly one job and one item are active at a time, so the only shared state is
the stored record. Every write is a compare-and-set: when a pause or cancel
request lands between our read and our write, the record is re-read and our
change is re-applied only if the fresh status still allows it. External
``paused`` / ``failed`` statuses are never overwritten.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable

from artimport.jobs.models import ImportJob, JobStatus, PauseReason, utcnow
from artimport.jobs.store import JobConflictError, JobStore
from artimport.pipeline.enrichment import EnrichmentPipeline
from artimport.pipeline.initializer import JobInitializer
from artimport.ratelimit import RateLimitExceeded

logger = logging.getLogger(__name__)

Change = Callable[[ImportJob], None]
Guard = Callable[[ImportJob], bool]


def _not_terminal(job: ImportJob) -> bool:
    return not job.is_terminal


def _status_is(*statuses: JobStatus) -> Guard:
    return lambda job: job.status in statuses


class JobProcessor:
    def __init__(
        self,
        store: JobStore,
        initializer: JobInitializer,
        pipeline: EnrichmentPipeline,
        poll_interval: float = 5.0,
        item_delay: float = 0.5,
        error_backoff: float = 10.0,
        now: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], object] | None = None,
        max_write_attempts: int = 5,
    ):
        self._store = store
        self._initializer = initializer
        self._pipeline = pipeline
        self.poll_interval = poll_interval
        self.item_delay = item_delay
        self.error_backoff = error_backoff
        self._now = now
        self._stop_event = threading.Event()
        self._sleep = sleep or self._stop_event.wait
        self._max_write_attempts = max_write_attempts
        self._thread: threading.Thread | None = None
        self.current_job_id: str | None = None

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run the loop in a background thread (once per process)."""
        if self.is_running:
            logger.info("Job processor is already running")
            return
        logger.info("Starting job processor")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="job-processor", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Ask the loop to exit after the current item and wait for it.

        The running job is put back to ``initialized`` so the next start
        continues it. When ``timeout`` expires first the thread is kept, so
        ``is_running`` stays true and ``start`` cannot launch a second loop.
        """
        logger.info("Stopping job processor")
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout)
        if thread.is_alive():
            logger.warning("Job processor still finishing its current item")
        else:
            self._thread = None

    def run_forever(self) -> None:
        self.recover_interrupted()
        while not self._stop_event.is_set():
            try:
                acted = self.run_once()
            except Exception:
                logger.exception("Error in job processor")
                self._sleep(self.error_backoff)
                continue
            if not acted:
                self._sleep(self.poll_interval)

    def run_once(self) -> bool:
        """Advance at most one job. Returns False when nothing was eligible."""
        job = self.next_job()
        if job is None:
            return False

        self.current_job_id = job.job_id
        try:
            self._dispatch(job)
        except Exception as e:
            logger.exception("Job %s failed", job.job_id)
            self._fail(job.job_id, str(e) or type(e).__name__)
            self._sleep(self.error_backoff)
        finally:
            self.current_job_id = None
        return True

    def next_job(self) -> ImportJob | None:
        """Oldest job that is pending, initialized, or due after a rate-limit pause."""
        now = self._now()
        for job in self._store.list():  # oldest first
            if job.status == JobStatus.PENDING and job.is_due(now):
                return job
            if job.status == JobStatus.INITIALIZED:
                return job
            if (
                job.status == JobStatus.PAUSED
                and job.pause_reason == PauseReason.RATE_LIMIT
                and job.resume_after is not None
                and job.resume_after <= now
            ):
                return job
        return None

    def recover_interrupted(self) -> int:
        """Requeue jobs left mid-flight by a previous process.

        The item that was in progress is attempted again (at-least-once).
        """
        recovered = 0
        for job in self._store.list():
            if job.status == JobStatus.PROCESSING:
                target = JobStatus.INITIALIZED
            elif job.status == JobStatus.INITIALIZING:
                target = JobStatus.PENDING
            else:
                continue

            def requeue(j: ImportJob, target: JobStatus = target) -> None:
                j.status = target

            if self._write(job, requeue, _status_is(job.status)) is not None:
                logger.warning("Requeued interrupted job %s as %s", job.job_id, target.value)
                recovered += 1
        return recovered

    def _dispatch(self, job: ImportJob) -> None:
        if job.status == JobStatus.PENDING:
            self.initialize_job(job)
        elif job.status == JobStatus.INITIALIZED:
            self.process_job(job)
        elif job.status == JobStatus.PAUSED:
            resumed = self._write(job, self._resume, _status_is(JobStatus.PAUSED))
            if resumed is not None:
                logger.info("Resuming job %s after rate limit", job.job_id)
                self.process_job(resumed)

    @staticmethod
    def _resume(job: ImportJob) -> None:
        job.status = JobStatus.INITIALIZED
        job.clear_pause()

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize_job(self, job: ImportJob) -> ImportJob | None:
        logger.info("Initializing job %s: %s", job.job_id, job.name)

        def begin(j: ImportJob) -> None:
            j.status = JobStatus.INITIALIZING
            j.resume_after = None

        job = self._write(job, begin, _status_is(JobStatus.PENDING))
        if job is None:
            return None

        try:
            object_ids = self._initializer.resolve(job)
        except RateLimitExceeded as e:
            resume_at = self._now() + timedelta(seconds=e.retry_after)
            checkpoint = job.metadata

            def defer(j: ImportJob) -> None:
                j.status = JobStatus.PENDING
                j.resume_after = resume_at
                j.metadata = dict(checkpoint)

            logger.warning(
                "Initialization of job %s throttled by %s; retrying at %s",
                job.job_id,
                e.service,
                resume_at.isoformat(),
            )
            return self._write(job, defer, _status_is(JobStatus.INITIALIZING))
        except Exception as e:
            logger.error("Error initializing job %s: %s", job.job_id, e)
            return self._fail(job.job_id, str(e) or type(e).__name__)

        query = job.query
        metadata = job.metadata

        def initialized(j: ImportJob) -> None:
            j.query = query
            j.metadata = dict(metadata)
            j.set_object_ids(object_ids)
            j.status = JobStatus.INITIALIZED

        job = self._write(job, initialized, _status_is(JobStatus.INITIALIZING))
        if job is not None:
            logger.info("Job %s initialized with %d objects", job.job_id, job.total_objects)
        return job

    # ------------------------------------------------------------------
    # Item loop
    # ------------------------------------------------------------------

    def process_job(self, job: ImportJob) -> ImportJob | None:
        logger.info("Processing job %s: %s", job.job_id, job.name)

        def begin(j: ImportJob) -> None:
            j.status = JobStatus.PROCESSING

        job = self._write(job, begin, _status_is(JobStatus.INITIALIZED))

        while job is not None:
            # Pause/cancel requests take effect here, between items
            fresh = self._store.get(job.job_id)
            if fresh is None or fresh.status != JobStatus.PROCESSING:
                logger.info(
                    "Job %s is %s; leaving the item loop",
                    job.job_id,
                    fresh.status.value if fresh else "deleted",
                )
                return fresh
            job = fresh

            if self._stop_event.is_set():
                return self._requeue_on_stop(job)

            object_id = job.next_object_id()
            if object_id is None:
                return self._complete(job)

            done = len(job.attempted_ids()) + 1
            logger.info("Processing object %s (%d/%d)", object_id, done, len(job.object_ids))
            try:
                outcome = self._pipeline.process(object_id, job.options)
            except RateLimitExceeded as e:
                return self._pause_for_rate_limit(job, e)
            except Exception as e:
                logger.warning("Error processing object %s: %s", object_id, e)
                error = str(e) or type(e).__name__
                job = self._write(job, lambda j: j.record_failure(object_id, error), _not_terminal)
            else:
                if outcome.skipped:
                    logger.info("Skipping object %s (%s)", object_id, outcome.skip_reason)
                    job = self._write(job, lambda j: j.record_skip(object_id), _not_terminal)
                else:
                    result = outcome.result
                    job = self._write(job, lambda j: j.record_success(result), _not_terminal)

            self._sleep(self.item_delay)
        return None

    def _requeue_on_stop(self, job: ImportJob) -> ImportJob | None:
        def requeue(j: ImportJob) -> None:
            j.status = JobStatus.INITIALIZED

        job = self._write(job, requeue, _status_is(JobStatus.PROCESSING))
        if job is not None:
            logger.info("Processor stopping; job %s requeued as initialized", job.job_id)
        return job

    def _complete(self, job: ImportJob) -> ImportJob | None:
        job = self._write(job, lambda j: j.complete(self._now()), _status_is(JobStatus.PROCESSING))
        if job is not None:
            logger.info(
                "Job %s completed: %d processed, %d failed, %d skipped",
                job.job_id,
                len(job.processed_ids),
                len(job.failed_ids),
                len(job.skipped_ids),
            )
        return job

    def _pause_for_rate_limit(self, job: ImportJob, error: RateLimitExceeded) -> ImportJob | None:
        resume_at = self._now() + timedelta(seconds=error.retry_after)
        job = self._write(
            job,
            lambda j: j.pause(PauseReason.RATE_LIMIT, resume_at),
            _status_is(JobStatus.PROCESSING),
        )
        if job is not None:
            logger.warning(
                "Job %s paused due to %s rate limit. Will resume at %s",
                job.job_id,
                error.service,
                resume_at.isoformat(),
            )
        return job

    def _fail(self, job_id: str, message: str) -> ImportJob | None:
        job = self._store.get(job_id)
        if job is None:
            return None
        return self._write(job, lambda j: j.fail(message), _not_terminal)

    # ------------------------------------------------------------------
    # Compare-and-set writes
    # ------------------------------------------------------------------

    def _write(self, job: ImportJob, change: Change, guard: Guard) -> ImportJob | None:
        """Apply ``change`` and persist it with compare-and-set.

        On conflict the record is re-read and ``change`` re-applied to the fresh
        copy. Returns the stored job, or None when ``guard`` rejects the
        (fresh) record, i.e. an external request changed the status.
        """
        for _ in range(self._max_write_attempts):
            if not guard(job):
                logger.info(
                    "Job %s changed externally (status %s); not overwriting",
                    job.job_id,
                    job.status.value,
                )
                return None
            change(job)
            try:
                return self._store.update(job)
            except JobConflictError:
                fresh = self._store.get(job.job_id)
                if fresh is None:
                    return None
                job = fresh
        raise JobConflictError(job.job_id, job.version, None)
