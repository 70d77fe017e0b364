"""External job controls: create, inspect, pause, resume, cancel, delete.

Requests are validated only against the job's current status. Each mutation
re-reads the record and writes it back with compare-and-set, retrying a few
times when the scheduler wrote in between.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from artimport.jobs.models import (
    CANCELLED_MESSAGE,
    ImportJob,
    JobOptions,
    JobQuery,
    JobSource,
    JobStatus,
    PauseReason,
    utcnow,
)
from artimport.jobs.store import JobConflictError, JobStore, new_job_id

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 5


class JobNotFoundError(LookupError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidTransitionError(Exception):
    """The requested control action is not allowed in the job's current status."""


def _mutate(store: JobStore, job_id: str, change: Callable[[ImportJob], bool]) -> ImportJob:
    """Apply ``change`` to a fresh copy and compare-and-set it.

    ``change`` returns False to signal a no-op; the record is then returned
    unchanged without a write.
    """
    for _ in range(MAX_CAS_ATTEMPTS):
        job = store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not change(job):
            return job
        try:
            return store.update(job)
        except JobConflictError:
            logger.debug("Conflict updating %s, re-reading", job_id)
    raise JobConflictError(job_id, -1, None)


def create_job(
    store: JobStore,
    source: JobSource | str,
    query: JobQuery | dict | None = None,
    options: JobOptions | dict | None = None,
    name: str | None = None,
) -> ImportJob:
    source = JobSource(source)
    if not isinstance(query, JobQuery):
        query = JobQuery.model_validate(query or {})
    if not isinstance(options, JobOptions):
        options = JobOptions.model_validate(options or {})
    if source == JobSource.URL and not query.url:
        raise ValueError("URL is required for url jobs")
    label = "URL Import" if source == JobSource.URL else "Category Import"
    job = ImportJob(
        job_id=new_job_id(),
        name=name or f"{label}: {utcnow():%Y-%m-%d %H:%M:%S}",
        source=source,
        query=query,
        options=options,
    )
    store.create(job)
    logger.info("Created job %s (%s)", job.job_id, job.name)
    return job


def get_job(store: JobStore, job_id: str) -> ImportJob:
    job = store.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


def list_jobs(store: JobStore, status: JobStatus | str | None = None) -> list[ImportJob]:
    """Jobs newest first, optionally filtered by status."""
    jobs = store.list(JobStatus(status) if status else None)
    return sorted(jobs, key=lambda j: j.created_at, reverse=True)


def pause_job(store: JobStore, job_id: str) -> ImportJob:
    def change(job: ImportJob) -> bool:
        if job.status not in (JobStatus.PROCESSING, JobStatus.INITIALIZED):
            raise InvalidTransitionError(f"Cannot pause job with status: {job.status.value}")
        job.pause(PauseReason.USER)
        return True

    return _mutate(store, job_id, change)


def resume_job(store: JobStore, job_id: str, now: datetime | None = None) -> ImportJob:
    """Resume a paused job.

    A rate-limited job is only resumed once its ``resume_after`` has passed;
    earlier requests are a no-op.
    """
    now = now or utcnow()

    def change(job: ImportJob) -> bool:
        if job.status != JobStatus.PAUSED:
            raise InvalidTransitionError(f"Cannot resume job with status: {job.status.value}")
        if job.pause_reason == PauseReason.RATE_LIMIT and not job.is_due(now):
            return False
        job.status = JobStatus.INITIALIZED
        job.clear_pause()
        return True

    return _mutate(store, job_id, change)


def cancel_job(store: JobStore, job_id: str) -> ImportJob:
    def change(job: ImportJob) -> bool:
        if job.is_terminal:
            raise InvalidTransitionError(f"Cannot cancel job with status: {job.status.value}")
        job.fail(CANCELLED_MESSAGE)
        return True

    return _mutate(store, job_id, change)


def create_publish_job(store: JobStore, job_id: str) -> ImportJob:
    """Queue a follow-up job that publishes a completed job's unpublished items."""
    source_job = get_job(store, job_id)
    if source_job.status != JobStatus.COMPLETED:
        raise InvalidTransitionError("Job must be completed before uploading to the storefront")

    object_ids = [
        r.object_id
        for r in source_job.results
        if r.processed and not r.error and not r.publish_ref
    ]
    options = source_job.options.model_copy(update={"skip_shopify_upload": False})
    job = ImportJob(
        job_id=new_job_id(),
        name=f"Storefront Upload: {source_job.name}",
        status=JobStatus.INITIALIZED,
        source=source_job.source,
        query=source_job.query.model_copy(deep=True),
        options=options,
        metadata={"parent_job_id": source_job.job_id},
    )
    job.set_object_ids(object_ids)
    store.create(job)
    logger.info("Created upload job %s with %d objects", job.job_id, len(object_ids))
    return job


def delete_job(store: JobStore, job_id: str) -> None:
    if not store.delete(job_id):
        raise JobNotFoundError(job_id)
