"""Import job records, storage and external controls."""

from artimport.jobs.control import (
    InvalidTransitionError,
    JobNotFoundError,
    cancel_job,
    create_job,
    create_publish_job,
    delete_job,
    get_job,
    list_jobs,
    pause_job,
    resume_job,
)
from artimport.jobs.models import (
    ImportJob,
    ItemResult,
    JobOptions,
    JobQuery,
    JobSource,
    JobStatus,
    PauseReason,
)
from artimport.jobs.store import (
    FileJobStore,
    JobConflictError,
    JobStore,
    PostgresJobStore,
    create_job_store,
    new_job_id,
)

__all__ = [
    "ImportJob",
    "ItemResult",
    "JobOptions",
    "JobQuery",
    "JobSource",
    "JobStatus",
    "PauseReason",
    "JobStore",
    "FileJobStore",
    "PostgresJobStore",
    "JobConflictError",
    "create_job_store",
    "new_job_id",
    "JobNotFoundError",
    "InvalidTransitionError",
    "create_job",
    "get_job",
    "list_jobs",
    "pause_job",
    "resume_job",
    "cancel_job",
    "create_publish_job",
    "delete_job",
]
