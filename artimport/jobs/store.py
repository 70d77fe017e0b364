"""Import job storage — Postgres (preferred) or file-based fallback.

Every ``update`` is a compare-and-set on ``ImportJob.version``: the write only
lands when the stored version still equals the version the caller read. A
concurrent pause/cancel request therefore surfaces as ``JobConflictError``
instead of being silently overwritten.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Protocol

from filelock import FileLock

from artimport.jobs.models import ImportJob, JobStatus, utcnow

logger = logging.getLogger(__name__)


class JobConflictError(Exception):
    """The stored job changed since it was read."""

    def __init__(self, job_id: str, expected: int, actual: int | None):
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Job {job_id} was modified concurrently (expected version {expected}, found {actual})"
        )


class JobStore(Protocol):
    def create(self, job: ImportJob) -> ImportJob: ...
    def get(self, job_id: str) -> ImportJob | None: ...
    def list(self, status: JobStatus | None = None) -> list[ImportJob]: ...
    def update(self, job: ImportJob) -> ImportJob: ...
    def delete(self, job_id: str) -> bool: ...
    def find_publish_ref(self, object_id: int) -> str | None: ...


def _bump(job: ImportJob) -> ImportJob:
    job.version += 1
    job.updated_at = utcnow()
    return job


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

class PostgresJobStore:
    """Persist jobs in Postgres as JSONB documents. Survives restarts."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres job store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS artimport_jobs (
                job_id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                version INT NOT NULL DEFAULT 0,
                doc JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_artimport_jobs_status
            ON artimport_jobs (status, created_at)
        """)
        return conn

    def create(self, job: ImportJob) -> ImportJob:
        self._conn.execute(
            """
            INSERT INTO artimport_jobs (job_id, status, version, doc, created_at, updated_at)
            VALUES (%s, %s, %s, %s::jsonb, %s, %s)
            """,
            (
                job.job_id,
                job.status.value,
                job.version,
                job.model_dump_json(),
                job.created_at,
                job.updated_at,
            ),
        )
        return job

    def get(self, job_id: str) -> ImportJob | None:
        row = self._conn.execute(
            "SELECT doc FROM artimport_jobs WHERE job_id = %s", (job_id,)
        ).fetchone()
        if not row:
            return None
        return self._row_to_job(row)

    def list(self, status: JobStatus | None = None) -> list[ImportJob]:
        if status is None:
            rows = self._conn.execute(
                "SELECT doc FROM artimport_jobs ORDER BY created_at ASC"
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT doc FROM artimport_jobs WHERE status = %s ORDER BY created_at ASC",
                (status.value,),
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def update(self, job: ImportJob) -> ImportJob:
        expected = job.version
        candidate = _bump(job.model_copy(deep=True))
        cur = self._conn.execute(
            """
            UPDATE artimport_jobs SET
                status = %s, version = %s, doc = %s::jsonb, updated_at = %s
            WHERE job_id = %s AND version = %s
            """,
            (
                candidate.status.value,
                candidate.version,
                candidate.model_dump_json(),
                candidate.updated_at,
                job.job_id,
                expected,
            ),
        )
        if cur.rowcount != 1:
            current = self.get(job.job_id)
            raise JobConflictError(job.job_id, expected, current.version if current else None)
        return candidate

    def delete(self, job_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM artimport_jobs WHERE job_id = %s", (job_id,))
        return cur.rowcount > 0

    def find_publish_ref(self, object_id: int) -> str | None:
        row = self._conn.execute(
            """
            SELECT r->>'publish_ref'
            FROM artimport_jobs, jsonb_array_elements(doc->'results') AS r
            WHERE (r->>'object_id')::bigint = %s AND r->>'publish_ref' IS NOT NULL
            LIMIT 1
            """,
            (object_id,),
        ).fetchone()
        return row[0] if row else None

    def _row_to_job(self, row) -> ImportJob:
        doc = row[0]
        if isinstance(doc, (str, bytes)):
            return ImportJob.model_validate_json(doc)
        return ImportJob.model_validate(doc)


# ---------------------------------------------------------------------------
# File-based implementation (fallback when no Postgres)
# ---------------------------------------------------------------------------

class FileJobStore:
    """Persist jobs as JSON files. Survives restarts within same data dir.

    Each compare-and-set runs under a per-job ``filelock`` lock, so several
    processes sharing the data dir cannot interleave a read and a write.
    Publish refs are kept in ``publish_index.json`` (object id → ref, job id)
    so duplicate checks read one file instead of every job.
    """

    def __init__(self, jobs_dir: Path, lock_timeout: float = 30.0):
        self._dir = Path(jobs_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._lock_timeout = lock_timeout
        self._index_path = self._dir / "publish_index.json"
        self._index_lock = FileLock(str(self._index_path) + ".lock", timeout=lock_timeout)
        if not self._index_path.exists():
            self._rebuild_index()

    def _job_path(self, job_id: str) -> Path:
        return self._dir / f"{job_id}.json"

    def _job_lock(self, job_id: str) -> FileLock:
        return FileLock(str(self._job_path(job_id)) + ".lock", timeout=self._lock_timeout)

    def create(self, job: ImportJob) -> ImportJob:
        with self._lock, self._job_lock(job.job_id):
            if self._job_path(job.job_id).exists():
                raise ValueError(f"Job {job.job_id} already exists")
            self._write_job(job)
        self._index_publish_refs(job)
        return job

    def get(self, job_id: str) -> ImportJob | None:
        path = self._job_path(job_id)
        if not path.exists():
            return None
        return self._read_job(path)

    def list(self, status: JobStatus | None = None) -> list[ImportJob]:
        jobs = []
        for path in self._dir.glob("job_*.json"):
            try:
                job = self._read_job(path)
            except FileNotFoundError:
                continue  # deleted between glob and read
            if status is None or job.status == status:
                jobs.append(job)
        jobs.sort(key=lambda j: j.created_at)
        return jobs

    def update(self, job: ImportJob) -> ImportJob:
        with self._lock, self._job_lock(job.job_id):
            current = self.get(job.job_id)
            if current is None or current.version != job.version:
                raise JobConflictError(
                    job.job_id, job.version, current.version if current else None
                )
            candidate = _bump(job.model_copy(deep=True))
            self._write_job(candidate)
        self._index_publish_refs(candidate)
        return candidate

    def delete(self, job_id: str) -> bool:
        with self._lock, self._job_lock(job_id):
            path = self._job_path(job_id)
            if not path.exists():
                return False
            path.unlink()
        with self._index_lock:
            index = self._load_index()
            if any(entry.get("job_id") == job_id for entry in index.values()):
                # Another job may have published the same objects
                self._rebuild_index()
        return True

    def find_publish_ref(self, object_id: int) -> str | None:
        entry = self._load_index().get(str(object_id))
        return entry.get("publish_ref") if entry else None

    # -- publish index ---------------------------------------------------

    def _load_index(self) -> dict[str, dict[str, str]]:
        """Maps object id -> {"publish_ref", "job_id"} for lookup."""
        if self._index_path.exists():
            try:
                with open(self._index_path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Unreadable publish index %s: %s", self._index_path, e)
        return {}

    def _save_index(self, index: dict[str, dict[str, str]]) -> None:
        tmp = self._index_path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(index, f, indent=2)
        os.replace(tmp, self._index_path)

    def _index_publish_refs(self, job: ImportJob) -> None:
        refs = {str(r.object_id): r.publish_ref for r in job.results if r.publish_ref}
        if not refs:
            return
        with self._index_lock:
            index = self._load_index()
            added = False
            for key, ref in refs.items():
                if key not in index:
                    index[key] = {"publish_ref": ref, "job_id": job.job_id}
                    added = True
            if added:
                self._save_index(index)

    def _rebuild_index(self) -> None:
        """Recreate the index from the job files, oldest job first."""
        with self._index_lock:
            index: dict[str, dict[str, str]] = {}
            for job in self.list():
                for result in job.results:
                    if result.publish_ref:
                        index.setdefault(
                            str(result.object_id),
                            {"publish_ref": result.publish_ref, "job_id": job.job_id},
                        )
            self._save_index(index)

    def _write_job(self, job: ImportJob) -> None:
        path = self._job_path(job.job_id)
        tmp = path.with_suffix(".json.tmp")
        data = job.model_dump(mode="json")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp, path)

    def _read_job(self, path: Path) -> ImportJob:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return ImportJob.model_validate(data)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_job_store(settings) -> JobStore:
    """Build the job store for these settings (Postgres if configured, else files)."""
    if settings.artimport_database_url:
        try:
            store = PostgresJobStore(settings.artimport_database_url)
            logger.info("Using Postgres job store")
            return store
        except Exception as e:
            logger.warning("Postgres job store failed (%s), falling back to file store", e)
    else:
        logger.info("Using file-based job store (%s)", settings.jobs_dir)
    return FileJobStore(settings.jobs_dir)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"
