"""
Persistence helpers for member import jobs.

Jobs live in ``member_imports`` and are always read and written through a
tenant-scoped data store, so one franchise never sees another's imports.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import logging

from pydantic import BaseModel, Field

from gymdesk.core.config import settings
from gymdesk.db.store import ScopedDataStore, eq
from gymdesk.domain.imports.mapper import ColumnMapping, normalize_column_mapping, serialize_column_mapping

logger = logging.getLogger(__name__)

COLLECTION = "member_imports"


class ImportStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED})

ALLOWED_TRANSITIONS = {
    ImportStatus.PENDING: frozenset({ImportStatus.PROCESSING, ImportStatus.FAILED}),
    ImportStatus.PROCESSING: frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED}),
    ImportStatus.COMPLETED: frozenset(),
    ImportStatus.FAILED: frozenset(),
}


class JobStateError(Exception):
    """Raised when an update would break the job's status or counter rules."""
    pass


class ImportJob(BaseModel):
    id: str
    subaccount_id: str
    uploaded_by: Optional[str] = None
    file_name: str
    file_url: Optional[str] = None
    file_path: Optional[str] = None
    status: ImportStatus = ImportStatus.PENDING
    total_rows: int = 0
    processed_rows: int = 0
    success_count: int = 0
    error_count: int = 0
    logs: List[str] = Field(default_factory=list)
    column_mapping: Dict[str, str] = Field(default_factory=dict)
    date_format: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mapping(self) -> ColumnMapping:
        return normalize_column_mapping(self.column_mapping)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _row_to_job(row: Dict[str, Any]) -> ImportJob:
    payload = dict(row)
    payload["logs"] = list(row.get("logs") or [])
    payload["column_mapping"] = dict(row.get("column_mapping") or {})
    return ImportJob.model_validate(payload)


def tail_logs(logs: List[str], limit: Optional[int] = None) -> List[str]:
    """Keep only the most recent ``limit`` log lines."""
    limit = settings.import_log_tail_limit if limit is None else limit
    if limit <= 0:
        return []
    return list(logs[-limit:])


def _check_counters(total: int, processed: int, success: int, errors: int) -> None:
    if min(total, processed, success, errors) < 0:
        raise JobStateError("Job counters cannot be negative")
    if processed > total:
        raise JobStateError(f"processed_rows ({processed}) exceeds total_rows ({total})")
    if success + errors > processed:
        raise JobStateError(
            f"success_count + error_count ({success + errors}) exceeds processed_rows ({processed})"
        )


def create_import_job(
    store: ScopedDataStore,
    *,
    file_name: str,
    total_rows: int,
    column_mapping: ColumnMapping,
    date_format: Optional[str] = None,
    uploaded_by: Optional[str] = None,
    file_url: Optional[str] = None,
    file_path: Optional[str] = None,
    subaccount_id: Optional[str] = None,
) -> ImportJob:
    """Create and persist a new pending import job."""
    _check_counters(total_rows, 0, 0, 0)
    record = {
        "subaccount_id": subaccount_id,
        "uploaded_by": uploaded_by,
        "file_name": file_name,
        "file_url": file_url,
        "file_path": file_path,
        "status": ImportStatus.PENDING.value,
        "total_rows": total_rows,
        "processed_rows": 0,
        "success_count": 0,
        "error_count": 0,
        "logs": [],
        "column_mapping": serialize_column_mapping(column_mapping),
        "date_format": date_format,
    }
    if subaccount_id is None:
        record.pop("subaccount_id")

    job = _row_to_job(store.insert(COLLECTION, record))
    logger.info("Created import job %s for %s (%d rows)", job.id, file_name, total_rows)
    return job


def get_import_job(store: ScopedDataStore, job_id: str) -> Optional[ImportJob]:
    """Fetch a single job by ID, None when it does not exist in scope."""
    row = store.select_one(COLLECTION, filters=(eq("id", job_id),))
    return _row_to_job(row) if row else None


def update_import_job(
    store: ScopedDataStore,
    job_id: str,
    *,
    status: Optional[ImportStatus] = None,
    processed_rows: Optional[int] = None,
    success_count: Optional[int] = None,
    error_count: Optional[int] = None,
    logs: Optional[List[str]] = None,
    file_url: Optional[str] = None,
    completed: bool = False,
) -> Optional[ImportJob]:
    """
    Apply a partial update to a job.

    Status may only move forward (pending -> processing -> completed|failed,
    or pending -> failed). Counters must satisfy processed <= total and
    success + errors <= processed. Logs are cut to the configured tail.
    """
    current = get_import_job(store, job_id)
    if current is None:
        return None

    patch: Dict[str, Any] = {}

    if status is not None:
        status = ImportStatus(status)
        if status != current.status:
            if status not in ALLOWED_TRANSITIONS[current.status]:
                raise JobStateError(
                    f"Import job {job_id} cannot move from {current.status.value} to {status.value}"
                )
            patch["status"] = status.value

    counters = {
        "processed_rows": processed_rows,
        "success_count": success_count,
        "error_count": error_count,
    }
    counters = {key: value for key, value in counters.items() if value is not None}
    if counters:
        if current.is_terminal:
            raise JobStateError(f"Import job {job_id} is already {current.status.value}")
        _check_counters(
            current.total_rows,
            counters.get("processed_rows", current.processed_rows),
            counters.get("success_count", current.success_count),
            counters.get("error_count", current.error_count),
        )
        patch.update(counters)

    if logs is not None:
        patch["logs"] = tail_logs(logs)
    if file_url is not None:
        patch["file_url"] = file_url
    if completed and current.completed_at is None:
        patch["completed_at"] = _utcnow()

    if not patch:
        return current

    rows = store.update(COLLECTION, (eq("id", job_id),), patch)
    return _row_to_job(rows[0]) if rows else None


def complete_import_job(
    store: ScopedDataStore,
    job_id: str,
    *,
    processed_rows: int,
    success_count: int,
    error_count: int,
    logs: List[str],
) -> Optional[ImportJob]:
    """Mark a job as completed with its final counts."""
    job = update_import_job(
        store,
        job_id,
        status=ImportStatus.COMPLETED,
        processed_rows=processed_rows,
        success_count=success_count,
        error_count=error_count,
        logs=logs,
        completed=True,
    )
    if job:
        logger.info(
            "Import job %s completed: %d imported, %d failed", job_id, job.success_count, job.error_count
        )
    return job


def fail_import_job(
    store: ScopedDataStore,
    job_id: str,
    *,
    logs: List[str],
    processed_rows: Optional[int] = None,
    success_count: Optional[int] = None,
    error_count: Optional[int] = None,
) -> Optional[ImportJob]:
    """Mark a job as failed. Counters given here are written before the status flips."""
    job = update_import_job(
        store,
        job_id,
        status=ImportStatus.FAILED,
        processed_rows=processed_rows,
        success_count=success_count,
        error_count=error_count,
        logs=logs,
        completed=True,
    )
    if job:
        logger.warning("Import job %s failed: %s", job_id, job.logs[-1] if job.logs else "no details")
    return job


def list_import_jobs(
    store: ScopedDataStore,
    *,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[ImportJob], int]:
    """List jobs in scope, newest first, with the total count."""
    rows = store.select(COLLECTION, order_by="created_at", descending=True, limit=limit, offset=offset)
    total = store.count(COLLECTION)
    return [_row_to_job(row) for row in rows], total


def summarize_import_jobs(store: ScopedDataStore) -> Dict[str, int]:
    """Counts of jobs by status and the number of members imported."""
    jobs = [_row_to_job(row) for row in store.select(COLLECTION)]
    summary = {"total_imports": len(jobs)}
    for status in ImportStatus:
        summary[status.value] = sum(1 for job in jobs if job.status == status)
    summary["members_imported"] = sum(job.success_count for job in jobs)
    return summary
