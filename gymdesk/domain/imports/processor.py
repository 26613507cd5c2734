"""
Batch processor for member import jobs.

Rows are handled one at a time in small batches with a pause between
batches. A bad row is counted and logged and the job carries on; anything
that escapes the per-row boundary fails the whole job. Progress is written
back to the job after every row so pollers can follow along.

Database work runs in worker threads, one call at a time, so the event loop
keeps serving requests while a batch is in progress.
"""
import asyncio
import logging
import threading
from datetime import date
from typing import List, Optional, Sequence, Tuple

from gymdesk.core.config import settings
from gymdesk.db.store import DataStoreError, ScopedDataStore
from gymdesk.domain.imports.errors import FatalImportError, RowError
from gymdesk.domain.imports.jobs import (
    ImportJob,
    ImportStatus,
    JobStateError,
    complete_import_job,
    fail_import_job,
    tail_logs,
    update_import_job,
)
from gymdesk.domain.imports.mapper import ColumnMapping, build_member_record
from gymdesk.utils.date import DateFormatSpec

logger = logging.getLogger(__name__)

INTERNAL_ERROR_LOG = "Processing failed due to an internal error"


class MemberImportProcessor:
    def __init__(
        self,
        store: ScopedDataStore,
        *,
        batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
        today: Optional[date] = None,
    ):
        self.store = store
        self.batch_size = max(1, batch_size or settings.import_batch_size)
        self.batch_delay_seconds = (
            settings.import_batch_delay_seconds if batch_delay_seconds is None else batch_delay_seconds
        )
        self.today = today
        # Set from request handlers and worker threads, read by the run loop.
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """Ask the run to stop before its next batch. The current row always finishes."""
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def _load_plans(self) -> List[dict]:
        try:
            return self.store.select("plans")
        except DataStoreError as e:
            raise FatalImportError(f"Could not load plans: {e}") from e

    def _import_row(
        self,
        job: ImportJob,
        row: Sequence[str],
        row_number: int,
        mapping: ColumnMapping,
        date_format: Optional[DateFormatSpec],
        plans: List[dict],
        today: date,
    ) -> Tuple[bool, List[str]]:
        """Build and insert one member. Returns whether it was imported and the log lines for the row."""
        lines: List[str] = []
        try:
            record, notes = build_member_record(
                row,
                mapping,
                subaccount_id=job.subaccount_id,
                date_format=date_format,
                plans=plans,
                today=today,
            )
            lines.extend(f"Row {row_number}: {note}" for note in notes)
            self.store.insert("members", record.to_row())
        except (RowError, DataStoreError) as e:
            lines.append(f"Row {row_number}: {e}")
            logger.debug("Import job %s row %d failed: %s", job.id, row_number, e)
            return False, lines

        lines.append(f"Row {row_number}: Member imported successfully")
        return True, lines

    async def run(
        self,
        job_id: str,
        rows: Sequence[Sequence[str]],
        mapping: ColumnMapping,
        date_format: Optional[DateFormatSpec],
    ) -> Optional[ImportJob]:
        """Process every row of a pending job and leave it completed or failed."""
        total = len(rows)
        processed = success = errors = 0
        logs: List[str] = []

        try:
            job = await asyncio.to_thread(update_import_job, self.store, job_id, status=ImportStatus.PROCESSING)
            if job is None:
                logger.error("Import job %s not found, nothing to process", job_id)
                return None

            logger.info("Processing import job %s: %d rows in batches of %d", job_id, total, self.batch_size)
            plans = await asyncio.to_thread(self._load_plans)
            today = self.today or date.today()

            for start in range(0, total, self.batch_size):
                if start:
                    await asyncio.sleep(self.batch_delay_seconds)
                if self._cancel_event.is_set():
                    logs.append(f"Import cancelled after {processed} of {total} rows")
                    logger.info("Import job %s cancelled after %d of %d rows", job_id, processed, total)
                    return await asyncio.to_thread(
                        fail_import_job,
                        self.store,
                        job_id,
                        logs=logs,
                        processed_rows=processed,
                        success_count=success,
                        error_count=errors,
                    )

                for offset, row in enumerate(rows[start:start + self.batch_size]):
                    imported, row_logs = await asyncio.to_thread(
                        self._import_row, job, row, start + offset + 1, mapping, date_format, plans, today
                    )
                    if imported:
                        success += 1
                    else:
                        errors += 1
                    processed += 1
                    logs = tail_logs(logs + row_logs)
                    await asyncio.to_thread(
                        update_import_job,
                        self.store,
                        job_id,
                        processed_rows=processed,
                        success_count=success,
                        error_count=errors,
                        logs=logs,
                    )

            return await asyncio.to_thread(
                complete_import_job,
                self.store,
                job_id,
                processed_rows=processed,
                success_count=success,
                error_count=errors,
                logs=logs,
            )
        except asyncio.CancelledError:
            logger.warning("Import job %s task was cancelled", job_id)
            self._mark_failed(job_id, [f"Import cancelled after {processed} of {total} rows"])
            raise
        except FatalImportError as e:
            logger.error("Import job %s aborted: %s", job_id, e)
            return await asyncio.to_thread(self._mark_failed, job_id, [INTERNAL_ERROR_LOG])
        except Exception:
            logger.exception("Import job %s failed with an internal error", job_id)
            return await asyncio.to_thread(self._mark_failed, job_id, [INTERNAL_ERROR_LOG])

    def _mark_failed(self, job_id: str, logs: List[str]) -> Optional[ImportJob]:
        try:
            return fail_import_job(self.store, job_id, logs=logs)
        except (DataStoreError, JobStateError) as e:
            logger.error("Could not mark import job %s as failed: %s", job_id, e)
            return None
