"""
Member import service: the surface the HTTP routes and the console call.

Starting an import validates everything up front, stores the original file,
creates a pending job and hands back a run for the caller to schedule. The
caller then polls the job until it is completed or failed.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Set, Tuple

from gymdesk.core.config import settings
from gymdesk.db.store import ScopedDataStore
from gymdesk.domain.imports.errors import ImportJobNotFoundError, ImportValidationError
from gymdesk.domain.imports.jobs import (
    ImportJob,
    ImportStatus,
    create_import_job,
    fail_import_job,
    get_import_job,
    list_import_jobs,
    summarize_import_jobs,
)
from gymdesk.domain.imports.mapper import (
    DATE_FIELDS,
    ColumnMapping,
    require_date_format,
    sample_date_values,
    validate_column_mapping,
)
from gymdesk.domain.imports.processor import MemberImportProcessor
from gymdesk.domain.imports.processors.csv_processor import ImportPreview, build_preview
from gymdesk.integrations.storage import StorageError, download_file, get_file_url, upload_file
from gymdesk.utils.date import DateFormatSpec, detect_date_formats

logger = logging.getLogger(__name__)

STORAGE_FOLDER = "member-imports"


def preview_upload(file_name: str, content: bytes) -> ImportPreview:
    """Parse an upload and suggest a mapping, with date samples and matching formats."""
    preview = build_preview(file_name, content)
    preview.date_samples = sample_date_values(preview.suggested_mapping, preview.rows[0])

    date_columns = [index for index, target in preview.suggested_mapping.items() if target in DATE_FIELDS]
    values = [row[index] for row in preview.rows for index in date_columns if index < len(row)]
    preview.detected_date_formats = detect_date_formats(values)
    return preview


class ImportRunRegistry:
    """In-flight runs by job id, so a cancel request can reach the processor."""

    def __init__(self):
        self._processors: Dict[str, MemberImportProcessor] = {}
        self._lock = threading.Lock()

    def register(self, job_id: str, processor: MemberImportProcessor) -> None:
        with self._lock:
            self._processors[job_id] = processor

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._processors.pop(job_id, None)

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            processor = self._processors.get(job_id)
        if processor is None:
            return False
        processor.cancel()
        return True

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._processors


@dataclass
class ImportRun:
    """A prepared, not yet started import. ``await run()`` processes it."""
    job_id: str
    processor: MemberImportProcessor
    rows: List[List[str]]
    mapping: ColumnMapping
    date_format: Optional[DateFormatSpec]
    registry: Optional[ImportRunRegistry] = None

    async def __call__(self) -> Optional[ImportJob]:
        try:
            return await self.processor.run(self.job_id, self.rows, self.mapping, self.date_format)
        finally:
            if self.registry is not None:
                self.registry.discard(self.job_id)


class MemberImportService:
    def __init__(
        self,
        store: ScopedDataStore,
        *,
        registry: Optional[ImportRunRegistry] = None,
        batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
        today: Optional[date] = None,
    ):
        self.store = store
        self.registry = registry if registry is not None else ImportRunRegistry()
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.today = today
        self._tasks: Set[asyncio.Task] = set()

    def preview(self, file_name: str, content: bytes) -> ImportPreview:
        return preview_upload(file_name, content)

    def start_import(
        self,
        *,
        file_name: str,
        content: bytes,
        mapping: Mapping[Any, Any],
        date_format: Optional[str] = None,
        uploaded_by: Optional[str] = None,
    ) -> Tuple[ImportJob, ImportRun]:
        """
        Validate an upload and create its pending job.

        Raises:
            ImportValidationError: bad file, incomplete mapping or missing date format
        """
        preview = build_preview(file_name, content)
        normalized = validate_column_mapping(mapping, len(preview.headers))
        spec = require_date_format(normalized, date_format)
        file_url, file_path = self._store_original(file_name, content)

        return self._create_run(
            preview,
            normalized,
            spec,
            uploaded_by=uploaded_by,
            file_url=file_url,
            file_path=file_path,
        )

    async def launch_import(self, **kwargs) -> ImportJob:
        """``start_import`` and schedule the run on the running loop; returns the pending job."""
        job, run = self.start_import(**kwargs)
        self._schedule(run)
        return job

    def reprocess_import(self, job_id: str) -> Tuple[ImportJob, ImportRun]:
        """
        Run a fresh job from a previous job's stored file, mapping and date format.

        Raises:
            ImportJobNotFoundError: unknown job
            ImportValidationError: the job has no stored file or its mapping no longer fits
            StorageError: the stored file cannot be downloaded
        """
        source = self.get_job_status(job_id)
        if not source.file_path:
            raise ImportValidationError(f"Import {job_id} has no stored file to reprocess")

        content = download_file(source.file_path)
        preview = build_preview(source.file_name, content)
        normalized = validate_column_mapping(source.mapping(), len(preview.headers))
        spec = require_date_format(normalized, source.date_format)
        logger.info("Reprocessing import %s from %s", job_id, source.file_path)

        return self._create_run(
            preview,
            normalized,
            spec,
            uploaded_by=source.uploaded_by,
            file_url=source.file_url,
            file_path=source.file_path,
        )

    def get_job_status(self, job_id: str) -> ImportJob:
        job = get_import_job(self.store, job_id)
        if job is None:
            raise ImportJobNotFoundError(f"Import job {job_id} not found")
        return job

    def list_jobs(self, *, limit: int = 50, offset: int = 0) -> Tuple[List[ImportJob], int]:
        return list_import_jobs(self.store, limit=limit, offset=offset)

    def summary(self) -> Dict[str, int]:
        return summarize_import_jobs(self.store)

    def cancel(self, job_id: str) -> ImportJob:
        """
        Request cancellation.

        A running job stops before its next batch. A job with no run in this
        process (not started yet, or orphaned) is failed straight away.
        Terminal jobs are returned unchanged.
        """
        job = self.get_job_status(job_id)
        if job.is_terminal:
            return job
        if self.registry.cancel(job_id):
            logger.info("Cancellation requested for import job %s", job_id)
            return job

        if job.status == ImportStatus.PENDING:
            message = "Import cancelled before processing started"
        else:
            message = f"Import cancelled after {job.processed_rows} of {job.total_rows} rows"
        return fail_import_job(self.store, job_id, logs=[*job.logs, message]) or job

    async def poll_until_terminal(
        self,
        job_id: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[ImportJob]:
        """Yield job snapshots every ``interval`` seconds until completed/failed or ``timeout``."""
        interval = settings.import_poll_interval_seconds if interval is None else interval
        deadline = time.monotonic() + timeout if timeout is not None else None

        while True:
            job = self.get_job_status(job_id)
            yield job
            if job.is_terminal:
                return
            if deadline is not None and time.monotonic() >= deadline:
                logger.info("Stopped polling import job %s after %.1fs (status %s)", job_id, timeout, job.status.value)
                return
            await asyncio.sleep(interval)

    def _create_run(
        self,
        preview: ImportPreview,
        mapping: ColumnMapping,
        spec: Optional[DateFormatSpec],
        *,
        uploaded_by: Optional[str],
        file_url: Optional[str],
        file_path: Optional[str],
    ) -> Tuple[ImportJob, ImportRun]:
        job = create_import_job(
            self.store,
            file_name=preview.file_name,
            total_rows=preview.total_rows,
            column_mapping=mapping,
            date_format=spec.name if spec else None,
            uploaded_by=uploaded_by,
            file_url=file_url,
            file_path=file_path,
        )
        processor = MemberImportProcessor(
            self.store,
            batch_size=self.batch_size,
            batch_delay_seconds=self.batch_delay_seconds,
            today=self.today,
        )
        self.registry.register(job.id, processor)
        run = ImportRun(
            job_id=job.id,
            processor=processor,
            rows=preview.rows,
            mapping=mapping,
            date_format=spec,
            registry=self.registry,
        )
        return job, run

    def _schedule(self, run: ImportRun) -> asyncio.Task:
        task = asyncio.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _store_original(self, file_name: str, content: bytes) -> Tuple[Optional[str], Optional[str]]:
        """Upload the original file; storage failures are logged and the import goes on without it."""
        object_name = f"{self.store.scope.primary}/{int(time.time() * 1000)}_{file_name}"
        try:
            uploaded = upload_file(content, object_name, folder=STORAGE_FOLDER)
        except StorageError as e:
            logger.warning("Could not store original import file %s: %s", file_name, e)
            return None, None

        file_path = uploaded["file_path"]
        try:
            return get_file_url(file_path), file_path
        except StorageError as e:
            logger.warning("Stored %s but could not build its URL: %s", file_path, e)
            return None, file_path
