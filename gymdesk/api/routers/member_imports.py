"""
Member import endpoints: template, preview, start, history, status, cancel.

Starting an import returns the pending job immediately; processing runs as a
background task and clients poll the job endpoint until it is completed or
failed.
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response

from gymdesk.api.dependencies import build_import_service, get_data_store, get_run_registry
from gymdesk.api.schemas.shared import (
    DateFormatOption,
    ImportJobListResponse,
    ImportJobResponse,
    ImportPreviewResponse,
    ImportSummary,
)
from gymdesk.db.store import DataStore, ScopeViolationError
from gymdesk.domain.imports.errors import ImportJobNotFoundError, ImportValidationError
from gymdesk.domain.imports.mapper import MEMBER_FIELDS, REQUIRED_FIELDS
from gymdesk.domain.imports.processors.csv_processor import MEMBER_IMPORT_TEMPLATE
from gymdesk.domain.imports.service import ImportRunRegistry, MemberImportService, preview_upload
from gymdesk.integrations.storage import StorageError
from gymdesk.utils.date import DATE_FORMATS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/member-imports", tags=["member-imports"])


def _parse_column_mapping(raw: str) -> Dict[str, Any]:
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"column_mapping is not valid JSON: {e}") from e
    if not isinstance(mapping, dict):
        raise HTTPException(status_code=400, detail="column_mapping must be a JSON object")
    return mapping


@router.get("/template")
async def download_member_import_template():
    return Response(
        content=MEMBER_IMPORT_TEMPLATE,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="member-import-template.csv"'},
    )


@router.post("/preview", response_model=ImportPreviewResponse)
async def preview_member_import(file: UploadFile = File(...)):
    content = await file.read()
    try:
        preview = preview_upload(file.filename or "", content)
    except ImportValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return ImportPreviewResponse(
        success=True,
        file_name=preview.file_name,
        headers=preview.headers,
        preview_rows=preview.preview_rows,
        total_rows=preview.total_rows,
        suggested_mapping={str(index): target for index, target in preview.suggested_mapping.items()},
        date_samples=preview.date_samples,
        detected_date_formats=preview.detected_date_formats,
        date_formats=[DateFormatOption(name=spec.name, example=spec.example) for spec in DATE_FORMATS],
        member_fields=list(MEMBER_FIELDS),
        required_fields=list(REQUIRED_FIELDS),
    )


@router.post("", response_model=ImportJobResponse, status_code=202)
async def start_member_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    subaccount_id: str = Form(...),
    column_mapping: str = Form(...),
    date_format: Optional[str] = Form(None),
    uploaded_by: Optional[str] = Form(None),
    store: DataStore = Depends(get_data_store),
    registry: ImportRunRegistry = Depends(get_run_registry),
):
    mapping = _parse_column_mapping(column_mapping)
    service = build_import_service(subaccount_id, store, registry)
    content = await file.read()

    try:
        job, run = service.start_import(
            file_name=file.filename or "",
            content=content,
            mapping=mapping,
            date_format=date_format or None,
            uploaded_by=uploaded_by,
        )
    except ImportValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ScopeViolationError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e

    background_tasks.add_task(run)
    logger.info("Scheduled import job %s (%d rows)", job.id, job.total_rows)
    return ImportJobResponse(success=True, job=job)


@router.get("", response_model=ImportJobListResponse)
async def list_member_imports(
    limit: int = 50,
    offset: int = 0,
    service: MemberImportService = Depends(build_import_service),
):
    jobs, total = service.list_jobs(limit=limit, offset=offset)
    return ImportJobListResponse(
        success=True,
        jobs=jobs,
        total_count=total,
        limit=limit,
        offset=offset,
        summary=ImportSummary(**service.summary()),
    )


@router.get("/{job_id}", response_model=ImportJobResponse)
async def get_member_import(job_id: str, service: MemberImportService = Depends(build_import_service)):
    try:
        job = service.get_job_status(job_id)
    except ImportJobNotFoundError as e:
        raise HTTPException(status_code=404, detail="Import job not found") from e
    return ImportJobResponse(success=True, job=job)


@router.post("/{job_id}/cancel", response_model=ImportJobResponse)
async def cancel_member_import(job_id: str, service: MemberImportService = Depends(build_import_service)):
    try:
        job = service.cancel(job_id)
    except ImportJobNotFoundError as e:
        raise HTTPException(status_code=404, detail="Import job not found") from e
    return ImportJobResponse(success=True, job=job)


@router.post("/{job_id}/reprocess", response_model=ImportJobResponse, status_code=202)
async def reprocess_member_import(
    job_id: str,
    background_tasks: BackgroundTasks,
    service: MemberImportService = Depends(build_import_service),
):
    try:
        job, run = service.reprocess_import(job_id)
    except ImportJobNotFoundError as e:
        raise HTTPException(status_code=404, detail="Import job not found") from e
    except ImportValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Could not read the stored file: {e}") from e

    background_tasks.add_task(run)
    return ImportJobResponse(success=True, job=job)
