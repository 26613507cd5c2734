from typing import Dict, List

from pydantic import BaseModel, Field

from gymdesk.domain.analytics.models import AnalyticsReport
from gymdesk.domain.imports.jobs import ImportJob


class DateFormatOption(BaseModel):
    """A selectable date format with an example value."""
    name: str
    example: str


class ImportPreviewResponse(BaseModel):
    """Parsed upload preview with mapping and date format suggestions."""
    success: bool
    file_name: str
    headers: List[str]
    preview_rows: List[List[str]]
    total_rows: int
    suggested_mapping: Dict[str, str] = Field(default_factory=dict)
    date_samples: Dict[str, str] = Field(default_factory=dict)
    detected_date_formats: List[str] = Field(default_factory=list)
    date_formats: List[DateFormatOption] = Field(default_factory=list)
    member_fields: List[str] = Field(default_factory=list)
    required_fields: List[str] = Field(default_factory=list)


class ImportSummary(BaseModel):
    """Counts of import jobs by status."""
    total_imports: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    members_imported: int = 0


class ImportJobResponse(BaseModel):
    """Response wrapper for a single import job."""
    success: bool
    job: ImportJob


class ImportJobListResponse(BaseModel):
    """Response wrapper for a list of import jobs."""
    success: bool
    jobs: List[ImportJob]
    total_count: int
    limit: int
    offset: int
    summary: ImportSummary


class CurrencyInfoResponse(BaseModel):
    code: str
    symbol: str
    name: str


class AnalyticsResponse(BaseModel):
    """Analytics report plus the account currency used to display it."""
    success: bool
    report: AnalyticsReport
    currency: CurrencyInfoResponse
    formatted_totals: Dict[str, str] = Field(default_factory=dict)
