import csv
import logging
import os
import re
from dataclasses import dataclass, field
from io import StringIO
from typing import Dict, List, Optional, Tuple

from gymdesk.core.config import settings
from gymdesk.domain.imports.errors import ImportValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".csv",)

# Quoted fields are matched whole and kept; spaces and tabs around a delimiter or line edge are dropped.
_FIELD_PADDING = re.compile(r'("(?:[^"]|"")*")|[ \t]+(?=,|\r?\n|$)|(?<=,)[ \t]+|^[ \t]+', re.MULTILINE)

# Checked in order; multi-word patterns come before the single words they contain.
HEADER_SYNONYMS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("last payment",), "last_payment"),
    (("next payment", "due date"), "next_payment"),
    (("plan", "membership", "package"), "active_plan"),
    (("active", "status"), "is_active"),
    (("email",), "email"),
    (("phone", "mobile"), "phone"),
    (("gender", "sex"), "gender"),
    (("birth", "dob"), "dob"),
    (("join", "start", "registration"), "join_date"),
    (("full name", "name"), "name"),
)

MEMBER_IMPORT_TEMPLATE = (
    "name,email,phone,gender,dob,join_date,is_active,active_plan,last_payment,next_payment\n"
    "John Doe,john@example.com,+91 98765 43210,male,15/05/1990,01/01/2024,true,Monthly,01/06/2024,01/07/2024\n"
    "Jane Smith,jane@example.com,+91 91234 56789,female,22/08/1988,15/02/2024,yes,Quarterly,15/05/2024,15/08/2024\n"
)


@dataclass
class ImportPreview:
    """Parsed upload: headers, a display preview, every data row and a suggested mapping."""
    file_name: str
    headers: List[str]
    rows: List[List[str]]
    preview_rows: List[List[str]]
    total_rows: int
    suggested_mapping: Dict[int, str] = field(default_factory=dict)
    date_samples: Dict[str, str] = field(default_factory=dict)
    detected_date_formats: List[str] = field(default_factory=list)


def validate_upload(file_name: str, size: int) -> None:
    """
    Reject anything that is not a CSV within the configured size limit.

    Raises:
        ImportValidationError: unsupported type or file too large
    """
    extension = os.path.splitext(file_name or "")[1].lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise ImportValidationError("Unsupported file type. Please upload a CSV file.")

    max_bytes = settings.import_max_file_size_mb * 1024 * 1024
    if size > max_bytes:
        raise ImportValidationError(
            f"File too large. Maximum size is {settings.import_max_file_size_mb}MB."
        )


def parse_csv_content(file_content: bytes) -> List[List[str]]:
    """
    Decode and split a CSV upload into rows of trimmed cells.

    Delimiters inside double quotes do not split a field, the surrounding
    quotes are removed and a doubled quote inside a quoted field is a literal
    quote. Padding is trimmed outside the quotes only, so ``"  padded  "``
    keeps its spaces. Blank lines are dropped.
    """
    try:
        text_content = file_content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ImportValidationError("File is not valid UTF-8 text.") from e

    trimmed = _FIELD_PADDING.sub(lambda match: match.group(1) or "", text_content)
    reader = csv.reader(StringIO(trimmed))
    rows = []
    try:
        for row in reader:
            if any(row):
                rows.append(row)
    except csv.Error as e:
        raise ImportValidationError(f"Could not parse CSV: {e}") from e
    return rows


def suggest_column_mapping(headers: List[str]) -> Dict[int, str]:
    """
    Guess a target field for each header by substring match.

    Underscores and hyphens count as spaces, so ``last_payment`` matches
    ``last payment``.

    First match wins per header, and each target is only given to the first
    header that matches it. Unmatched headers are left out of the mapping.
    """
    mapping: Dict[int, str] = {}
    assigned = set()
    for index, header in enumerate(headers):
        lowered = re.sub(r"[_\-]+", " ", (header or "").strip().lower())
        if not lowered:
            continue
        for synonyms, target in HEADER_SYNONYMS:
            if any(synonym in lowered for synonym in synonyms):
                if target not in assigned:
                    mapping[index] = target
                    assigned.add(target)
                break
    return mapping


def build_preview(file_name: str, file_content: bytes, *, preview_rows: Optional[int] = None) -> ImportPreview:
    """
    Validate and parse an upload into an ``ImportPreview``.

    Raises:
        ImportValidationError: bad type, too large, or fewer than a header plus one row
    """
    validate_upload(file_name, len(file_content))
    rows = parse_csv_content(file_content)
    if len(rows) < 2:
        raise ImportValidationError("CSV file must have at least a header row and one data row")

    headers, data_rows = rows[0], rows[1:]
    limit = settings.import_preview_rows if preview_rows is None else preview_rows
    logger.info("Parsed %s: %d columns, %d data rows", file_name, len(headers), len(data_rows))

    return ImportPreview(
        file_name=file_name,
        headers=headers,
        rows=data_rows,
        preview_rows=data_rows[:limit],
        total_rows=len(data_rows),
        suggested_mapping=suggest_column_mapping(headers),
    )
