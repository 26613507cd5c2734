from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from gymdesk.domain.imports.errors import ImportValidationError, RowError
from gymdesk.utils.date import DateFormatSpec, get_date_format, parse_date_with_format

logger = logging.getLogger(__name__)

SKIP = "skip"

MEMBER_FIELDS = (
    "name",
    "email",
    "phone",
    "gender",
    "dob",
    "join_date",
    "is_active",
    "active_plan",
    "last_payment",
    "next_payment",
)
REQUIRED_FIELDS = ("name",)
DATE_FIELDS = ("dob", "join_date", "last_payment", "next_payment")
TRUTHY_VALUES = frozenset({"true", "1", "yes", "active"})

ColumnMapping = Dict[int, str]


class MemberRecord(BaseModel):
    """A member row ready to insert into ``members``."""
    model_config = ConfigDict(extra="forbid")

    subaccount_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    gender: Optional[str] = None
    dob: Optional[date] = None
    join_date: date
    is_active: bool = True
    active_plan: Optional[str] = None
    last_payment: Optional[date] = None
    next_payment: Optional[date] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        return value

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def normalize_column_mapping(raw: Mapping[Any, Any]) -> ColumnMapping:
    """Turn a mapping with string or int keys into ``{column index: field}``."""
    mapping: ColumnMapping = {}
    for key, target in (raw or {}).items():
        try:
            index = int(key)
        except (TypeError, ValueError):
            raise ImportValidationError(f"Column mapping key '{key}' is not a column index") from None
        if target is None or str(target).strip() == "":
            continue
        mapping[index] = str(target).strip()
    return mapping


def serialize_column_mapping(mapping: ColumnMapping) -> Dict[str, str]:
    return {str(index): target for index, target in sorted(mapping.items())}


def validate_column_mapping(mapping: Mapping[Any, Any], column_count: int) -> ColumnMapping:
    """
    Check a mapping against the file's columns and the member vocabulary.

    Returns the normalized mapping.

    Raises:
        ImportValidationError: unknown column or field, a field mapped twice,
            or a required field left unmapped
    """
    normalized = normalize_column_mapping(mapping)

    for index, target in normalized.items():
        if index < 0 or index >= column_count:
            raise ImportValidationError(
                f"Column index {index} is out of range (file has {column_count} columns)"
            )
        if target != SKIP and target not in MEMBER_FIELDS:
            raise ImportValidationError(f"Unknown member field '{target}'")

    targets = [target for target in normalized.values() if target != SKIP]
    duplicates = sorted({target for target in targets if targets.count(target) > 1})
    if duplicates:
        raise ImportValidationError(f"Fields mapped more than once: {', '.join(duplicates)}")

    missing = [field for field in REQUIRED_FIELDS if field not in targets]
    if missing:
        raise ImportValidationError(
            f"Missing required field mapping: {', '.join(missing)}. "
            "Please map a column to each required field."
        )
    return normalized


def mapped_date_fields(mapping: ColumnMapping) -> List[str]:
    return [target for _, target in sorted(mapping.items()) if target in DATE_FIELDS]


def require_date_format(mapping: ColumnMapping, date_format: Optional[str]) -> Optional[DateFormatSpec]:
    """
    Resolve the job's date format.

    Returns None when no date field is mapped and no format was given.

    Raises:
        ImportValidationError: date fields are mapped without a format, or the
            format name is unknown
    """
    spec = get_date_format(date_format)
    if date_format and spec is None:
        raise ImportValidationError(f"Unknown date format '{date_format}'")

    date_fields = mapped_date_fields(mapping)
    if date_fields and spec is None:
        raise ImportValidationError(
            f"Please select a date format for the mapped date fields: {', '.join(date_fields)}"
        )
    return spec


def sample_date_values(mapping: ColumnMapping, first_row: Sequence[str]) -> Dict[str, str]:
    """Raw values of the mapped date columns in the first data row."""
    samples: Dict[str, str] = {}
    for index, target in sorted(mapping.items()):
        if target in DATE_FIELDS and index < len(first_row) and first_row[index].strip():
            samples[target] = first_row[index].strip()
    return samples


def resolve_plan_id(plan_text: str, plans: Sequence[Mapping[str, Any]]) -> Optional[str]:
    """
    Match plan text against the tenant's plans.

    An exact case-insensitive name match wins. Otherwise a substring match in
    either direction is accepted only when exactly one plan matches.
    """
    needle = (plan_text or "").strip().lower()
    if not needle:
        return None

    named = [(plan, (plan.get("name") or "").strip().lower()) for plan in plans]
    for plan, name in named:
        if name == needle:
            return plan["id"]

    candidates = [plan for plan, name in named if name and (needle in name or name in needle)]
    if len(candidates) == 1:
        return candidates[0]["id"]
    if len(candidates) > 1:
        logger.debug("Plan text '%s' is ambiguous across %d plans", plan_text, len(candidates))
    return None


def build_member_record(
    row: Sequence[str],
    mapping: ColumnMapping,
    *,
    subaccount_id: str,
    date_format: Optional[DateFormatSpec],
    plans: Sequence[Mapping[str, Any]],
    today: Optional[date] = None,
) -> Tuple[MemberRecord, List[str]]:
    """
    Apply a column mapping to one CSV row.

    Returns the record plus notes about values that were dropped (dates that
    did not parse, plans that did not resolve).

    Raises:
        RowError: the row has no usable name or fails validation
    """
    data: Dict[str, Any] = {}
    notes: List[str] = []

    for index, target in sorted(mapping.items()):
        if target == SKIP or index >= len(row):
            continue
        value = (row[index] or "").strip()
        if not value:
            continue

        if target in DATE_FIELDS:
            parsed = parse_date_with_format(value, date_format, log_context=target) if date_format else None
            if parsed is None:
                notes.append(f"Invalid {target} '{value}', field skipped")
            else:
                data[target] = parsed
        elif target == "is_active":
            data[target] = value.lower() in TRUTHY_VALUES
        elif target == "active_plan":
            plan_id = resolve_plan_id(value, plans)
            if plan_id is None:
                notes.append(f"Plan '{value}' not found, field skipped")
            else:
                data[target] = plan_id
        else:
            data[target] = value

    if not data.get("name"):
        raise RowError("Name is required")

    data.setdefault("join_date", today or date.today())
    try:
        record = MemberRecord(subaccount_id=subaccount_id, **data)
    except ValidationError as e:
        messages = "; ".join(error["msg"].removeprefix("Value error, ") for error in e.errors())
        raise RowError(messages) from e
    return record, notes
