"""
Date parsing utilities for member imports and analytics grouping.

An import job picks one ``DateFormatSpec`` and applies it to every date cell;
cells that do not parse under it yield ``None`` and are left off the record.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

MIN_YEAR = 1900
MAX_YEAR = 2100

MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_failure_stats: dict = {}


@dataclass(frozen=True)
class DateFormatSpec:
    """
    A named date layout.

    ``order`` names what each regex group holds, e.g. ``("day", "month", "year")``.
    """
    name: str
    pattern: "re.Pattern[str]"
    order: Tuple[str, str, str]
    example: str


def _spec(name: str, separator: str, order: Tuple[str, str, str], example: str) -> DateFormatSpec:
    year = r"(\d{4})" if "yyyy" in name else r"(\d{2})"
    groups = [year if part == "year" else r"(\d{1,2})" for part in order]
    sep = re.escape(separator)
    return DateFormatSpec(name, re.compile(f"^{groups[0]}{sep}{groups[1]}{sep}{groups[2]}$"), order, example)


DMY = ("day", "month", "year")
MDY = ("month", "day", "year")
YMD = ("year", "month", "day")

DATE_FORMATS: Tuple[DateFormatSpec, ...] = (
    _spec("dd/mm/yyyy", "/", DMY, "25/12/2023"),
    _spec("mm/dd/yyyy", "/", MDY, "12/25/2023"),
    _spec("yyyy-mm-dd", "-", YMD, "2023-12-25"),
    _spec("yyyy/mm/dd", "/", YMD, "2023/12/25"),
    _spec("dd-mm-yyyy", "-", DMY, "25-12-2023"),
    _spec("mm-dd-yyyy", "-", MDY, "12-25-2023"),
    _spec("dd.mm.yyyy", ".", DMY, "25.12.2023"),
    _spec("mm.dd.yyyy", ".", MDY, "12.25.2023"),
    _spec("dd/mm/yy", "/", DMY, "25/12/23"),
    _spec("mm/dd/yy", "/", MDY, "12/25/23"),
    _spec("dd-mm-yy", "-", DMY, "25-12-23"),
    _spec("mm-dd-yy", "-", MDY, "12-25-23"),
)

_FORMATS_BY_NAME = {spec.name: spec for spec in DATE_FORMATS}


def get_date_format(name: Optional[str]) -> Optional[DateFormatSpec]:
    if not name:
        return None
    return _FORMATS_BY_NAME.get(name.strip().lower())


def expand_two_digit_year(year: int) -> int:
    """Two-digit years above 50 belong to the 1900s, the rest to the 2000s."""
    return 1900 + year if year > 50 else 2000 + year


def _record_parse_failure(value: Any, context: Optional[str], reason: str) -> None:
    """
    Collect failure stats and emit limited logs (sampled warnings + periodic summaries).
    """
    key = context or "default"
    stats = _failure_stats.setdefault(key, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.warning("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, reason)
        return

    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse warnings after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def _resolve(text: str, spec: DateFormatSpec) -> Tuple[Optional[date], Optional[str]]:
    """Return ``(date, None)`` or ``(None, reason)``."""
    match = spec.pattern.match(text)
    if not match:
        return None, f"does not match {spec.name}"

    parts = dict(zip(spec.order, (int(group) for group in match.groups())))
    day, month, year = parts["day"], parts["month"], parts["year"]
    if len(match.group(spec.order.index("year") + 1)) == 2:
        year = expand_two_digit_year(year)

    if not (1 <= month <= 12 and 1 <= day <= 31 and MIN_YEAR <= year <= MAX_YEAR):
        return None, "component out of range"

    try:
        parsed = date(year, month, day)
    except ValueError:
        return None, "not a calendar date"
    if (parsed.year, parsed.month, parsed.day) != (year, month, day):
        return None, "not a calendar date"
    return parsed, None


def parse_date_with_format(value: Any, spec: DateFormatSpec, *, log_context: Optional[str] = None) -> Optional[date]:
    """
    Parse ``value`` under ``spec``.

    Returns None (never raises) when the value does not match the layout,
    when month/day/year fall outside 1-12 / 1-31 / 1900-2100, or when the
    components do not form a real calendar date (31/02/2024).
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    parsed, reason = _resolve(text, spec)
    if parsed is None:
        _record_parse_failure(text, log_context, reason)
    return parsed


def detect_date_formats(values: Iterable[Any]) -> List[str]:
    """Names of the formats under which every non-empty sample parses."""
    samples = [str(value).strip() for value in values if value is not None and str(value).strip()]
    if not samples:
        return []
    return [
        spec.name
        for spec in DATE_FORMATS
        if all(_resolve(sample, spec)[0] is not None for sample in samples)
    ]


def month_key(value: Any) -> Optional[str]:
    """
    Month bucket label such as ``"Jan 2024"``; None when no date can be read.

    Accepts date/datetime objects and ISO strings.
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, (date, datetime)):
        return f"{MONTH_ABBREVIATIONS[value.month - 1]} {value.year}"
    return None


def parse_iso_date(value: Any) -> Optional[date]:
    """Read a date out of a date, datetime or ISO string."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def month_sort_key(label: str) -> Tuple[int, int]:
    """Chronological sort key for ``month_key`` labels; unreadable labels sort last."""
    try:
        abbreviation, year = label.split(" ")
        return int(year), MONTH_ABBREVIATIONS.index(abbreviation) + 1
    except (AttributeError, ValueError):
        return MAX_YEAR + 1, 0
