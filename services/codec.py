"""Conversion between flat table rows and record dictionaries.

Cells only hold scalars, so a handful of fields are stored as JSON text and
rebuilt on read. Timestamp columns are normalised to a single canonical
ISO-8601 form so clients never see the mix of formats that older rows carry.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Sequence

import pytz
from dateutil.parser import parse as dateutil_parse

logger = logging.getLogger(__name__)

# Composite fields and the empty value substituted when a cell cannot be read.
COMPOSITE_FIELDS: Dict[str, Callable[[], Any]] = {
    "scoreBreakdown": dict,
    "tags": list,
    "assignmentHistory": list,
    "metadata": dict,
}

TIMESTAMP_FIELDS = frozenset({"nextFollowUp", "lastModified", "lastContacted"})


def is_composite_field(name: str) -> bool:
    return name in COMPOSITE_FIELDS


def is_timestamp_field(name: str) -> bool:
    return "date" in name or "Date" in name or name in TIMESTAMP_FIELDS


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    moment = moment.astimezone(pytz.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def to_iso_timestamp(value: Any, tz_name: str = "UTC") -> str:
    """Normalise ``value`` to the canonical UTC timestamp string.

    Naive values are read in ``tz_name``. Numbers are epoch milliseconds.
    Raises ``ValueError`` when the value is not a recognisable timestamp.
    """
    if isinstance(value, bool):
        raise ValueError(f"Could not parse timestamp value {value!r}")
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        try:
            return format_timestamp(datetime.fromtimestamp(value / 1000.0, tz=timezone.utc))
        except (OverflowError, OSError) as exc:
            raise ValueError(f"Could not parse timestamp value {value!r}") from exc
    else:
        try:
            parsed = dateutil_parse(str(value))
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"Could not parse timestamp value {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = pytz.timezone(tz_name).localize(parsed)
    return format_timestamp(parsed)


def _decode_composite(name: str, value: Any) -> Any:
    empty = COMPOSITE_FIELDS[name]
    expected = type(empty())
    if isinstance(value, expected):
        return value
    if not isinstance(value, str) or not value.strip():
        return empty()
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        logger.debug("Discarding unreadable %s cell: %r", name, value)
        return empty()
    if not isinstance(parsed, expected):
        logger.debug("Discarding %s cell with unexpected shape: %r", name, value)
        return empty()
    return parsed


def decode_cell(name: str, value: Any, tz_name: str = "UTC") -> Any:
    if value is None:
        value = ""
    if is_composite_field(name):
        return _decode_composite(name, value)
    if is_timestamp_field(name) and value != "":
        try:
            return to_iso_timestamp(value, tz_name)
        except ValueError:
            logger.debug("Leaving unparseable %s cell as-is: %r", name, value)
            return value
    return value


def encode_cell(name: str, value: Any) -> Any:
    if value is None:
        return ""
    if is_composite_field(name) and isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def decode_row(headers: Sequence[str], raw_row: Sequence[Any], tz_name: str = "UTC") -> Dict[str, Any]:
    """Build a record from ``raw_row``; short rows read as empty cells."""
    record: Dict[str, Any] = {}
    for position, header in enumerate(headers):
        value = raw_row[position] if position < len(raw_row) else ""
        record[header] = decode_cell(header, value, tz_name)
    return record


def encode_row(headers: Sequence[str], record: Mapping[str, Any]) -> List[Any]:
    """Lay ``record`` out in header order; fields outside ``headers`` are dropped."""
    return [encode_cell(header, record.get(header)) for header in headers]


__all__ = [
    "COMPOSITE_FIELDS",
    "TIMESTAMP_FIELDS",
    "decode_cell",
    "decode_row",
    "encode_cell",
    "encode_row",
    "format_timestamp",
    "is_composite_field",
    "is_timestamp_field",
    "to_iso_timestamp",
    "utc_now",
]
