"""Resolve heterogeneous event records to timestamps, identities and segments."""

import hashlib
import math
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

RawEvent = Mapping[str, Any]

EVENT_TIME_FIELDS = (
    "event_time",
    "server_received_time",
    "server_upload_time",
    "client_event_time",
)

USER_ID_FIELDS = ("user_id", "device_id", "amplitude_id", "uuid")

ANONYMOUS_USER = "anonymous"
UNKNOWN_VALUE = "unknown"
ALL_SEGMENT = "all"

_TIMESTAMP_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})[ T](\d{2}:\d{2}:\d{2})(?:\.(\d{1,6}))?$")
# fromisoformat before 3.11 only takes 3- or 6-digit fractions
_ISO_FRACTION_PATTERN = re.compile(r"(?<=\d{2}:\d{2}:\d{2})\.(\d+)(?=[+-]\d{2}:\d{2}$|$)")


def normalize_timestamp(value: str) -> str:
    """
    Rewrite ``YYYY-MM-DD HH:MM:SS[.ffffff]`` into strict ISO-8601 UTC.

    The fraction is padded or truncated to milliseconds. Values in any other
    shape are returned trimmed but otherwise untouched.
    """
    trimmed = value.strip()
    match = _TIMESTAMP_PATTERN.match(trimmed)
    if not match:
        return trimmed
    date, time, fractional = match.group(1), match.group(2), match.group(3) or ""
    millis = fractional.ljust(3, "0")[:3]
    return f"{date}T{time}.{millis}Z"


def parse_instant(value: Any) -> Optional[datetime]:
    """Parse a datetime, epoch-millisecond number or timestamp string into aware UTC."""
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        normalized = normalize_timestamp(value)
        if not normalized:
            return None
        if normalized.endswith(("Z", "z")):
            normalized = normalized[:-1] + "+00:00"
        normalized = _ISO_FRACTION_PATTERN.sub(_pad_fraction, normalized)
        try:
            return _as_utc(datetime.fromisoformat(normalized))
        except ValueError:
            return None
    return None


def format_instant(value: datetime) -> str:
    """Render an instant as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    utc_value = _as_utc(value)
    return utc_value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def get_event_time(event: RawEvent) -> Optional[datetime]:
    for field in EVENT_TIME_FIELDS:
        instant = parse_instant(event.get(field))
        if instant is not None:
            return instant
    return None


def get_user_id(event: RawEvent) -> str:
    for field in USER_ID_FIELDS:
        value = event.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return _number_to_str(value)
    return ANONYMOUS_USER


def get_event_type(event: RawEvent, default: str = UNKNOWN_VALUE) -> str:
    value = event.get("event_type")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def get_event_id(event: RawEvent) -> Optional[str]:
    insert_id = event.get("$insert_id")
    if isinstance(insert_id, str) and insert_id.strip():
        return insert_id.strip()
    uuid = event.get("uuid")
    if isinstance(uuid, str) and uuid.strip():
        return uuid.strip()
    event_id = event.get("event_id")
    if isinstance(event_id, (int, float)) and not isinstance(event_id, bool):
        return _number_to_str(event_id)
    return None


def segment_key(event: RawEvent, segment_by: Sequence[str]) -> tuple[str, dict[str, str]]:
    """Build the ``field:value|field:value`` key and the value map for an event."""
    if not segment_by:
        return ALL_SEGMENT, {}

    values: dict[str, str] = {}
    parts = []
    for field in segment_by:
        raw = event.get(field)
        value = UNKNOWN_VALUE if raw is None else (_to_text(raw).strip() or UNKNOWN_VALUE)
        values[field] = value
        parts.append(f"{field}:{value}")
    return "|".join(parts), values


def anonymize_user_id(user_id: str) -> str:
    digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
    return f"user_{digest[:8]}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _number_to_str(value: float) -> str:
    # 42.0 -> "42" so numeric ids match their integer spelling
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _number_to_str(value)
    return str(value)


def _pad_fraction(match: "re.Match[str]") -> str:
    return "." + match.group(1).ljust(6, "0")[:6]
