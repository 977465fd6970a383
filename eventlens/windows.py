"""Resolve the comparison windows and analysis ranges used by the engines."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .config import WindowSpec
from .errors import InvalidWindowError
from .models import Window
from .normalize import parse_instant

EARLIEST_INSTANT = datetime.min.replace(tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_window(spec: Optional[WindowSpec]) -> Optional[Window]:
    """
    Turn an explicit window spec into a ``Window``.

    Returns ``None`` when the spec or one of its bounds is missing so the
    caller can fall back to a derived window.
    """
    if spec is None or _is_blank(spec.start) or _is_blank(spec.end):
        return None
    start = _parse_bound(spec.start, "start")
    end = _parse_bound(spec.end, "end")
    return build_window(start, end)


def build_window(start: datetime, end: datetime) -> Window:
    if end < start:
        raise InvalidWindowError(
            f"Window end {end.isoformat()} is before its start {start.isoformat()}."
        )
    return Window(start=start, end=end)


def days_before(instant: datetime, days: int, clamp: bool = False) -> datetime:
    """
    Step ``days`` back from ``instant``.

    Results before year 1 raise ``InvalidWindowError``, or are pinned to the
    earliest representable instant when ``clamp`` is set.
    """
    try:
        return instant - timedelta(days=days)
    except OverflowError:
        if clamp:
            return EARLIEST_INSTANT
        raise InvalidWindowError(
            f"A {days}-day span before {instant.isoformat()} is out of the supported date range."
        ) from None


def windows_ending_at(end: datetime, window_days: int, clamp: bool = False) -> tuple[Window, Window]:
    """Return (A, B): A spans ``window_days`` up to ``end``, B the equal period before it."""
    window_a = build_window(days_before(end, window_days, clamp), end)
    window_b = build_window(days_before(window_a.start, window_days, clamp), window_a.start)
    return window_a, window_b


def default_windows(now: Optional[datetime] = None, window_days: int = 7) -> tuple[Window, Window]:
    return windows_ending_at(now or utc_now(), window_days)


def resolve_windows(
    window_a: Optional[WindowSpec],
    window_b: Optional[WindowSpec],
    now: Optional[datetime] = None,
    window_days: int = 7,
) -> tuple[Window, Window]:
    """Use explicit windows where given and fall back to defaults independently."""
    fallback_a, fallback_b = default_windows(now, window_days)
    resolved_a = parse_window(window_a) or fallback_a
    resolved_b = parse_window(window_b) or fallback_b
    return resolved_a, resolved_b


def resolve_range(
    range_start: Any = None,
    range_end: Any = None,
    now: Optional[datetime] = None,
    days_back: int = 30,
) -> Window:
    """Resolve the single persona analysis range."""
    end = _parse_bound(range_end, "range end") if not _is_blank(range_end) else (now or utc_now())
    if _is_blank(range_start):
        start = days_before(end, days_back)
    else:
        start = _parse_bound(range_start, "range start")
    return build_window(start, end)


def _parse_bound(value: Any, label: str) -> datetime:
    instant = parse_instant(value)
    if instant is None:
        raise InvalidWindowError(f"Unparseable window {label}: {value!r}.")
    return instant


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
