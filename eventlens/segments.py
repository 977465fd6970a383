"""Group normalized events into segments with per-window counters."""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from .models import SampleEvent, Window, WindowSample
from .normalize import RawEvent, format_instant, get_event_id, get_event_time, get_user_id, segment_key

WINDOW_A = "A"
WINDOW_B = "B"


@dataclass
class SegmentStats:
    """Counters of one segment within one window."""

    event_count: int = 0
    unique_users: set[str] = field(default_factory=set)
    sample_events: list[SampleEvent] = field(default_factory=list)
    sample_users: list[str] = field(default_factory=list)

    def record(
        self,
        user_id: str,
        event_id: Optional[str],
        timestamp: str,
        label: str,
        sample_size: int,
    ) -> None:
        self.event_count += 1
        self.unique_users.add(user_id)
        if event_id and len(self.sample_events) < sample_size:
            self.sample_events.append(SampleEvent(id=event_id, timestamp=timestamp, window=label))
        if user_id not in self.sample_users and len(self.sample_users) < sample_size:
            self.sample_users.append(user_id)

    @property
    def user_count(self) -> int:
        return len(self.unique_users)

    def summary(self) -> WindowSample:
        return WindowSample(event_count=self.event_count, unique_users=self.user_count)


@dataclass
class SegmentEntry:
    values: dict[str, str]
    window_a: SegmentStats = field(default_factory=SegmentStats)
    window_b: SegmentStats = field(default_factory=SegmentStats)


def aggregate_segments(
    events: Iterable[RawEvent],
    segment_by: Sequence[str],
    window_a: Window,
    window_b: Window,
    sample_size: int = 3,
    event_type: Optional[str] = None,
) -> dict[str, SegmentEntry]:
    """
    Accumulate per-segment, per-window stats in a single pass.

    Each event lands in at most one window: A is checked before B, so an event
    inside an overlap counts toward A only. Events outside both windows or
    without a resolvable timestamp are dropped. Samples are first-seen, so the
    input order decides which ones survive the cap.

    Returns:
        Segment key to entry, in order of first appearance.
    """
    segments: dict[str, SegmentEntry] = {}

    for event in events:
        if event_type and event.get("event_type") != event_type:
            continue

        event_time = get_event_time(event)
        if event_time is None:
            continue

        if window_a.contains(event_time):
            label = WINDOW_A
        elif window_b.contains(event_time):
            label = WINDOW_B
        else:
            continue

        key, values = segment_key(event, segment_by)
        entry = segments.get(key)
        if entry is None:
            entry = SegmentEntry(values=values)
            segments[key] = entry

        target = entry.window_a if label == WINDOW_A else entry.window_b
        target.record(
            user_id=get_user_id(event),
            event_id=get_event_id(event),
            timestamp=format_instant(event_time),
            label=label,
            sample_size=sample_size,
        )

    return segments
