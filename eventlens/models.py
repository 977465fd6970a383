"""Core domain models produced by the analytics engines."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence, Union

from .normalize import format_instant


@dataclass(frozen=True)
class Window:
    """A closed time interval, inclusive on both ends."""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end

    def to_dict(self) -> dict[str, str]:
        return {"start": format_instant(self.start), "end": format_instant(self.end)}


@dataclass(frozen=True)
class SampleEvent:
    """Identifier of a raw event kept as evidence."""

    id: str
    timestamp: str
    window: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "timestamp": self.timestamp, "window": self.window}


@dataclass(frozen=True)
class WindowSample:
    """Event and unique-user counts of one segment within one window."""

    event_count: int
    unique_users: int

    def to_dict(self) -> dict[str, int]:
        return {"event_count": self.event_count, "unique_users": self.unique_users}


@dataclass(frozen=True)
class IssueEvidence:
    """Raw counters backing an issue, with absolute and percentage deltas."""

    window_a: WindowSample
    window_b: WindowSample
    delta: WindowSample
    delta_pct_event_count: float
    delta_pct_unique_users: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_a": self.window_a.to_dict(),
            "window_b": self.window_b.to_dict(),
            "delta": self.delta.to_dict(),
            "delta_pct": {
                "event_count": self.delta_pct_event_count,
                "unique_users": self.delta_pct_unique_users,
            },
        }


@dataclass(frozen=True)
class IssueSamples:
    """Bounded event and anonymized user samples for external auditing."""

    events: Sequence[SampleEvent] = ()
    users: Sequence[str] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [event.to_dict() for event in self.events],
            "users": list(self.users),
        }


@dataclass(frozen=True)
class Issue:
    """A segment whose events-per-user rate changed between two windows."""

    id: str
    event_type: str
    segment: dict[str, str]
    window_a: Window
    window_b: Window
    value_a: float
    value_b: float
    delta_pct: float
    direction: str
    severity: str
    sample_a: WindowSample
    sample_b: WindowSample
    evidence: IssueEvidence
    samples: IssueSamples
    metric: str = "event_rate"
    summary: Optional[str] = None
    category: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "metric": self.metric,
            "event_type": self.event_type,
            "segment": dict(self.segment),
            "window_a": self.window_a.to_dict(),
            "window_b": self.window_b.to_dict(),
            "value_a": self.value_a,
            "value_b": self.value_b,
            "delta_pct": self.delta_pct,
            "direction": self.direction,
            "severity": self.severity,
            "sample_a": self.sample_a.to_dict(),
            "sample_b": self.sample_b.to_dict(),
            "evidence": self.evidence.to_dict(),
            "samples": self.samples.to_dict(),
            "summary": self.summary,
            "category": self.category,
        }


@dataclass(frozen=True)
class IssueFinding:
    """A natural-language finding returned by the grounding collaborator."""

    evidence_id: str
    summary: str
    category: str


@dataclass(frozen=True)
class PersonaRule:
    """Human-readable rule describing persona membership."""

    kind: str
    field: str
    operator: str
    value: Union[float, str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
        }


@dataclass(frozen=True)
class EventTypeCount:
    event_type: str
    count: int


@dataclass(frozen=True)
class PersonaMetrics:
    """Mean behavioral statistics across a cohort's members."""

    avg_event_count: float = 0.0
    avg_unique_event_types: float = 0.0
    avg_active_span_minutes: float = 0.0
    avg_conversion_rate: float = 0.0
    top_events: Sequence[EventTypeCount] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg_event_count": self.avg_event_count,
            "avg_unique_event_types": self.avg_unique_event_types,
            "avg_active_span_minutes": self.avg_active_span_minutes,
            "avg_conversion_rate": self.avg_conversion_rate,
            "top_events": [
                {"event_type": item.event_type, "count": item.count} for item in self.top_events
            ],
        }


@dataclass(frozen=True)
class PersonaDefinition:
    """A named cohort that survived the minimum-size filter."""

    project_id: str
    name: str
    description: str
    rules: Sequence[PersonaRule]
    metrics: PersonaMetrics
    sample_size: int
    range_start: datetime
    range_end: datetime
    id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "rules": [rule.to_dict() for rule in self.rules],
            "metrics": self.metrics.to_dict(),
            "sample_size": self.sample_size,
            "range_start": format_instant(self.range_start),
            "range_end": format_instant(self.range_end),
        }


@dataclass(frozen=True)
class PersonaSnapshot:
    """Point-in-time copy of a persona's metrics."""

    id: str
    persona_id: str
    metrics: PersonaMetrics
    sample_size: int
    range_start: datetime
    range_end: datetime


@dataclass(frozen=True)
class PersonaDerivationResult:
    """Personas plus summary counters of the analysed range."""

    personas: Sequence[PersonaDefinition]
    total_events: int
    total_users: int
    range_start: datetime
    range_end: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "personas": [persona.to_dict() for persona in self.personas],
            "meta": {
                "total_events": self.total_events,
                "total_users": self.total_users,
                "range_start": format_instant(self.range_start),
                "range_end": format_instant(self.range_end),
            },
        }


@dataclass(frozen=True)
class PersonaStorageResult:
    personas: Sequence[PersonaDefinition] = field(default_factory=list)
    snapshots: Sequence[PersonaSnapshot] = field(default_factory=list)
