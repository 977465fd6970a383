"""Percentile-driven persona derivation from per-user activity."""

from dataclasses import dataclass, field
from datetime import datetime
from math import floor
from typing import Callable, Iterable, Optional, Sequence

import structlog

from .config import PersonaDerivationOptions
from .models import (
    EventTypeCount,
    PersonaDefinition,
    PersonaDerivationResult,
    PersonaMetrics,
    PersonaRule,
    Window,
)
from .normalize import RawEvent, get_event_time, get_event_type, get_user_id
from .windows import resolve_range

logger = structlog.get_logger()

VIEW_KEYWORDS = ("view", "page_view", "screen_view", "product_view")
CLICK_KEYWORDS = ("click", "tap", "press")
CONVERSION_KEYWORDS = (
    "purchase",
    "checkout",
    "order",
    "payment",
    "subscribe",
    "signup",
    "sign_up",
    "complete",
)

CONVERTER_MIN_RATE = 0.2
TOP_EVENTS_LIMIT = 5


@dataclass
class UserStats:
    """Running behavioral counters for one user."""

    event_count: int = 0
    event_types: set[str] = field(default_factory=set)
    first_event_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
    event_type_counts: dict[str, int] = field(default_factory=dict)
    view_count: int = 0
    click_count: int = 0
    conversion_count: int = 0

    def add(self, event_type: str, event_time: datetime) -> None:
        self.event_count += 1
        self.event_types.add(event_type)
        self.event_type_counts[event_type] = self.event_type_counts.get(event_type, 0) + 1
        if self.first_event_at is None or event_time < self.first_event_at:
            self.first_event_at = event_time
        if self.last_event_at is None or event_time > self.last_event_at:
            self.last_event_at = event_time

        if matches_keyword(event_type, VIEW_KEYWORDS):
            self.view_count += 1
        if matches_keyword(event_type, CLICK_KEYWORDS):
            self.click_count += 1
        if matches_keyword(event_type, CONVERSION_KEYWORDS):
            self.conversion_count += 1

    @property
    def unique_event_types(self) -> int:
        return len(self.event_types)

    @property
    def active_span_minutes(self) -> float:
        if self.first_event_at is None or self.last_event_at is None:
            return 0.0
        return (self.last_event_at - self.first_event_at).total_seconds() / 60

    @property
    def conversion_rate(self) -> float:
        denominator = self.view_count + self.click_count
        return self.conversion_count / denominator if denominator > 0 else 0.0


@dataclass(frozen=True)
class PersonaCandidate:
    name: str
    description: str
    rule: PersonaRule
    predicate: Callable[[UserStats], bool]


def matches_keyword(value: str, keywords: Sequence[str]) -> bool:
    """Case-insensitive substring match against any keyword."""
    lower = value.lower()
    return any(keyword in lower for keyword in keywords)


def percentile(values: Iterable[float], pct: float) -> float:
    """
    Nearest-rank percentile without interpolation.

    Picks ``sorted(values)[floor(pct * n)]`` with the index clamped to the
    valid range; an empty population yields 0.
    """
    sorted_values = sorted(values)
    if not sorted_values:
        return 0
    index = min(len(sorted_values) - 1, max(0, floor(pct * len(sorted_values))))
    return sorted_values[index]


def accumulate_user_stats(events: Iterable[RawEvent], analysis_range: Window) -> dict[str, UserStats]:
    users: dict[str, UserStats] = {}
    for event in events:
        event_time = get_event_time(event)
        if event_time is None or not analysis_range.contains(event_time):
            continue

        user_id = get_user_id(event)
        stats = users.get(user_id)
        if stats is None:
            stats = UserStats()
            users[user_id] = stats
        stats.add(get_event_type(event), event_time)
    return users


def build_metrics(users: Sequence[UserStats]) -> PersonaMetrics:
    if not users:
        return PersonaMetrics()

    event_counts: dict[str, int] = {}
    for user in users:
        for event_type, count in user.event_type_counts.items():
            event_counts[event_type] = event_counts.get(event_type, 0) + count

    top_events = sorted(event_counts.items(), key=lambda item: item[1], reverse=True)[:TOP_EVENTS_LIMIT]
    total = len(users)

    return PersonaMetrics(
        avg_event_count=sum(user.event_count for user in users) / total,
        avg_unique_event_types=sum(user.unique_event_types for user in users) / total,
        avg_active_span_minutes=sum(user.active_span_minutes for user in users) / total,
        avg_conversion_rate=sum(user.conversion_rate for user in users) / total,
        top_events=[EventTypeCount(event_type=name, count=count) for name, count in top_events],
    )


def build_candidates(users: Sequence[UserStats]) -> list[PersonaCandidate]:
    """The fixed cohort candidates, with thresholds taken from this population."""
    event_counts = [user.event_count for user in users]
    unique_counts = [user.unique_event_types for user in users]
    p25_events = percentile(event_counts, 0.25)
    p75_events = percentile(event_counts, 0.75)
    p75_unique = percentile(unique_counts, 0.75)

    return [
        PersonaCandidate(
            name="High Activity",
            description="Users with higher-than-normal activity in the selected window.",
            rule=PersonaRule(kind="activity", field="eventCount", operator="gte", value=p75_events),
            predicate=lambda user: user.event_count >= p75_events,
        ),
        PersonaCandidate(
            name="Low Activity",
            description="Users with minimal engagement recently.",
            rule=PersonaRule(kind="activity", field="eventCount", operator="lte", value=p25_events),
            predicate=lambda user: user.event_count <= p25_events,
        ),
        PersonaCandidate(
            name="Explorers",
            description="Users who touch many different event types.",
            rule=PersonaRule(kind="engagement", field="uniqueEventTypes", operator="gte", value=p75_unique),
            predicate=lambda user: user.unique_event_types >= p75_unique,
        ),
        PersonaCandidate(
            name="Converters",
            description="Users who frequently reach conversion events.",
            rule=PersonaRule(kind="conversion", field="conversionRate", operator="gte", value=CONVERTER_MIN_RATE),
            predicate=lambda user: user.conversion_count > 0 and user.conversion_rate >= CONVERTER_MIN_RATE,
        ),
    ]


def derive_personas(
    events: Iterable[RawEvent],
    options: Optional[PersonaDerivationOptions] = None,
    now: Optional[datetime] = None,
) -> PersonaDerivationResult:
    """
    Derive named cohorts from per-user activity in one analysis range.

    Cohorts smaller than ``min_users`` are discarded; the rest are ordered by
    size and capped at ``max_personas``. When nothing survives but the whole
    population is large enough, a single "All Users" persona is returned.
    """
    options = options or PersonaDerivationOptions()
    project_id = options.resolved_project_id
    analysis_range = resolve_range(
        options.range_start,
        options.range_end,
        now=now,
        days_back=options.days_back,
    )

    users = accumulate_user_stats(events, analysis_range)
    all_users = list(users.values())

    def to_persona(name: str, description: str, rule: PersonaRule, members: list[UserStats]) -> PersonaDefinition:
        return PersonaDefinition(
            project_id=project_id,
            name=name,
            description=description,
            rules=[rule],
            metrics=build_metrics(members),
            sample_size=len(members),
            range_start=analysis_range.start,
            range_end=analysis_range.end,
        )

    cohorts = []
    for candidate in build_candidates(all_users):
        members = [user for user in all_users if candidate.predicate(user)]
        if members and len(members) >= options.min_users:
            cohorts.append((candidate, members))

    cohorts.sort(key=lambda cohort: len(cohort[1]), reverse=True)
    personas = [
        to_persona(candidate.name, candidate.description, candidate.rule, members)
        for candidate, members in cohorts[: options.max_personas]
    ]

    if not cohorts and options.max_personas > 0 and all_users and len(all_users) >= options.min_users:
        personas.append(
            to_persona(
                "All Users",
                "All active users within the selected window.",
                PersonaRule(kind="activity", field="eventCount", operator="gte", value=1),
                all_users,
            )
        )

    total_events = sum(user.event_count for user in all_users)
    logger.info(
        "personas_derived",
        project_id=project_id,
        total_users=len(all_users),
        total_events=total_events,
        personas=[persona.name for persona in personas],
    )
    return PersonaDerivationResult(
        personas=personas,
        total_events=total_events,
        total_users=len(all_users),
        range_start=analysis_range.start,
        range_end=analysis_range.end,
    )
