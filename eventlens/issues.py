"""Segment-diff issue detection over two time windows."""

import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

import structlog

from .config import IssueDetectionOptions, IssueFindOptions
from .models import Issue, IssueEvidence, IssueFinding, IssueSamples, Window, WindowSample
from .normalize import ALL_SEGMENT, RawEvent, anonymize_user_id, get_event_time
from .segments import SegmentEntry, SegmentStats, aggregate_segments
from .windows import resolve_windows, windows_ending_at

logger = structlog.get_logger()

HIGH_SEVERITY_PCT = 50.0
MEDIUM_SEVERITY_PCT = 25.0

_KEY_SANITIZER = re.compile(r"[^a-zA-Z0-9_-]+")

Grounder = Callable[[Sequence[Issue], Window, Window], Sequence[IssueFinding]]


@dataclass(frozen=True)
class CandidateSet:
    candidates: list[Issue]
    window_a: Optional[Window]
    window_b: Optional[Window]


def compute_rate(event_count: int, unique_users: int) -> float:
    """Mean events per unique user; 0 when the window has no users."""
    if unique_users == 0:
        return 0.0
    return event_count / unique_users


def compute_delta_pct(value_a: float, value_b: float) -> float:
    if value_b == 0:
        return 0.0 if value_a == 0 else 100.0
    return ((value_a - value_b) / value_b) * 100


def classify_direction(delta_pct: float) -> str:
    if delta_pct > 0:
        return "increase"
    if delta_pct < 0:
        return "decrease"
    return "flat"


def classify_severity(delta_pct: float) -> str:
    abs_delta = abs(delta_pct)
    if abs_delta >= HIGH_SEVERITY_PCT:
        return "high"
    if abs_delta >= MEDIUM_SEVERITY_PCT:
        return "medium"
    return "low"


def build_evidence(window_a: SegmentStats, window_b: SegmentStats) -> IssueEvidence:
    return IssueEvidence(
        window_a=window_a.summary(),
        window_b=window_b.summary(),
        delta=WindowSample(
            event_count=window_a.event_count - window_b.event_count,
            unique_users=window_a.user_count - window_b.user_count,
        ),
        delta_pct_event_count=compute_delta_pct(window_a.event_count, window_b.event_count),
        delta_pct_unique_users=compute_delta_pct(window_a.user_count, window_b.user_count),
    )


def build_samples(window_a: SegmentStats, window_b: SegmentStats, sample_size: int) -> IssueSamples:
    """Merge both windows' samples, A first, with user ids anonymized."""
    events = (window_a.sample_events + window_b.sample_events)[: sample_size * 2]
    users: list[str] = []
    for user_id in window_a.sample_users + window_b.sample_users:
        anonymized = anonymize_user_id(user_id)
        if anonymized not in users:
            users.append(anonymized)
    return IssueSamples(events=events, users=users[:sample_size])


def sanitize_key(key: str) -> str:
    return _KEY_SANITIZER.sub("_", key)


def build_issue(
    issue_id: str,
    event_type: str,
    entry: SegmentEntry,
    window_a: Window,
    window_b: Window,
    sample_size: int,
) -> Issue:
    stats_a, stats_b = entry.window_a, entry.window_b
    value_a = compute_rate(stats_a.event_count, stats_a.user_count)
    value_b = compute_rate(stats_b.event_count, stats_b.user_count)
    delta_pct = compute_delta_pct(value_a, value_b)

    return Issue(
        id=issue_id,
        event_type=event_type,
        segment=dict(entry.values),
        window_a=window_a,
        window_b=window_b,
        value_a=value_a,
        value_b=value_b,
        delta_pct=delta_pct,
        direction=classify_direction(delta_pct),
        severity=classify_severity(delta_pct),
        sample_a=stats_a.summary(),
        sample_b=stats_b.summary(),
        evidence=build_evidence(stats_a, stats_b),
        samples=build_samples(stats_a, stats_b, sample_size),
    )


def rank_issues(issues: Iterable[Issue], top_n: int) -> list[Issue]:
    """Sort by absolute delta, largest first; ties keep their input order."""
    ranked = sorted(issues, key=lambda issue: abs(issue.delta_pct), reverse=True)
    return ranked[:top_n]


def detect_issues(
    events: Iterable[RawEvent],
    options: Optional[IssueDetectionOptions] = None,
    now: Optional[datetime] = None,
) -> list[Issue]:
    """
    Deterministic issue detection.

    A segment qualifies only when both windows reach ``min_users`` unique
    users and its rate moved by at least ``min_delta_pct`` percent.
    """
    options = options or IssueDetectionOptions()
    event_type = options.event_type.strip() if options.event_type else None
    window_a, window_b = resolve_windows(
        options.window_a,
        options.window_b,
        now=now,
        window_days=options.window_days,
    )

    segments = aggregate_segments(
        events,
        options.segment_by,
        window_a,
        window_b,
        sample_size=options.sample_size,
        event_type=event_type,
    )

    issues: list[Issue] = []
    for key, entry in segments.items():
        if entry.window_a.user_count < options.min_users or entry.window_b.user_count < options.min_users:
            continue

        issue = build_issue(
            f"iss_{len(issues) + 1}_{sanitize_key(key)}",
            event_type or ALL_SEGMENT,
            entry,
            window_a,
            window_b,
            options.sample_size,
        )
        if abs(issue.delta_pct) < options.min_delta_pct:
            continue
        issues.append(issue)

    ranked = rank_issues(issues, options.top_n)
    logger.info(
        "issues_detected",
        segments=len(segments),
        qualifying=len(issues),
        returned=len(ranked),
    )
    return ranked


def build_candidates(
    events: Iterable[RawEvent],
    options: Optional[IssueFindOptions] = None,
) -> CandidateSet:
    """
    Evidence-gathering candidate construction.

    Windows end at the latest event timestamp in the batch. A segment
    qualifies when either window reaches ``min_users``; no delta floor is
    applied so the grounding step sees small movements too.
    """
    options = options or IssueFindOptions()
    events_list = list(events)

    latest = None
    for event in events_list:
        event_time = get_event_time(event)
        if event_time is not None and (latest is None or event_time > latest):
            latest = event_time

    if latest is None:
        return CandidateSet(candidates=[], window_a=None, window_b=None)

    window_a, window_b = windows_ending_at(latest, options.window_days, clamp=True)
    segments = aggregate_segments(
        events_list,
        options.segment_by,
        window_a,
        window_b,
        sample_size=options.sample_size,
    )

    candidates: list[Issue] = []
    for key, entry in segments.items():
        if entry.window_a.user_count < options.min_users and entry.window_b.user_count < options.min_users:
            continue
        candidates.append(
            build_issue(
                f"ai_{len(candidates) + 1}_{sanitize_key(key)}",
                entry.values.get("event_type", ALL_SEGMENT),
                entry,
                window_a,
                window_b,
                options.sample_size,
            )
        )

    logger.debug(
        "issue_candidates_built",
        segments=len(segments),
        candidates=len(candidates),
        window_a_end=window_a.end.isoformat(),
    )
    return CandidateSet(candidates=candidates, window_a=window_a, window_b=window_b)


def find_issues(
    events: Iterable[RawEvent],
    grounder: Grounder,
    options: Optional[IssueFindOptions] = None,
) -> list[Issue]:
    """
    Rank evidence-backed candidates and keep the ones the grounder reports on.

    Findings may cite any candidate, not only the submitted top N; findings
    referencing an unknown candidate id are dropped.
    """
    options = options or IssueFindOptions()
    candidate_set = build_candidates(events, options)
    if not candidate_set.candidates or candidate_set.window_a is None or candidate_set.window_b is None:
        return []

    ranked = rank_issues(candidate_set.candidates, options.top_n)
    findings = grounder(ranked, candidate_set.window_a, candidate_set.window_b)
    if not findings:
        return []

    by_id: dict[str, Issue] = {candidate.id: candidate for candidate in candidate_set.candidates}
    results: list[Issue] = []
    for finding in findings:
        candidate = by_id.get(finding.evidence_id)
        if candidate is None:
            continue
        results.append(replace(candidate, summary=finding.summary, category=finding.category))

    logger.info(
        "issue_findings_grounded",
        candidates=len(candidate_set.candidates),
        submitted=len(ranked),
        findings=len(findings),
        returned=len(results),
    )
    return results
