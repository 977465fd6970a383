from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from eventlens.config import IssueDetectionOptions, IssueFindOptions, PersonaDerivationOptions, Settings
from eventlens.errors import GroundingUnavailableError, TooManyEventsError
from eventlens.models import IssueFinding, PersonaStorageResult
from eventlens.normalize import get_event_time
from eventlens.service import AnalyticsService

NOW = datetime(2026, 5, 1, tzinfo=timezone.utc)


def _event(days_ago, user, event_type="page_view", country="TH"):
    return {
        "event_time": (NOW - timedelta(days=days_ago)).isoformat(),
        "user_id": user,
        "event_type": event_type,
        "country": country,
        "$insert_id": f"{user}-{days_ago}-{event_type}",
    }


EVENTS = [
    _event(1, "u1"),
    _event(1, "u1", "click"),
    _event(2, "u2"),
    _event(2, "u2", "purchase"),
    _event(9, "u3"),
    _event(10, "u4"),
]


class FakeRepo:
    def __init__(self, events=EVENTS):
        self.events = events
        self.last_range = None

    def fetch_events(self, start_date=None, end_date=None):
        self.last_range = (start_date, end_date)
        selected = []
        for event in self.events:
            event_time = get_event_time(event)
            if start_date is not None and (event_time is None or event_time < start_date):
                continue
            if end_date is not None and (event_time is None or event_time > end_date):
                continue
            selected.append(event)
        return selected

    def latest_event_time(self):
        times = [get_event_time(event) for event in self.events]
        return max((time for time in times if time is not None), default=None)


class FakeIssueStore:
    def __init__(self):
        self.saved = []

    def upsert_issues(self, issues):
        self.saved.extend(issues)
        return len(issues)


class FakePersonaStore:
    def save_personas(self, personas):
        return PersonaStorageResult(
            personas=[replace(persona, id=f"p{i}") for i, persona in enumerate(personas)],
            snapshots=[],
        )


class FakeGrounder:
    def __init__(self):
        self.calls = 0

    def ground(self, candidates, window_a, window_b):
        self.calls += 1
        return [IssueFinding(evidence_id=candidates[0].id, summary="Views doubled", category="engagement")]


def test_detect_issues_fetches_both_windows_and_persists():
    repo = FakeRepo()
    store = FakeIssueStore()
    service = AnalyticsService(repo, issue_store=store)

    issues = service.detect_issues(IssueDetectionOptions(min_users=1), now=NOW)

    assert repo.last_range == (NOW - timedelta(days=14), NOW)
    assert len(issues) == 1
    assert issues[0].delta_pct == 100.0
    assert store.saved == issues


def test_find_issues_requires_a_grounder():
    service = AnalyticsService(FakeRepo())

    with pytest.raises(GroundingUnavailableError):
        service.find_issues()


def test_find_issues_reads_only_the_windows_before_the_latest_event():
    repo = FakeRepo()
    grounder = FakeGrounder()
    service = AnalyticsService(repo, grounder=grounder)

    issues = service.find_issues(IssueFindOptions(segment_by=["country"]))

    assert repo.last_range == (NOW - timedelta(days=15), NOW - timedelta(days=1))
    assert grounder.calls == 1
    assert [issue.summary for issue in issues] == ["Views doubled"]
    assert issues[0].id == "ai_1_country_TH"


def test_derive_personas_uses_resolved_range_and_store_ids():
    repo = FakeRepo()
    service = AnalyticsService(repo, persona_store=FakePersonaStore())

    result = service.derive_personas(PersonaDerivationOptions(min_users=1, days_back=30), now=NOW)

    assert repo.last_range == (NOW - timedelta(days=30), NOW)
    assert result.personas
    assert [persona.id for persona in result.personas] == [f"p{i}" for i in range(len(result.personas))]


def test_batches_over_the_limit_are_rejected():
    service = AnalyticsService(FakeRepo(), settings=Settings(MAX_EVENTS=3))

    with pytest.raises(TooManyEventsError) as excinfo:
        service.derive_personas(now=NOW)

    assert excinfo.value.count == len(EVENTS)
    assert excinfo.value.limit == 3


def test_find_issues_ignores_old_history_when_counting_the_batch():
    history = [_event(400 + day, f"old{day}") for day in range(10)]
    repo = FakeRepo(events=history + EVENTS)
    service = AnalyticsService(repo, grounder=FakeGrounder(), settings=Settings(MAX_EVENTS=len(EVENTS)))

    issues = service.find_issues(IssueFindOptions(segment_by=["country"]))

    assert [issue.id for issue in issues] == ["ai_1_country_TH"]


def test_find_issues_on_an_empty_store_skips_the_grounder():
    grounder = FakeGrounder()
    service = AnalyticsService(FakeRepo(events=[]), grounder=grounder)

    assert service.find_issues() == []
    assert grounder.calls == 0
