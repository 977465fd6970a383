import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session

from eventlens.adapters import SQLAlchemyEventStore, create_tables
from eventlens.config import IssueDetectionOptions, PersonaDerivationOptions
from eventlens.issues import detect_issues
from eventlens.personas import derive_personas

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def db():
    engine = create_engine("sqlite://")
    create_tables(engine)
    with Session(engine) as session:
        yield session


def _events():
    return [
        {"$insert_id": "e1", "event_type": "page_view", "user_id": "u1", "country": "TH",
         "event_time": "2026-05-31 10:00:00.123456"},
        {"uuid": "e2", "event_type": "page_view", "user_id": "u1", "country": "TH",
         "event_time": (NOW - timedelta(days=2)).isoformat()},
        {"$insert_id": "e3", "event_type": "purchase", "user_id": "u2", "country": "TH",
         "event_time": (NOW - timedelta(days=9)).isoformat()},
        {"event_type": "orphan", "user_id": "u3", "event_time": NOW.isoformat()},
        {"$insert_id": "e4", "event_type": "page_view", "user_id": "u4"},
    ]


def test_save_events_skips_events_without_insert_id(db):
    store = SQLAlchemyEventStore(db)

    saved, skipped = store.save_events(_events())
    saved_again, _ = store.save_events(_events()[:1])

    assert (saved, skipped) == (4, 1)
    assert saved_again == 1
    count = db.execute(text("SELECT COUNT(*) FROM events")).scalar_one()
    assert count == 4
    event_time = db.execute(text("SELECT event_time FROM events WHERE insert_id = 'e1'")).scalar_one()
    assert event_time == "2026-05-31T10:00:00.123Z"


def test_fetch_events_filters_on_normalized_time(db):
    store = SQLAlchemyEventStore(db)
    store.save_events(_events())

    everything = store.fetch_events()
    recent = store.fetch_events(NOW - timedelta(days=7), NOW)

    assert [event.get("$insert_id", event.get("uuid")) for event in everything] == ["e1", "e2", "e3", "e4"]
    assert [event.get("$insert_id", event.get("uuid")) for event in recent] == ["e1", "e2"]


def test_latest_event_time_reads_the_newest_stored_timestamp(db):
    store = SQLAlchemyEventStore(db)
    assert store.latest_event_time() is None

    store.save_events(list(reversed(_events())))

    assert store.latest_event_time() == datetime(2026, 5, 31, 10, 0, 0, 123000, tzinfo=timezone.utc)


def test_upsert_issues_overwrites_by_id(db):
    store = SQLAlchemyEventStore(db)
    events = _events()[:3]
    issues = detect_issues(events, IssueDetectionOptions(min_users=1, min_delta_pct=0), now=NOW)

    assert store.upsert_issues(issues) == 1
    assert store.upsert_issues(issues) == 1

    payloads = store.fetch_issue_payloads()
    assert len(payloads) == 1
    assert payloads[0]["id"] == issues[0].id
    assert payloads[0]["segment"] == {"country": "TH"}
    assert payloads[0]["window_a"]["end"] == "2026-06-01T00:00:00.000Z"


def test_save_personas_upserts_and_snapshots(db):
    store = SQLAlchemyEventStore(db)
    result = derive_personas(_events(), PersonaDerivationOptions(min_users=1, project_id="shop"), now=NOW)

    first = store.save_personas(result.personas)
    second = store.save_personas(result.personas)

    assert [persona.id for persona in first.personas] == [persona.id for persona in second.personas]
    assert all(persona.id for persona in first.personas)
    assert len(second.snapshots) == len(result.personas)
    persona_rows = db.execute(text("SELECT COUNT(*) FROM personas")).scalar_one()
    snapshot_rows = db.execute(text("SELECT COUNT(*) FROM persona_snapshots")).scalar_one()
    assert persona_rows == len(result.personas)
    assert snapshot_rows == 2 * len(result.personas)
    rules = db.execute(text("SELECT rules_json FROM personas WHERE name = :name"), {"name": result.personas[0].name}).scalar_one()
    assert json.loads(rules)[0]["field"] in {"eventCount", "uniqueEventTypes", "conversionRate"}


def test_save_personas_with_nothing_to_store(db):
    result = SQLAlchemyEventStore(db).save_personas([])

    assert list(result.personas) == []
    assert list(result.snapshots) == []
