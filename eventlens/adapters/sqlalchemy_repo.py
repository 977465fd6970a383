"""SQLAlchemy storage adapter for EventLens."""

import json
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

import structlog
from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, UniqueConstraint, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..models import Issue, PersonaDefinition, PersonaSnapshot, PersonaStorageResult
from ..normalize import format_instant, get_event_time, get_event_type, get_user_id, parse_instant

logger = structlog.get_logger()

metadata = MetaData()

events_table = Table(
    "events",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("insert_id", String(255), nullable=False, unique=True),
    Column("event_type", String(255)),
    Column("event_time", String(32), index=True),
    Column("user_id", String(255)),
    Column("payload_json", Text, nullable=False),
)

issues_table = Table(
    "issues",
    metadata,
    Column("id", String(512), primary_key=True),
    Column("event_type", String(255), nullable=False),
    Column("severity", String(16), nullable=False),
    Column("delta_pct", Float, nullable=False),
    Column("payload_json", Text, nullable=False),
    Column("updated_at", String(32), nullable=False),
)

personas_table = Table(
    "personas",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("project_id", String(255), nullable=False),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("rules_json", Text, nullable=False),
    Column("metrics_json", Text, nullable=False),
    Column("sample_size", Integer, nullable=False),
    Column("range_start", String(32), nullable=False),
    Column("range_end", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("project_id", "name", name="uq_personas_project_name"),
)

persona_snapshots_table = Table(
    "persona_snapshots",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("persona_id", String(64), nullable=False, index=True),
    Column("metrics_json", Text, nullable=False),
    Column("sample_size", Integer, nullable=False),
    Column("range_start", String(32), nullable=False),
    Column("range_end", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


def create_tables(engine: Engine) -> None:
    metadata.create_all(engine)


class SQLAlchemyEventStore:
    """Stores raw events and derived results in relational tables."""

    def __init__(self, db: Session):
        self.db = db

    def save_events(self, events: Sequence[Mapping[str, Any]]) -> tuple[int, int]:
        """Upsert raw events by insert id; events without one are skipped."""
        rows = []
        for event in events:
            row = _to_event_row(event)
            if row is not None:
                rows.append(row)

        skipped = len(events) - len(rows)
        if rows:
            self.db.execute(
                text(
                    """
                    INSERT INTO events (insert_id, event_type, event_time, user_id, payload_json)
                    VALUES (:insert_id, :event_type, :event_time, :user_id, :payload_json)
                    ON CONFLICT (insert_id) DO UPDATE SET
                        event_type = excluded.event_type,
                        event_time = excluded.event_time,
                        user_id = excluded.user_id,
                        payload_json = excluded.payload_json
                    """
                ),
                rows,
            )
            self.db.commit()

        logger.info("events_saved", saved=len(rows), skipped=skipped)
        return len(rows), skipped

    def fetch_events(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Sequence[Mapping[str, Any]]:
        clauses = []
        params: dict[str, Any] = {}
        if start_date is not None:
            clauses.append("event_time >= :start_date")
            params["start_date"] = format_instant(start_date)
        if end_date is not None:
            clauses.append("event_time <= :end_date")
            params["end_date"] = format_instant(end_date)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        rows = self.db.execute(
            text(f"SELECT payload_json FROM events {where} ORDER BY seq"),
            params,
        ).fetchall()

        result: list[Mapping[str, Any]] = []
        for row in rows:
            payload = _parse_payload(row.payload_json)
            if payload is not None:
                result.append(payload)
        return result

    def latest_event_time(self) -> Optional[datetime]:
        # event_time is fixed-width ISO text, so MAX orders chronologically
        latest = self.db.execute(text("SELECT MAX(event_time) FROM events")).scalar()
        return parse_instant(latest) if latest is not None else None

    def upsert_issues(self, issues: Sequence[Issue]) -> int:
        if not issues:
            return 0
        updated_at = _now_iso()
        self.db.execute(
            text(
                """
                INSERT INTO issues (id, event_type, severity, delta_pct, payload_json, updated_at)
                VALUES (:id, :event_type, :severity, :delta_pct, :payload_json, :updated_at)
                ON CONFLICT (id) DO UPDATE SET
                    event_type = excluded.event_type,
                    severity = excluded.severity,
                    delta_pct = excluded.delta_pct,
                    payload_json = excluded.payload_json,
                    updated_at = excluded.updated_at
                """
            ),
            [
                {
                    "id": issue.id,
                    "event_type": issue.event_type,
                    "severity": issue.severity,
                    "delta_pct": issue.delta_pct,
                    "payload_json": json.dumps(issue.to_dict()),
                    "updated_at": updated_at,
                }
                for issue in issues
            ],
        )
        self.db.commit()
        return len(issues)

    def fetch_issue_payloads(self, limit: int = 20) -> list[dict[str, Any]]:
        """Return stored issues as plain dicts, largest absolute delta first."""
        rows = self.db.execute(
            text(
                """
                SELECT payload_json FROM issues
                ORDER BY ABS(delta_pct) DESC, id
                LIMIT :limit
                """
            ),
            {"limit": limit},
        ).fetchall()
        return [payload for payload in (_parse_payload(row.payload_json) for row in rows) if payload is not None]

    def save_personas(self, personas: Sequence[PersonaDefinition]) -> PersonaStorageResult:
        if not personas:
            return PersonaStorageResult()

        saved_personas: list[PersonaDefinition] = []
        saved_snapshots: list[PersonaSnapshot] = []
        created_at = _now_iso()

        for persona in personas:
            record = persona.to_dict()
            rules_json = json.dumps(record["rules"])
            metrics_json = json.dumps(record["metrics"])
            self.db.execute(
                text(
                    """
                    INSERT INTO personas (
                        id, project_id, name, description, rules_json, metrics_json,
                        sample_size, range_start, range_end, created_at
                    )
                    VALUES (
                        :id, :project_id, :name, :description, :rules_json, :metrics_json,
                        :sample_size, :range_start, :range_end, :created_at
                    )
                    ON CONFLICT (project_id, name) DO UPDATE SET
                        description = excluded.description,
                        rules_json = excluded.rules_json,
                        metrics_json = excluded.metrics_json,
                        sample_size = excluded.sample_size,
                        range_start = excluded.range_start,
                        range_end = excluded.range_end
                    """
                ),
                {
                    "id": uuid.uuid4().hex,
                    "project_id": persona.project_id,
                    "name": persona.name,
                    "description": persona.description,
                    "rules_json": rules_json,
                    "metrics_json": metrics_json,
                    "sample_size": persona.sample_size,
                    "range_start": record["range_start"],
                    "range_end": record["range_end"],
                    "created_at": created_at,
                },
            )
            persona_id = self.db.execute(
                text("SELECT id FROM personas WHERE project_id = :project_id AND name = :name"),
                {"project_id": persona.project_id, "name": persona.name},
            ).scalar_one()

            snapshot_id = uuid.uuid4().hex
            self.db.execute(
                text(
                    """
                    INSERT INTO persona_snapshots (
                        id, persona_id, metrics_json, sample_size, range_start, range_end, created_at
                    )
                    VALUES (
                        :id, :persona_id, :metrics_json, :sample_size, :range_start, :range_end, :created_at
                    )
                    """
                ),
                {
                    "id": snapshot_id,
                    "persona_id": persona_id,
                    "metrics_json": metrics_json,
                    "sample_size": persona.sample_size,
                    "range_start": record["range_start"],
                    "range_end": record["range_end"],
                    "created_at": created_at,
                },
            )

            saved_personas.append(replace(persona, id=persona_id))
            saved_snapshots.append(
                PersonaSnapshot(
                    id=snapshot_id,
                    persona_id=persona_id,
                    metrics=persona.metrics,
                    sample_size=persona.sample_size,
                    range_start=persona.range_start,
                    range_end=persona.range_end,
                )
            )

        self.db.commit()
        logger.info("personas_saved", personas=len(saved_personas))
        return PersonaStorageResult(personas=saved_personas, snapshots=saved_snapshots)


def _to_event_row(event: Mapping[str, Any]) -> Optional[dict[str, Any]]:
    insert_id = None
    for field in ("$insert_id", "uuid"):
        value = event.get(field)
        if isinstance(value, str) and value.strip():
            insert_id = value.strip()
            break
    if insert_id is None:
        return None

    event_time = get_event_time(event)
    user_id = get_user_id(event)
    return {
        "insert_id": insert_id,
        "event_type": get_event_type(event, default="") or None,
        "event_time": format_instant(event_time) if event_time is not None else None,
        "user_id": user_id,
        "payload_json": json.dumps(dict(event), default=str),
    }


def _parse_payload(raw_payload) -> Optional[dict[str, Any]]:
    if raw_payload is None:
        return None
    if isinstance(raw_payload, str):
        try:
            raw_payload = json.loads(raw_payload)
        except json.JSONDecodeError:
            return None
    if isinstance(raw_payload, dict):
        return raw_payload
    return None


def _now_iso() -> str:
    return format_instant(datetime.now(timezone.utc))
