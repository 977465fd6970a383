"""Port definitions for event sources, result stores and grounding collaborators."""

from datetime import datetime
from typing import Any, Mapping, Optional, Protocol, Sequence

from .models import Issue, IssueFinding, PersonaDefinition, PersonaStorageResult, Window


class EventRepository(Protocol):
    """Repository interface that adapters can implement for any event backend."""

    def fetch_events(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Sequence[Mapping[str, Any]]:
        """Return raw event records, optionally limited to a period."""

    def latest_event_time(self) -> Optional[datetime]:
        """Return the newest resolvable event timestamp, or ``None`` when there is none."""


class IssueRepository(Protocol):
    def upsert_issues(self, issues: Sequence[Issue]) -> int:
        """Insert or update issues by id and return how many were written."""


class PersonaRepository(Protocol):
    def save_personas(self, personas: Sequence[PersonaDefinition]) -> PersonaStorageResult:
        """Upsert personas by project and name, recording one snapshot each."""


class IssueGrounder(Protocol):
    """External collaborator that turns ranked candidates into findings."""

    def ground(
        self,
        candidates: Sequence[Issue],
        window_a: Window,
        window_b: Window,
    ) -> Sequence[IssueFinding]:
        """Return findings keyed by candidate id."""
