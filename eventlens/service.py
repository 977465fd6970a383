"""Application service orchestrating repositories and the pure engines."""

from dataclasses import replace
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

import structlog

from .config import IssueDetectionOptions, IssueFindOptions, PersonaDerivationOptions, Settings
from .errors import GroundingUnavailableError, TooManyEventsError
from .issues import detect_issues, find_issues
from .models import Issue, PersonaDerivationResult
from .personas import derive_personas
from .ports import EventRepository, IssueGrounder, IssueRepository, PersonaRepository
from .windows import resolve_range, resolve_windows, utc_now, windows_ending_at

logger = structlog.get_logger()


class AnalyticsService:
    """Facade service that exposes the engines independent of web frameworks."""

    def __init__(
        self,
        repo: EventRepository,
        issue_store: Optional[IssueRepository] = None,
        persona_store: Optional[PersonaRepository] = None,
        grounder: Optional[IssueGrounder] = None,
        settings: Optional[Settings] = None,
    ):
        self.repo = repo
        self.issue_store = issue_store
        self.persona_store = persona_store
        self.grounder = grounder
        self.settings = settings or Settings()

    def detect_issues(
        self,
        options: Optional[IssueDetectionOptions] = None,
        now: Optional[datetime] = None,
    ) -> list[Issue]:
        options = options or IssueDetectionOptions()
        now = now or utc_now()
        window_a, window_b = resolve_windows(
            options.window_a,
            options.window_b,
            now=now,
            window_days=options.window_days,
        )
        events = self._fetch_events(
            min(window_a.start, window_b.start),
            max(window_a.end, window_b.end),
        )
        issues = detect_issues(events, options, now=now)
        self._store_issues(issues)
        return issues

    def find_issues(self, options: Optional[IssueFindOptions] = None) -> list[Issue]:
        if self.grounder is None:
            raise GroundingUnavailableError("No issue grounder configured for evidence-based finding.")
        options = options or IssueFindOptions()
        latest = self.repo.latest_event_time()
        if latest is None:
            return []

        # only the two windows ending at the latest event are read
        window_a, window_b = windows_ending_at(latest, options.window_days, clamp=True)
        events = self._fetch_events(window_b.start, window_a.end)
        issues = find_issues(events, self.grounder.ground, options)
        self._store_issues(issues)
        return issues

    def derive_personas(
        self,
        options: Optional[PersonaDerivationOptions] = None,
        now: Optional[datetime] = None,
    ) -> PersonaDerivationResult:
        options = options or PersonaDerivationOptions()
        now = now or utc_now()
        analysis_range = resolve_range(
            options.range_start,
            options.range_end,
            now=now,
            days_back=options.days_back,
        )
        events = self._fetch_events(analysis_range.start, analysis_range.end)
        result = derive_personas(events, options, now=now)

        if self.persona_store is not None and result.personas:
            storage = self.persona_store.save_personas(result.personas)
            logger.info("personas_stored", personas=len(storage.personas), snapshots=len(storage.snapshots))
            result = replace(result, personas=list(storage.personas))
        return result

    def _fetch_events(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Sequence[Mapping[str, Any]]:
        events = list(self.repo.fetch_events(start_date, end_date))
        if len(events) > self.settings.MAX_EVENTS:
            raise TooManyEventsError(len(events), self.settings.MAX_EVENTS)
        return events

    def _store_issues(self, issues: Sequence[Issue]) -> None:
        if self.issue_store is None or not issues:
            return
        written = self.issue_store.upsert_issues(issues)
        logger.info("issues_stored", issues=written)
