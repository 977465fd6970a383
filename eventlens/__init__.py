"""EventLens - behavioral issue detection and persona derivation for event logs."""

from .config import IssueDetectionOptions, IssueFindOptions, PersonaDerivationOptions, Settings, WindowSpec
from .errors import EventLensError, GroundingUnavailableError, InvalidWindowError, TooManyEventsError
from .issues import build_candidates, detect_issues, find_issues
from .personas import derive_personas, percentile
from .service import AnalyticsService

__all__ = [
    "AnalyticsService",
    "detect_issues",
    "build_candidates",
    "find_issues",
    "derive_personas",
    "percentile",
    "IssueDetectionOptions",
    "IssueFindOptions",
    "PersonaDerivationOptions",
    "WindowSpec",
    "Settings",
    "EventLensError",
    "InvalidWindowError",
    "TooManyEventsError",
    "GroundingUnavailableError",
]

__version__ = "0.1.0"
