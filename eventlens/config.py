"""Option structs for the engines and process-level settings."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

# longest window or lookback, in days, accepted from callers
MAX_SPAN_DAYS = 3650


class _Options(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class WindowSpec(_Options):
    """Explicit window bounds as supplied by a caller (ISO strings, datetimes or epoch ms)."""

    start: Any = None
    end: Any = None


class IssueDetectionOptions(_Options):
    """Options for deterministic segment-diff issue detection."""

    event_type: Optional[str] = Field(default=None, alias="eventType")
    segment_by: list[str] = Field(default_factory=lambda: ["country"], alias="segmentBy")
    min_users: int = Field(default=20, ge=0, alias="minUsers")
    min_delta_pct: float = Field(default=20.0, ge=0, alias="minDeltaPct")
    top_n: int = Field(default=5, ge=0, alias="topN")
    window_days: int = Field(default=7, ge=1, le=MAX_SPAN_DAYS, alias="windowDays")
    sample_size: int = Field(default=3, ge=0, alias="sampleSize")
    window_a: Optional[WindowSpec] = Field(default=None, alias="windowA")
    window_b: Optional[WindowSpec] = Field(default=None, alias="windowB")


class IssueFindOptions(_Options):
    """Options for evidence-gathering issue finding."""

    segment_by: list[str] = Field(default_factory=lambda: ["event_type"], alias="segmentBy")
    min_users: int = Field(default=1, ge=0, alias="minUsers")
    top_n: int = Field(default=6, ge=0, alias="topN")
    window_days: int = Field(default=7, ge=1, le=MAX_SPAN_DAYS, alias="windowDays")
    sample_size: int = Field(default=3, ge=0, alias="sampleSize")


class PersonaDerivationOptions(_Options):
    """Options for percentile-driven persona derivation."""

    project_id: str = Field(default="default", alias="projectId")
    days_back: int = Field(default=30, ge=1, le=MAX_SPAN_DAYS, alias="daysBack")
    min_users: int = Field(default=20, ge=0, alias="minUsers")
    max_personas: int = Field(default=4, ge=0, alias="maxPersonas")
    range_start: Any = Field(default=None, alias="rangeStart")
    range_end: Any = Field(default=None, alias="rangeEnd")

    @property
    def resolved_project_id(self) -> str:
        return self.project_id.strip() or "default"


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./eventlens.db"
    MAX_EVENTS: int = 200000

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = {"env_prefix": "EVENTLENS_", "env_file": ".env", "extra": "ignore"}
