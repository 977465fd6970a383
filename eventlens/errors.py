"""Exceptions raised by EventLens."""


class EventLensError(Exception):
    """Base class for all EventLens errors."""


class InvalidWindowError(EventLensError, ValueError):
    """A time window or analysis range cannot be resolved."""


class TooManyEventsError(EventLensError):
    """An event batch exceeds the configured processing limit."""

    def __init__(self, count: int, limit: int):
        super().__init__(f"Too many events for analysis: {count} > {limit}.")
        self.count = count
        self.limit = limit


class GroundingUnavailableError(EventLensError):
    """Evidence-based issue finding was requested without a grounder."""
