"""
Exceptions raised inside the tide pipeline.

Only DegenerateIntervalError and QueryCancelled are meant to reach callers;
the others are caught at the stage that produced them and turned into a
degraded result.
"""


class TideNowError(Exception):
    """Base exception for tide pipeline errors."""
    pass


class GeocodeFailure(TideNowError):
    """Raised when a query cannot be turned into coordinates."""
    pass


class StationUnresolved(TideNowError):
    """Raised when no catalog station is usable for a location."""
    pass


class ProviderUnavailable(TideNowError):
    """Raised when a tide provider errors or cannot serve a station."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class DegenerateIntervalError(TideNowError, ValueError):
    """Raised when two tide events share the same time."""
    pass


class CatalogLoadFailure(TideNowError):
    """Raised when the station catalog cannot be loaded."""
    pass


class QueryCancelled(TideNowError):
    """Raised when a superseded query reaches an I/O boundary."""
    pass
