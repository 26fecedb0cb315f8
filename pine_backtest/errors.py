"""
Pine Backtest -- Exception hierarchy.

Every failure is fatal to the single run that raised it.  A run is a
pure computation, so a retry is simply a re-invocation with corrected
inputs; nothing in the engine retries on its own.
"""


class BacktestError(Exception):
    """Base class for all backtesting errors."""


class InvalidInputError(BacktestError, ValueError):
    """Raised for non-positive capital, empty or too-short series, or a
    malformed date range.  No partial result is produced."""


class NotFoundError(BacktestError, LookupError):
    """Raised when an upstream collaborator has no record for a key."""


class StrategyNotFoundError(NotFoundError):
    """Raised when a strategy id (or sample name) is not registered."""


class ResultNotFoundError(NotFoundError):
    """Raised when a persisted backtest result id is unknown."""
