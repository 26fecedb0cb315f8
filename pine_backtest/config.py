"""
Pine Backtest -- Runtime configuration.

Settings are read from environment variables with sensible defaults so
that tuning does not require code changes.  The dashboard loads a
``.env`` file from the repo root before calling :func:`load_config`.

Strategy thresholds (SMA lengths, RSI levels, band width) are *not*
configurable here: they are fixed for behavioural compatibility with
stored results and live in :mod:`pine_backtest.signals`.
"""

import math
import os
from dataclasses import dataclass
from enum import Enum


class SharpeMethod(Enum):
    """How the per-bar return series behind the Sharpe ratio is built."""
    SEQUENTIAL = "sequential"
    LEGACY = "legacy"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _env_float(key: str, default: str) -> float:
    """Read a float from an environment variable with a fallback default."""
    return float(os.environ.get(key, default))


def _env_int(key: str, default: str) -> int:
    """Read an int from an environment variable with a fallback default."""
    return int(os.environ.get(key, default))


def _env_str(key: str, default: str) -> str:
    return os.environ.get(key, default).strip()


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BacktestConfig:
    """Settings shared by the engine, the CLI and the dashboard.

    Attributes:
        initial_capital: Default starting cash when a caller supplies none.
        sharpe_method: Return series used for the Sharpe ratio.
        log_level: Level for :func:`pine_backtest.utils.configure_logging`.
        data_dir: Directory of ``<SYMBOL>.csv`` files for the CSV store.
        yahoo_interval: Bar interval requested from Yahoo Finance.
        yahoo_retry_count: Max attempts per Yahoo chart request.
        yahoo_backoff_base: Exponential backoff base in seconds.
    """
    initial_capital: float = 100_000.0
    sharpe_method: SharpeMethod = SharpeMethod.SEQUENTIAL
    log_level: str = "INFO"
    data_dir: str = "data"
    yahoo_interval: str = "1d"
    yahoo_retry_count: int = 3
    yahoo_backoff_base: int = 2


def load_config() -> BacktestConfig:
    """Build a :class:`BacktestConfig` from the environment.

    Raises:
        ValueError: If a variable is present but malformed.
    """
    initial_capital = _env_float("BACKTEST_INITIAL_CAPITAL", "100000")
    if not math.isfinite(initial_capital) or initial_capital <= 0:
        raise ValueError(
            f"BACKTEST_INITIAL_CAPITAL must be positive and finite, got {initial_capital}"
        )

    method = _env_str("BACKTEST_SHARPE_METHOD", "sequential").lower()
    try:
        sharpe_method = SharpeMethod(method)
    except ValueError:
        known = ", ".join(m.value for m in SharpeMethod)
        raise ValueError(
            f"Unknown BACKTEST_SHARPE_METHOD '{method}'. Expected one of: {known}"
        ) from None

    return BacktestConfig(
        initial_capital=initial_capital,
        sharpe_method=sharpe_method,
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        data_dir=_env_str("BACKTEST_DATA_DIR", "data"),
        yahoo_interval=_env_str("YAHOO_INTERVAL", "1d"),
        yahoo_retry_count=_env_int("YAHOO_RETRY_COUNT", "3"),
        yahoo_backoff_base=_env_int("YAHOO_BACKOFF_BASE", "2"),
    )
