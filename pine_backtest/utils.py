"""
Pine Backtest -- Shared utilities.

Provides:
  - Correlation ID generation for run tracing
  - Structured logging helpers
  - Deterministic half-away-from-zero rounding for reported metrics
"""

import sys
import uuid
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def generate_correlation_id() -> str:
    """Generate a short unique correlation ID for tracing one run.

    Returns an 8-character hex string.
    """
    return uuid.uuid4().hex[:8]


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stderr handler to the package logger.

    stdout is left to the CLI report and JSON output.  Safe to call more
    than once; a second call only adjusts the level.
    """
    logger = logging.getLogger("pine_backtest")
    logger.setLevel(getattr(logging, level.upper()))

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(handler)
    return logger


def log_structured(
    logger: logging.Logger,
    level: int,
    message: str,
    correlation_id: str,
    **fields: Any,
) -> None:
    """Emit a structured log line with correlation ID and key-value fields.

    Example output::

        [abc12345] Backtest complete | family=rsi_oversold_overbought trades=4
    """
    parts = [f"[{correlation_id}]", message]
    if fields:
        kv = " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
        if kv:
            parts.append("|")
            parts.append(kv)
    logger.log(level, " ".join(parts))


def round_half_away(value: float, places: int = 2) -> float:
    """Round *value* to *places* decimals, ties away from zero.

    Works on the exact binary value of the float, so results do not
    depend on the platform's ``round()`` banker's-rounding behaviour.
    """
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))
