"""
Pine Backtest -- Technical indicators.

Pure, stateless functions over a window of closing prices.  Each call is
O(N) in the window length; there is no incremental state, which is fine
for offline batch replay and keeps every bar's value independent of the
bars evaluated before it.

  - :func:`sma` -- simple moving average
  - :func:`rsi` -- relative strength index (average gain / average loss)
  - :func:`bollinger` -- Bollinger basis and bands (population stdev)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

RSI_NEUTRAL = 50.0


@dataclass(frozen=True)
class BollingerBands:
    """Basis and bands computed over one window."""
    basis: float
    upper: float
    lower: float
    stdev: float


def sma(closes: Sequence[float]) -> float:
    """Arithmetic mean of *closes*.

    The caller supplies exactly the N-length window.

    Raises:
        ValueError: If the window is empty.
    """
    if not closes:
        raise ValueError("SMA window must not be empty.")
    return sum(closes) / len(closes)


def rsi(closes: Sequence[float], period: int = 14) -> float:
    """Relative strength index of the last *period* price changes.

    Returns the neutral value 50 when fewer than ``period + 1`` closes are
    available, and 100 when the average loss is exactly zero.
    """
    if len(closes) < period + 1:
        return RSI_NEUTRAL

    gains = []
    losses = []
    for prev, curr in zip(closes, closes[1:]):
        change = curr - prev
        gains.append(change if change > 0 else 0.0)
        losses.append(-change if change < 0 else 0.0)

    avg_gain = sum(gains[-period:]) / period
    avg_loss = sum(losses[-period:]) / period

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def bollinger(closes: Sequence[float], multiplier: float = 2.0) -> BollingerBands:
    """Bollinger bands over *closes* using the population standard deviation."""
    basis = sma(closes)
    variance = sum((c - basis) ** 2 for c in closes) / len(closes)
    stdev = math.sqrt(variance)
    return BollingerBands(
        basis=basis,
        upper=basis + multiplier * stdev,
        lower=basis - multiplier * stdev,
        stdev=stdev,
    )
