"""
Pine Backtest -- Per-bar signal generation.

Each strategy family has a :class:`SignalGenerator` that looks at the bar
series up to (and including) index ``i`` and decides whether to buy,
sell, or hold.  It also returns the indicator observations it computed
so the engine can record them for charting.

Decision rules
--------------

  - **Moving-average crossover**: fast SMA(10) vs slow SMA(20) at ``i``
    and ``i-1``.  Buy on a cross above while flat; sell on a cross below
    while holding.
  - **RSI oversold / overbought**: RSI over the trailing 15 closes.
    Buy below 30 while flat; sell above 70 while holding.
  - **Bollinger mean reversion**: 20-bar basis with 2-sigma bands.
    Buy at or under the lower band while flat; sell at or over the upper
    band while holding.
  - **Unrecognized**: never trades, emits nothing.

Buy requires a flat book and sell requires an open position, so at most
one of them can fire on a given bar.

Bars before :data:`WARM_UP_OFFSET` are never evaluated.

Add new families by subclassing :class:`SignalGenerator` and registering
an instance in :data:`GENERATOR_REGISTRY`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from pine_backtest.indicators import sma, rsi, bollinger
from pine_backtest.models import PriceBar, Signal
from pine_backtest.strategy import StrategyFamily


WARM_UP_OFFSET = 20

FAST_MA_LENGTH = 10
SLOW_MA_LENGTH = 20

RSI_PERIOD = 14
RSI_OVERSOLD = 30.0
RSI_OVERBOUGHT = 70.0

BB_LENGTH = 20
BB_MULTIPLIER = 2.0


@dataclass
class BarDecision:
    """What a generator decided on one bar."""
    buy: bool = False
    sell: bool = False
    signals: List[Signal] = field(default_factory=list)


def _closes(bars: Sequence[PriceBar], start: int, stop: int) -> List[float]:
    return [bar.close for bar in bars[start:stop]]


class SignalGenerator:
    """Base decision procedure.  Never trades and records nothing."""

    family = StrategyFamily.UNRECOGNIZED

    def evaluate(
        self,
        bars: Sequence[PriceBar],
        i: int,
        position_open: bool,
    ) -> BarDecision:
        """Decide on bar ``i``.

        Args:
            bars: The full input series (read-only).
            i: Index of the bar being evaluated, ``>= WARM_UP_OFFSET``.
            position_open: Whether a position is currently held.
        """
        return BarDecision()


class MovingAverageCrossoverGenerator(SignalGenerator):
    family = StrategyFamily.MOVING_AVERAGE_CROSSOVER

    def evaluate(self, bars, i, position_open):
        fast = sma(_closes(bars, i - FAST_MA_LENGTH + 1, i + 1))
        slow = sma(_closes(bars, i - SLOW_MA_LENGTH + 1, i + 1))
        prev_fast = sma(_closes(bars, i - FAST_MA_LENGTH, i))
        prev_slow = sma(_closes(bars, i - SLOW_MA_LENGTH, i))

        ts = bars[i].timestamp
        return BarDecision(
            buy=not position_open and prev_fast <= prev_slow and fast > slow,
            sell=position_open and prev_fast >= prev_slow and fast < slow,
            signals=[
                Signal(timestamp=ts, kind="fast_ma", value=fast, color="blue"),
                Signal(timestamp=ts, kind="slow_ma", value=slow, color="red"),
            ],
        )


class RSIOversoldOverboughtGenerator(SignalGenerator):
    family = StrategyFamily.RSI_OVERSOLD_OVERBOUGHT

    def evaluate(self, bars, i, position_open):
        value = rsi(_closes(bars, max(0, i - RSI_PERIOD), i + 1), RSI_PERIOD)
        return BarDecision(
            buy=not position_open and value < RSI_OVERSOLD,
            sell=position_open and value > RSI_OVERBOUGHT,
            signals=[
                Signal(timestamp=bars[i].timestamp, kind="rsi", value=value, color="purple"),
            ],
        )


class BollingerMeanReversionGenerator(SignalGenerator):
    family = StrategyFamily.BOLLINGER_MEAN_REVERSION

    def evaluate(self, bars, i, position_open):
        bands = bollinger(_closes(bars, i - BB_LENGTH + 1, i + 1), BB_MULTIPLIER)
        close = bars[i].close
        ts = bars[i].timestamp
        return BarDecision(
            buy=not position_open and close <= bands.lower,
            sell=position_open and close >= bands.upper,
            signals=[
                Signal(timestamp=ts, kind="bb_upper", value=bands.upper, color="red"),
                Signal(timestamp=ts, kind="bb_lower", value=bands.lower, color="green"),
                Signal(timestamp=ts, kind="bb_middle", value=bands.basis, color="orange"),
            ],
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

GENERATOR_REGISTRY: Dict[StrategyFamily, SignalGenerator] = {
    StrategyFamily.MOVING_AVERAGE_CROSSOVER: MovingAverageCrossoverGenerator(),
    StrategyFamily.RSI_OVERSOLD_OVERBOUGHT: RSIOversoldOverboughtGenerator(),
    StrategyFamily.BOLLINGER_MEAN_REVERSION: BollingerMeanReversionGenerator(),
    StrategyFamily.UNRECOGNIZED: SignalGenerator(),
}


def get_generator(family: StrategyFamily) -> SignalGenerator:
    """Return the generator for *family* (the no-op one if unregistered)."""
    return GENERATOR_REGISTRY.get(family, GENERATOR_REGISTRY[StrategyFamily.UNRECOGNIZED])
