"""
Pine Backtest -- Strategy classification.

Maps raw Pine-Script-like strategy text to one of a closed set of
strategy families.  This is a marker check, not an interpreter: the
text is scanned for fixed tokens and the first family whose markers are
all present wins.

Priority order (first match wins):

  1. ``ta.sma`` + ``crossover``   ->  moving-average crossover
  2. ``ta.rsi``                   ->  RSI oversold / overbought
  3. ``ta.stdev`` + ``Bollinger`` ->  Bollinger mean reversion

Anything else is :attr:`StrategyFamily.UNRECOGNIZED`, which produces no
signals and no trades.  Matching is case-sensitive.

Add new families by extending :data:`FAMILY_MARKERS` and registering a
generator in :mod:`pine_backtest.signals`.
"""

from enum import Enum
from typing import Dict, List, Tuple

from pine_backtest.errors import StrategyNotFoundError
from pine_backtest.models import StrategyDefinition


class StrategyFamily(Enum):
    """Closed set of recognised strategy families."""
    MOVING_AVERAGE_CROSSOVER = "moving_average_crossover"
    RSI_OVERSOLD_OVERBOUGHT = "rsi_oversold_overbought"
    BOLLINGER_MEAN_REVERSION = "bollinger_mean_reversion"
    UNRECOGNIZED = "unrecognized"


# Checked in list order; every marker in a tuple must be present.
FAMILY_MARKERS: List[Tuple[StrategyFamily, Tuple[str, ...]]] = [
    (StrategyFamily.MOVING_AVERAGE_CROSSOVER, ("ta.sma", "crossover")),
    (StrategyFamily.RSI_OVERSOLD_OVERBOUGHT, ("ta.rsi",)),
    (StrategyFamily.BOLLINGER_MEAN_REVERSION, ("ta.stdev", "Bollinger")),
]


def classify_strategy(text: str) -> StrategyFamily:
    """Return the :class:`StrategyFamily` selected by the markers in *text*."""
    for family, markers in FAMILY_MARKERS:
        if all(marker in text for marker in markers):
            return family
    return StrategyFamily.UNRECOGNIZED


# ---------------------------------------------------------------------------
# Sample strategies
# ---------------------------------------------------------------------------

_SMA_CROSSOVER = """//@version=5
strategy("SMA Crossover", overlay=true)

// Input parameters
fast_length = input.int(10, title="Fast MA Length")
slow_length = input.int(20, title="Slow MA Length")

// Calculate moving averages
fast_ma = ta.sma(close, fast_length)
slow_ma = ta.sma(close, slow_length)

// Plot moving averages
plot(fast_ma, color=color.blue, title="Fast MA")
plot(slow_ma, color=color.red, title="Slow MA")

// Strategy logic
if ta.crossover(fast_ma, slow_ma)
    strategy.entry("Long", strategy.long)

if ta.crossunder(fast_ma, slow_ma)
    strategy.close("Long")"""

_RSI = """//@version=5
strategy("RSI Strategy", overlay=false)

// Input parameters
rsi_length = input.int(14, title="RSI Length")
oversold = input.int(30, title="Oversold Level")
overbought = input.int(70, title="Overbought Level")

// Calculate RSI
rsi = ta.rsi(close, rsi_length)

// Plot RSI
plot(rsi, color=color.purple, title="RSI")
hline(oversold, "Oversold", color=color.green)
hline(overbought, "Overbought", color=color.red)

// Strategy logic
if rsi < oversold
    strategy.entry("Long", strategy.long)

if rsi > overbought
    strategy.close("Long")"""

_BOLLINGER = """//@version=5
strategy("Bollinger Bands", overlay=true)

// Input parameters
length = input.int(20, title="BB Length")
mult = input.float(2.0, title="BB Multiplier")

// Calculate Bollinger Bands
basis = ta.sma(close, length)
dev = mult * ta.stdev(close, length)
upper = basis + dev
lower = basis - dev

// Plot Bollinger Bands
plot(basis, color=color.orange, title="Middle Band")
plot(upper, color=color.red, title="Upper Band")
plot(lower, color=color.green, title="Lower Band")

// Strategy logic
if close <= lower
    strategy.entry("Long", strategy.long)

if close >= upper
    strategy.close("Long")"""


SAMPLE_STRATEGIES: Dict[str, StrategyDefinition] = {
    "sma_crossover": StrategyDefinition(
        id="sample-sma-crossover",
        name="Simple Moving Average Crossover",
        description="Buy when fast MA crosses above slow MA, sell when it crosses below",
        text=_SMA_CROSSOVER,
    ),
    "rsi": StrategyDefinition(
        id="sample-rsi",
        name="RSI Oversold/Overbought",
        description="Buy when RSI is oversold (below 30), sell when overbought (above 70)",
        text=_RSI,
    ),
    "bollinger": StrategyDefinition(
        id="sample-bollinger",
        name="Bollinger Bands Mean Reversion",
        description="Buy when price touches lower band, sell when it touches upper band",
        text=_BOLLINGER,
    ),
}


def get_sample_strategy(name: str) -> StrategyDefinition:
    """Look up a bundled sample strategy by short name.

    Raises:
        StrategyNotFoundError: If *name* is not a bundled sample.
    """
    strategy = SAMPLE_STRATEGIES.get(name)
    if strategy is None:
        known = ", ".join(sorted(SAMPLE_STRATEGIES))
        raise StrategyNotFoundError(
            f"Unknown sample strategy '{name}'. Available samples: {known}"
        )
    return strategy
