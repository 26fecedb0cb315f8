"""
Pine Backtest -- Data models.

Immutable dataclasses for market data, signals, trades and results, plus
the one mutable per-run :class:`PositionState`.  Kept free of any storage
or web types so the engine can be used from a script, the CLI, or the
dashboard API alike.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Dict, Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class TradeSide(Enum):
    """Direction of a simulated fill (long-only: buy opens, sell closes)."""
    BUY = "buy"
    SELL = "sell"


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PriceBar:
    """A single OHLCV price bar.

    Attributes:
        timestamp: Bar time as integer epoch milliseconds.
        open: Opening price.
        high: High price.
        low: Low price.
        close: Closing price (all simulated fills happen here).
        volume: Bar volume.
        ticker: Instrument symbol (e.g. ``"NIFTY50"``).
    """
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: int = 0
    ticker: str = ""


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StrategyDefinition:
    """Raw strategy source as stored upstream.

    The strategy family is always derived from ``text`` at run time and
    never stored alongside it.
    """
    text: str
    id: str = ""
    name: str = ""
    description: str = ""
    is_public: bool = True


# ---------------------------------------------------------------------------
# Signals & trades
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Signal:
    """An indicator observation recorded on a replayed bar.

    Attributes:
        timestamp: Timestamp of the bar the value was computed on.
        kind: Tag such as ``"fast_ma"``, ``"rsi"`` or ``"bb_upper"``.
        value: Indicator value.
        color: Optional plotting hint for chart front-ends.
    """
    timestamp: int
    kind: str
    value: float
    color: Optional[str] = None


@dataclass(frozen=True)
class Trade:
    """A single simulated fill at a bar's close.

    ``pnl`` is only set on sells; a buy carries ``None``.
    """
    timestamp: int
    side: TradeSide
    price: float
    quantity: int
    pnl: Optional[float] = None


@dataclass
class PositionState:
    """Mutable account state owned by exactly one run.

    Attributes:
        cash: Uninvested cash.
        shares_held: Units of the open position (0 when flat).
        entry_price: Fill price of the buy that opened the position.
        peak_equity: Highest equity seen so far (never decreases).
        max_drawdown: Largest fractional decline from ``peak_equity``.
    """
    cash: float
    shares_held: int = 0
    entry_price: float = 0.0
    peak_equity: float = 0.0
    max_drawdown: float = 0.0


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EquityPoint:
    """Account snapshot taken after a replayed bar."""
    timestamp: int
    equity: float
    cash: float
    shares_held: int


@dataclass(frozen=True)
class BacktestMetrics:
    """End-of-run statistics.  Percentages are already scaled by 100."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_return_pct: float = 0.0
    max_drawdown_pct: float = 0.0
    sharpe_ratio: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0


@dataclass(frozen=True)
class BacktestResult:
    """Output of a completed run.

    Contains the metrics, every fill, every indicator observation and
    the per-bar equity curve.
    """
    metrics: BacktestMetrics
    trades: Tuple[Trade, ...] = ()
    signals: Tuple[Signal, ...] = ()
    family: str = "unrecognized"
    initial_capital: float = 0.0
    final_equity: float = 0.0
    equity_curve: Tuple[EquityPoint, ...] = ()
    bars_processed: int = 0
    open_position: bool = False
    start_time: Optional[int] = None
    end_time: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the JSON shape stored by the result store."""
        m = self.metrics
        return {
            "results": {
                "totalTrades": m.total_trades,
                "winningTrades": m.winning_trades,
                "losingTrades": m.losing_trades,
                "totalReturn": m.total_return_pct,
                "maxDrawdown": m.max_drawdown_pct,
                "sharpeRatio": m.sharpe_ratio,
                "winRate": m.win_rate,
                "profitFactor": m.profit_factor,
            },
            "trades": [_trade_dict(t) for t in self.trades],
            "signals": [_signal_dict(s) for s in self.signals],
        }


def _trade_dict(trade: Trade) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "timestamp": trade.timestamp,
        "type": trade.side.value,
        "price": trade.price,
        "quantity": trade.quantity,
    }
    if trade.pnl is not None:
        data["pnl"] = trade.pnl
    return data


def _signal_dict(signal: Signal) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "timestamp": signal.timestamp,
        "type": signal.kind,
        "value": signal.value,
    }
    if signal.color is not None:
        data["color"] = signal.color
    return data
