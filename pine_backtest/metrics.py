"""
Pine Backtest -- End-of-run performance metrics.

Computes the statistics reported for every run:

  - **Total return** (percent of initial capital)
  - **Maximum drawdown** (percent, from the ledger's running maximum)
  - **Win rate** (percent of closed round trips with positive P&L)
  - **Profit factor** (gross profit / gross loss, 999 when there is
    profit but no loss)
  - **Sharpe ratio** (mean / population stdev of per-bar returns, not
    annualised, zero risk-free rate)

Every reported figure is rounded to two decimals, ties away from zero.

Sharpe return series
--------------------

:attr:`SharpeMethod.SEQUENTIAL` (default) uses genuine bar-to-bar equity
returns over the replayed bars, the first one measured against the
initial capital.

:attr:`SharpeMethod.LEGACY` reproduces results stored by older versions,
which filled the series with ``len(bars) - 1`` copies of the whole-run
return.  That series is constant, so its stdev is zero or float noise
and the ratio is either 0 or a meaningless large number.
"""

from __future__ import annotations

import math
from typing import List, Sequence

from pine_backtest.config import SharpeMethod
from pine_backtest.ledger import PositionLedger
from pine_backtest.models import BacktestMetrics, EquityPoint
from pine_backtest.utils import round_half_away

PROFIT_FACTOR_NO_LOSS = 999.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _sequential_returns(
    equity_curve: Sequence[EquityPoint],
    initial_capital: float,
) -> List[float]:
    """Bar-to-bar fractional equity changes, starting from initial capital."""
    returns = []
    prev = initial_capital
    for point in equity_curve:
        returns.append((point.equity - prev) / prev if prev > 0 else 0.0)
        prev = point.equity
    return returns


def _legacy_returns(
    bar_count: int,
    initial_capital: float,
    final_equity: float,
) -> List[float]:
    """``bar_count - 1`` copies of the whole-run return."""
    total = (final_equity - initial_capital) / initial_capital
    return [total for _ in range(1, bar_count)]


def _sharpe_ratio(returns: Sequence[float]) -> float:
    """Mean over population stdev; 0 when undefined."""
    if not returns:
        return 0.0
    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return mean / std


def _win_rate(winning: int, losing: int) -> float:
    """Winning share of closed trades, in percent."""
    closed = winning + losing
    return winning / closed * 100 if closed > 0 else 0.0


def _profit_factor(total_profit: float, total_loss: float) -> float:
    if total_loss > 0:
        return total_profit / total_loss
    if total_profit > 0:
        return PROFIT_FACTOR_NO_LOSS
    return 0.0


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def compute_metrics(
    ledger: PositionLedger,
    last_close: float,
    equity_curve: Sequence[EquityPoint],
    bar_count: int,
    sharpe_method: SharpeMethod = SharpeMethod.SEQUENTIAL,
) -> BacktestMetrics:
    """Compute all reported metrics from a finished ledger.

    Args:
        ledger: The run's ledger after the last bar.
        last_close: Close of the final input bar (values any open position).
        equity_curve: One point per replayed bar.
        bar_count: Length of the full input series.
        sharpe_method: Return series used for the Sharpe ratio.

    Returns:
        A :class:`BacktestMetrics` with every figure rounded to 2 decimals.
    """
    initial = ledger.initial_capital
    final_equity = ledger.equity(last_close)

    if sharpe_method is SharpeMethod.LEGACY:
        returns = _legacy_returns(bar_count, initial, final_equity)
    else:
        returns = _sequential_returns(equity_curve, initial)

    return BacktestMetrics(
        total_trades=ledger.closed_trades,
        winning_trades=ledger.winning_trades,
        losing_trades=ledger.losing_trades,
        total_return_pct=round_half_away((final_equity - initial) / initial * 100),
        max_drawdown_pct=round_half_away(ledger.max_drawdown * 100),
        sharpe_ratio=round_half_away(_sharpe_ratio(returns)),
        win_rate=round_half_away(_win_rate(ledger.winning_trades, ledger.losing_trades)),
        profit_factor=round_half_away(_profit_factor(ledger.total_profit, ledger.total_loss)),
    )
