"""
Pine Backtest -- Backtesting engine.

Replays a price series against a strategy text and returns an immutable
:class:`BacktestResult`.

Usage::

    from pine_backtest import Engine, load_bars_csv, get_sample_strategy

    bars = load_bars_csv("NIFTY50_daily.csv", ticker="NIFTY50")
    strategy = get_sample_strategy("rsi")
    result = Engine().run(strategy.text, bars, initial_capital=100_000)

The engine:
  1. Validates the inputs (positive capital, at least 20 bars).
  2. Classifies the strategy text once.
  3. For each bar from the warm-up offset onward, asks the family's
     generator for a decision, executes the buy or sell on the ledger,
     and marks the book to market.
  4. Computes metrics and freezes everything into a result.

A run has no I/O beyond logging and no randomness, so the same inputs
always give an identical result.  The input list is never mutated.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

from pine_backtest.config import BacktestConfig, SharpeMethod
from pine_backtest.errors import InvalidInputError
from pine_backtest.ledger import PositionLedger
from pine_backtest.metrics import compute_metrics
from pine_backtest.models import BacktestResult, EquityPoint, PriceBar, Signal
from pine_backtest.signals import WARM_UP_OFFSET, get_generator
from pine_backtest.strategy import StrategyFamily, classify_strategy
from pine_backtest.utils import generate_correlation_id, log_structured

logger = logging.getLogger(__name__)


class Engine:
    """Main backtesting engine.

    Args:
        sharpe_method: Return series for the Sharpe ratio.
        config: Provide a :class:`BacktestConfig` directly (overrides
            the keyword argument above).
    """

    def __init__(
        self,
        sharpe_method: SharpeMethod = SharpeMethod.SEQUENTIAL,
        config: Optional[BacktestConfig] = None,
    ) -> None:
        if config is not None:
            self.config = config
        else:
            self.config = BacktestConfig(sharpe_method=sharpe_method)

    def run(
        self,
        strategy_text: str,
        bars: Sequence[PriceBar],
        initial_capital: Optional[float] = None,
        correlation_id: Optional[str] = None,
    ) -> BacktestResult:
        """Execute the backtest.

        Args:
            strategy_text: Raw strategy source.
            bars: Historical OHLCV bars sorted by timestamp.
            initial_capital: Starting cash; defaults to the config value.
            correlation_id: Tag for log lines (generated when omitted).

        Returns:
            A :class:`BacktestResult` with metrics, trades, signals and
            the equity curve.

        Raises:
            InvalidInputError: If capital is not positive or the series is
                shorter than the warm-up offset.
        """
        if initial_capital is None:
            initial_capital = self.config.initial_capital
        cid = correlation_id or generate_correlation_id()

        _validate(bars, initial_capital)

        family = classify_strategy(strategy_text)
        if family is StrategyFamily.UNRECOGNIZED:
            log_structured(
                logger, logging.WARNING,
                "Strategy matches no known family, run will not trade", cid,
            )

        generator = get_generator(family)
        ledger = PositionLedger(initial_capital)
        signals: List[Signal] = []
        equity_curve: List[EquityPoint] = []

        for i in range(WARM_UP_OFFSET, len(bars)):
            bar = bars[i]
            decision = generator.evaluate(bars, i, ledger.has_position)
            signals.extend(decision.signals)

            if decision.buy:
                ledger.execute_buy(bar)
            elif decision.sell:
                ledger.execute_sell(bar)

            equity = ledger.mark_to_market(bar)
            equity_curve.append(EquityPoint(
                timestamp=bar.timestamp,
                equity=equity,
                cash=ledger.cash,
                shares_held=ledger.shares_held,
            ))

        last_close = bars[-1].close
        metrics = compute_metrics(
            ledger,
            last_close=last_close,
            equity_curve=equity_curve,
            bar_count=len(bars),
            sharpe_method=self.config.sharpe_method,
        )

        result = BacktestResult(
            metrics=metrics,
            trades=tuple(ledger.trades),
            signals=tuple(signals),
            family=family.value,
            initial_capital=initial_capital,
            final_equity=ledger.equity(last_close),
            equity_curve=tuple(equity_curve),
            bars_processed=len(equity_curve),
            open_position=ledger.has_position,
            start_time=bars[0].timestamp,
            end_time=bars[-1].timestamp,
        )

        log_structured(
            logger, logging.INFO, "Backtest complete", cid,
            family=family.value,
            bars=len(bars),
            trades=len(result.trades),
            total_return_pct=metrics.total_return_pct,
        )
        return result


def _validate(bars: Sequence[PriceBar], initial_capital: float) -> None:
    if not math.isfinite(initial_capital) or initial_capital <= 0:
        raise InvalidInputError(
            f"Initial capital must be a positive finite number, got {initial_capital}."
        )
    if not bars:
        raise InvalidInputError("Price series is empty.")
    if len(bars) < WARM_UP_OFFSET:
        raise InvalidInputError(
            f"Price series has {len(bars)} bars; at least {WARM_UP_OFFSET} "
            f"are required for indicator warm-up."
        )


def run_backtest(
    strategy_text: str,
    bars: Sequence[PriceBar],
    initial_capital: float,
    sharpe_method: SharpeMethod = SharpeMethod.SEQUENTIAL,
) -> BacktestResult:
    """One-shot convenience wrapper around :meth:`Engine.run`."""
    return Engine(sharpe_method=sharpe_method).run(strategy_text, bars, initial_capital)
