"""
Pine Backtest -- Single-asset position ledger.

Executes simulated fills and tracks cash, the open position, and the
equity / drawdown path for one run.

Execution model
---------------

  - **Long only, one position.**  A buy is ignored while a position is
    open; a sell is ignored while flat.  No pyramiding, no shorting.
  - **All-in sizing.**  A buy takes ``floor(cash / close)`` units.  If
    that is zero the buy is silently skipped (not an error).
  - **Full liquidation.**  A sell always closes the entire position.
  - **Fills at the close.**  No slippage, commission or partial fills.

After every replayed bar the engine calls :meth:`PositionLedger.mark_to_market`
to update peak equity and the running maximum drawdown.

A ledger is created per run and never shared, which is what makes
concurrent independent runs safe without locking.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional

from pine_backtest.models import PositionState, PriceBar, Trade, TradeSide

logger = logging.getLogger(__name__)


class PositionLedger:
    """Cash, position and trade history for a single run."""

    def __init__(self, initial_capital: float) -> None:
        self.initial_capital = initial_capital
        self.state = PositionState(cash=initial_capital, peak_equity=initial_capital)
        self.trades: List[Trade] = []
        self.winning_trades = 0
        self.losing_trades = 0
        self.total_profit = 0.0
        self.total_loss = 0.0

    # ------------------------------------------------------------------
    # Fills
    # ------------------------------------------------------------------

    def execute_buy(self, bar: PriceBar) -> Optional[Trade]:
        """Open a position at ``bar.close`` with all available cash.

        Returns:
            The recorded buy, or ``None`` when a position is already open
            or cash at this close does not cover a single unit.
        """
        if self.has_position:
            return None

        if bar.close <= 0:
            logger.debug("Buy skipped, non-positive close: close=%.2f", bar.close)
            return None

        quantity = math.floor(self.state.cash / bar.close)
        if quantity <= 0:
            logger.debug(
                "Buy skipped, insufficient cash for one unit: cash=%.2f close=%.2f",
                self.state.cash, bar.close,
            )
            return None

        self.state.shares_held = quantity
        self.state.entry_price = bar.close
        self.state.cash -= quantity * bar.close

        trade = Trade(
            timestamp=bar.timestamp,
            side=TradeSide.BUY,
            price=bar.close,
            quantity=quantity,
        )
        self.trades.append(trade)

        logger.debug(
            "Buy filled: %d @ %.2f (cash=%.2f)",
            quantity, bar.close, self.state.cash,
        )
        return trade

    def execute_sell(self, bar: PriceBar) -> Optional[Trade]:
        """Liquidate the whole position at ``bar.close``.

        Returns:
            The recorded sell carrying realised P&L, or ``None`` if flat.
        """
        if not self.has_position:
            return None

        quantity = self.state.shares_held
        sell_value = quantity * bar.close
        pnl = sell_value - self.state.entry_price * quantity

        self.state.cash += sell_value

        if pnl > 0:
            self.winning_trades += 1
            self.total_profit += pnl
        else:
            self.losing_trades += 1
            self.total_loss += abs(pnl)

        trade = Trade(
            timestamp=bar.timestamp,
            side=TradeSide.SELL,
            price=bar.close,
            quantity=quantity,
            pnl=pnl,
        )
        self.trades.append(trade)

        self.state.shares_held = 0
        self.state.entry_price = 0.0

        logger.debug(
            "Sell filled: %d @ %.2f (pnl=%.2f, cash=%.2f)",
            quantity, bar.close, pnl, self.state.cash,
        )
        return trade

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def mark_to_market(self, bar: PriceBar) -> float:
        """Value the book at ``bar.close`` and update peak and drawdown.

        Returns:
            Current equity.
        """
        equity = self.equity(bar.close)
        if equity > self.state.peak_equity:
            self.state.peak_equity = equity

        drawdown = (self.state.peak_equity - equity) / self.state.peak_equity
        if drawdown > self.state.max_drawdown:
            self.state.max_drawdown = drawdown
        return equity

    def equity(self, price: float) -> float:
        """Cash plus the open position valued at *price*."""
        return self.state.cash + self.state.shares_held * price

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def has_position(self) -> bool:
        return self.state.shares_held > 0

    @property
    def cash(self) -> float:
        return self.state.cash

    @property
    def shares_held(self) -> int:
        return self.state.shares_held

    @property
    def max_drawdown(self) -> float:
        """Running maximum drawdown as a fraction (0.25 == 25%)."""
        return self.state.max_drawdown

    @property
    def closed_trades(self) -> int:
        """Number of completed round trips."""
        return self.winning_trades + self.losing_trades
