"""
Pine Backtest -- Collaborator stores and the backtest service.

The engine itself only sees a strategy text and a list of bars.  Looking
those up, and keeping the result afterwards, is the job of three small
store interfaces:

  - :class:`StrategyStore` -- ``resolve(strategy_id)``
  - :class:`PriceSeriesStore` -- ``fetch(symbol, start_date, end_date)``
  - :class:`ResultStore` -- ``persist(result, scope)``

In-memory, CSV-directory and Yahoo-backed implementations are provided.
:class:`BacktestService` wires them around :class:`Engine` the same way
the dashboard's "run backtest" action does: resolve, fetch, run, persist.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pine_backtest.data import load_bars_csv, to_epoch_ms
from pine_backtest.engine import Engine
from pine_backtest.errors import (
    InvalidInputError,
    ResultNotFoundError,
    StrategyNotFoundError,
)
from pine_backtest.models import BacktestResult, PriceBar, StrategyDefinition
from pine_backtest.strategy import SAMPLE_STRATEGIES
from pine_backtest.utils import generate_correlation_id, log_structured

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime]


# ---------------------------------------------------------------------------
# Date range handling
# ---------------------------------------------------------------------------

def parse_date(value: DateLike) -> date:
    """Parse a ``YYYY-MM-DD`` string (or pass a date through).

    Raises:
        InvalidInputError: If *value* is not a valid date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except (AttributeError, ValueError):
        raise InvalidInputError(f"Malformed date '{value}', expected YYYY-MM-DD.") from None


def parse_date_range(start: DateLike, end: DateLike) -> Tuple[date, date]:
    """Parse and order-check an inclusive date range.

    Raises:
        InvalidInputError: If either end is malformed or start is after end.
    """
    start_d = parse_date(start)
    end_d = parse_date(end)
    if start_d > end_d:
        raise InvalidInputError(
            f"Start date ({start_d}) must not be after end date ({end_d})."
        )
    return start_d, end_d


def _range_ms(start: date, end: date) -> Tuple[int, int]:
    """Inclusive [start 00:00, end 23:59:59.999] bounds in epoch millis (UTC)."""
    return to_epoch_ms(start), to_epoch_ms(end + timedelta(days=1)) - 1


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class StrategyStore(ABC):
    """Interface: look up a strategy definition by id."""

    @abstractmethod
    def resolve(self, strategy_id: str) -> StrategyDefinition:
        ...


class InMemoryStrategyStore(StrategyStore):
    """Dict-backed strategy store.

    Args:
        include_samples: Seed the store with the bundled sample strategies
            (under their ``sample-*`` ids).
    """

    def __init__(self, include_samples: bool = False) -> None:
        self._strategies: Dict[str, StrategyDefinition] = {}
        self._owners: Dict[str, Optional[str]] = {}
        if include_samples:
            for sample in SAMPLE_STRATEGIES.values():
                self._strategies[sample.id] = sample
                self._owners[sample.id] = None

    def add(
        self,
        text: str,
        name: str = "",
        description: str = "",
        is_public: bool = False,
        user_id: Optional[str] = None,
    ) -> str:
        """Store a new strategy and return its id."""
        strategy_id = uuid.uuid4().hex
        self._strategies[strategy_id] = StrategyDefinition(
            id=strategy_id,
            text=text,
            name=name,
            description=description,
            is_public=is_public,
        )
        self._owners[strategy_id] = user_id
        return strategy_id

    def resolve(self, strategy_id: str) -> StrategyDefinition:
        strategy = self._strategies.get(strategy_id)
        if strategy is None:
            raise StrategyNotFoundError(f"Strategy not found: {strategy_id}")
        return strategy

    def find_by_text(self, text: str, user_id: Optional[str] = None) -> Optional[str]:
        """Id of a strategy owned by *user_id* whose text is exactly *text*."""
        for strategy_id, strategy in self._strategies.items():
            if strategy.text == text and self._owners.get(strategy_id) == user_id:
                return strategy_id
        return None

    def list_strategies(self, user_id: Optional[str] = None) -> List[StrategyDefinition]:
        """The caller's own strategies followed by everyone's public ones."""
        own = [
            s for sid, s in self._strategies.items()
            if user_id is not None and self._owners.get(sid) == user_id
        ]
        public = [
            s for sid, s in self._strategies.items()
            if s.is_public and (user_id is None or self._owners.get(sid) != user_id)
        ]
        return own + public

    def update(self, strategy_id: str, user_id: Optional[str] = None, **changes) -> StrategyDefinition:
        """Apply field changes to a strategy the caller owns.

        Raises:
            StrategyNotFoundError: If absent or not owned by *user_id*.
        """
        strategy = self._owned(strategy_id, user_id)
        updated = replace(strategy, **{k: v for k, v in changes.items() if v is not None})
        self._strategies[strategy_id] = updated
        return updated

    def delete(self, strategy_id: str, user_id: Optional[str] = None) -> None:
        self._owned(strategy_id, user_id)
        del self._strategies[strategy_id]
        del self._owners[strategy_id]

    def _owned(self, strategy_id: str, user_id: Optional[str]) -> StrategyDefinition:
        strategy = self._strategies.get(strategy_id)
        owner = self._owners.get(strategy_id)
        # Unowned entries (bundled samples, anonymous adds) are read-only
        if strategy is None or user_id is None or owner != user_id:
            raise StrategyNotFoundError(
                f"Strategy not found or access denied: {strategy_id}"
            )
        return strategy


# ---------------------------------------------------------------------------
# Price series
# ---------------------------------------------------------------------------

class PriceSeriesStore(ABC):
    """Interface: bars for a symbol within an inclusive date range.

    Returns an empty list when no data exists for the window.
    """

    @abstractmethod
    def fetch(self, symbol: str, start_date: DateLike, end_date: DateLike) -> List[PriceBar]:
        ...


class InMemoryPriceSeriesStore(PriceSeriesStore):
    """Bars kept in memory, keyed by symbol."""

    def __init__(self) -> None:
        self._series: Dict[str, List[PriceBar]] = {}

    def add(self, symbol: str, bars: List[PriceBar]) -> None:
        merged = {b.timestamp: b for b in self._series.get(symbol, [])}
        merged.update({b.timestamp: b for b in bars})
        self._series[symbol] = sorted(merged.values(), key=lambda b: b.timestamp)

    def symbols(self) -> Dict[str, int]:
        """Symbol -> number of stored bars."""
        return {symbol: len(bars) for symbol, bars in sorted(self._series.items())}

    def fetch(self, symbol, start_date, end_date):
        lo, hi = _range_ms(*parse_date_range(start_date, end_date))
        return [b for b in self._series.get(symbol, []) if lo <= b.timestamp <= hi]


class CsvPriceSeriesStore(PriceSeriesStore):
    """Reads ``<data_dir>/<SYMBOL>.csv`` files (see :mod:`pine_backtest.data`)."""

    def __init__(self, data_dir: Union[str, Path]) -> None:
        self.data_dir = Path(data_dir)

    def fetch(self, symbol, start_date, end_date):
        lo, hi = _range_ms(*parse_date_range(start_date, end_date))
        path = self.data_dir / f"{symbol}.csv"
        if not path.exists():
            return []
        bars = load_bars_csv(path, ticker=symbol)
        return [b for b in bars if lo <= b.timestamp <= hi]


class YahooPriceSeriesStore(PriceSeriesStore):
    """Fetches bars from Yahoo Finance on every call."""

    def __init__(self, interval: str = "1d") -> None:
        self.interval = interval

    def fetch(self, symbol, start_date, end_date):
        from pine_backtest.yahoo_fetch import fetch_bars

        start_d, end_d = parse_date_range(start_date, end_date)
        # Yahoo's period2 is exclusive
        return fetch_bars(symbol, start=start_d, end=end_d + timedelta(days=1),
                          interval=self.interval)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunScope:
    """What a persisted result belongs to."""
    strategy_id: str
    symbol: str
    start_date: str
    end_date: str
    initial_capital: float
    user_id: Optional[str] = None


class ResultStore(ABC):
    """Interface: keep a result and return an opaque identifier."""

    @abstractmethod
    def persist(self, result: BacktestResult, scope: RunScope) -> str:
        ...


class InMemoryResultStore(ResultStore):
    def __init__(self) -> None:
        self._results: Dict[str, Tuple[RunScope, BacktestResult]] = {}

    def persist(self, result, scope):
        result_id = uuid.uuid4().hex
        self._results[result_id] = (scope, result)
        return result_id

    def get(self, result_id: str) -> Tuple[RunScope, BacktestResult]:
        try:
            return self._results[result_id]
        except KeyError:
            raise ResultNotFoundError(f"Backtest result not found: {result_id}") from None

    def list_for_user(self, user_id: Optional[str]) -> List[str]:
        return [rid for rid, (scope, _) in self._results.items() if scope.user_id == user_id]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class BacktestService:
    """Resolve a strategy, fetch prices, run the engine and persist.

    Args:
        strategies: Where strategy ids are resolved.
        prices: Where bars come from.
        results: Where finished results are kept.
        engine: Engine to run (a default one is created when omitted).
    """

    def __init__(
        self,
        strategies: StrategyStore,
        prices: PriceSeriesStore,
        results: ResultStore,
        engine: Optional[Engine] = None,
    ) -> None:
        self.strategies = strategies
        self.prices = prices
        self.results = results
        self.engine = engine or Engine()

    def run_backtest(
        self,
        strategy_id: str,
        symbol: str,
        start_date: DateLike,
        end_date: DateLike,
        initial_capital: float,
        user_id: Optional[str] = None,
    ) -> Tuple[str, BacktestResult]:
        """Run one backtest end to end.

        Returns:
            ``(result_id, result)``.

        Raises:
            StrategyNotFoundError: If *strategy_id* is unknown.
            InvalidInputError: For a malformed date range, no price data in
                the window, non-positive capital, or a too-short series.
        """
        cid = generate_correlation_id()
        strategy = self.strategies.resolve(strategy_id)
        start_d, end_d = parse_date_range(start_date, end_date)

        bars = self.prices.fetch(symbol, start_d, end_d)
        if not bars:
            raise InvalidInputError(
                f"No price data found for {symbol} between {start_d} and {end_d}."
            )

        log_structured(
            logger, logging.INFO, "Running backtest", cid,
            strategy=strategy_id, symbol=symbol, bars=len(bars),
            start=start_d, end=end_d, capital=initial_capital,
        )
        result = self.engine.run(strategy.text, bars, initial_capital, correlation_id=cid)

        scope = RunScope(
            strategy_id=strategy_id,
            symbol=symbol,
            start_date=start_d.isoformat(),
            end_date=end_d.isoformat(),
            initial_capital=initial_capital,
            user_id=user_id,
        )
        result_id = self.results.persist(result, scope)
        log_structured(logger, logging.INFO, "Backtest persisted", cid, result_id=result_id)
        return result_id, result
