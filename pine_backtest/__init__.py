"""
Pine Backtest -- Strategy backtesting engine.

Replays a historical OHLCV series against Pine-Script-style strategy
text, under a long-only, single-position, all-in execution model.

Supports:
  - Three strategy families recognised from the text: SMA crossover,
    RSI oversold/overbought, Bollinger mean reversion
  - Bar-by-bar replay with fills at the close after a 20-bar warm-up
  - Run metrics: total return, max drawdown, Sharpe, win rate, profit factor
  - CSV, Yahoo Finance and synthetic price series
  - Strategy / price / result stores and a service that ties them together

Strategy text is matched against fixed markers; it is never executed.
Unrecognised text yields a run with no trades and all-zero metrics.

Quick start::

    from pine_backtest import Engine, get_sample_strategy, generate_sample_bars

    bars = generate_sample_bars("DEMO", seed=42)
    result = Engine().run(get_sample_strategy("rsi").text, bars, 100_000)
    print(generate_report(result))
"""

from pine_backtest.models import (
    PriceBar,
    StrategyDefinition,
    Signal,
    Trade,
    TradeSide,
    PositionState,
    EquityPoint,
    BacktestMetrics,
    BacktestResult,
)
from pine_backtest.errors import (
    BacktestError,
    InvalidInputError,
    NotFoundError,
    StrategyNotFoundError,
    ResultNotFoundError,
)
from pine_backtest.config import BacktestConfig, SharpeMethod, load_config
from pine_backtest.strategy import (
    StrategyFamily,
    classify_strategy,
    SAMPLE_STRATEGIES,
    get_sample_strategy,
)
from pine_backtest.signals import WARM_UP_OFFSET, SignalGenerator, get_generator
from pine_backtest.ledger import PositionLedger
from pine_backtest.metrics import compute_metrics
from pine_backtest.engine import Engine, run_backtest
from pine_backtest.data import (
    load_bars_csv,
    bars_from_dicts,
    bars_from_closes,
    generate_sample_bars,
)
from pine_backtest.report import generate_report
from pine_backtest.stores import (
    BacktestService,
    InMemoryStrategyStore,
    InMemoryPriceSeriesStore,
    InMemoryResultStore,
    CsvPriceSeriesStore,
    YahooPriceSeriesStore,
    RunScope,
)

__all__ = [
    "PriceBar",
    "StrategyDefinition",
    "Signal",
    "Trade",
    "TradeSide",
    "PositionState",
    "EquityPoint",
    "BacktestMetrics",
    "BacktestResult",
    "BacktestError",
    "InvalidInputError",
    "NotFoundError",
    "StrategyNotFoundError",
    "ResultNotFoundError",
    "BacktestConfig",
    "SharpeMethod",
    "load_config",
    "StrategyFamily",
    "classify_strategy",
    "SAMPLE_STRATEGIES",
    "get_sample_strategy",
    "WARM_UP_OFFSET",
    "SignalGenerator",
    "get_generator",
    "PositionLedger",
    "compute_metrics",
    "Engine",
    "run_backtest",
    "load_bars_csv",
    "bars_from_dicts",
    "bars_from_closes",
    "generate_sample_bars",
    "generate_report",
    "BacktestService",
    "InMemoryStrategyStore",
    "InMemoryPriceSeriesStore",
    "InMemoryResultStore",
    "CsvPriceSeriesStore",
    "YahooPriceSeriesStore",
    "RunScope",
]
