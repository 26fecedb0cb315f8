"""
Pine Backtest -- Command line entry point.

Usage::

    # Bundled sample strategy over a CSV file
    pine-backtest --sample rsi --csv data/NIFTY50.csv --capital 100000

    # Your own strategy text against Yahoo Finance data
    pine-backtest --strategy-file my_strategy.pine --ticker NIFTY50 \\
        --start 2024-01-01 --end 2024-12-31

    # Seeded synthetic series, JSON output
    pine-backtest --sample bollinger --synthetic DEMO --seed 7 --json

    # List bundled samples
    pine-backtest --list

Exit codes: 0 on success, 2 for invalid input or an unknown sample,
1 when price data cannot be fetched.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from pine_backtest.config import SharpeMethod, load_config
from pine_backtest.data import generate_sample_bars, load_bars_csv
from pine_backtest.engine import Engine
from pine_backtest.errors import BacktestError
from pine_backtest.report import generate_report
from pine_backtest.strategy import SAMPLE_STRATEGIES, get_sample_strategy
from pine_backtest.utils import configure_logging
from pine_backtest.yahoo_fetch import YahooFetchError, configure_client, fetch_bars


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pine-backtest",
        description="Replay a price series against a Pine-style strategy.",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--strategy-file", type=Path, help="Path to strategy source text")
    source.add_argument("--sample", help="Bundled sample strategy name")
    source.add_argument("--list", action="store_true", help="List bundled samples and exit")

    data = parser.add_mutually_exclusive_group()
    data.add_argument("--csv", type=Path, help="OHLCV CSV file")
    data.add_argument("--ticker", help="Fetch from Yahoo Finance (needs --start)")
    data.add_argument("--synthetic", metavar="SYMBOL", help="Generate a random-walk series")

    parser.add_argument("--start", help="Start date YYYY-MM-DD (Yahoo only)")
    parser.add_argument("--end", help="End date YYYY-MM-DD (Yahoo only, default today)")
    parser.add_argument("--seed", type=int, default=None, help="Seed for --synthetic")
    parser.add_argument("--capital", type=float, default=None, help="Initial capital")
    parser.add_argument(
        "--sharpe-method",
        choices=[m.value for m in SharpeMethod],
        default=None,
        help="Return series for the Sharpe ratio",
    )
    parser.add_argument("--json", action="store_true", help="Print JSON instead of a report")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser


def _strategy_text(args: argparse.Namespace) -> str:
    if args.strategy_file:
        return args.strategy_file.read_text()
    return get_sample_strategy(args.sample).text


def _load_bars(args: argparse.Namespace, interval: str):
    if args.csv:
        return load_bars_csv(args.csv, ticker=args.csv.stem.upper())
    if args.ticker:
        if not args.start:
            raise ValueError("--ticker requires --start.")
        return fetch_bars(args.ticker, start=args.start, end=args.end, interval=interval)
    return generate_sample_bars(args.synthetic or "SAMPLE", seed=args.seed)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(args.log_level or config.log_level)
    configure_client(config.yahoo_retry_count, config.yahoo_backoff_base)

    if args.list:
        for name, sample in sorted(SAMPLE_STRATEGIES.items()):
            print(f"{name:<15} {sample.name}")
        return 0

    if not args.strategy_file and not args.sample:
        parser.error("one of --strategy-file, --sample or --list is required")

    sharpe = SharpeMethod(args.sharpe_method) if args.sharpe_method else config.sharpe_method
    capital = args.capital if args.capital is not None else config.initial_capital

    try:
        text = _strategy_text(args)
        bars = _load_bars(args, config.yahoo_interval)
        result = Engine(sharpe_method=sharpe).run(text, bars, capital)
    except (BacktestError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except YahooFetchError as e:
        print(f"Data fetch failed: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(generate_report(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
