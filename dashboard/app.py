"""
Pine Backtest -- Dashboard Flask application.

Local JSON API for managing strategies, seeding price series and
running backtests.

Usage:
    python dashboard/app.py
    -> Serves http://localhost:5050 and opens it in the default browser
"""

import logging
import threading
import webbrowser

from dotenv import load_dotenv
from flask import Flask, request, jsonify

from config_manager import ENV_PATH, get_config, save_config, validate_updates

from pine_backtest.config import load_config
from pine_backtest.data import bars_from_dicts, generate_sample_bars
from pine_backtest.engine import Engine
from pine_backtest.errors import NotFoundError
from pine_backtest.report import generate_report
from pine_backtest.stores import (
    BacktestService,
    CsvPriceSeriesStore,
    InMemoryPriceSeriesStore,
    InMemoryResultStore,
    InMemoryStrategyStore,
    YahooPriceSeriesStore,
    parse_date,
)
from pine_backtest.strategy import SAMPLE_STRATEGIES
from pine_backtest.utils import configure_logging
from pine_backtest.yahoo_fetch import YahooFetchError, configure_client

load_dotenv(ENV_PATH)

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Process-lifetime stores shared by every request
strategy_store = InMemoryStrategyStore(include_samples=True)
price_store = InMemoryPriceSeriesStore()
result_store = InMemoryResultStore()

PRICE_SOURCES = ("memory", "csv", "yahoo")


def _error(message, code):
    return jsonify({"status": "error", "message": message}), code


def _strategy_json(strategy):
    return {
        "id": strategy.id,
        "name": strategy.name,
        "description": strategy.description,
        "is_public": strategy.is_public,
        "pine_script": strategy.text,
    }


def _price_store_for(source, config):
    if source == "csv":
        return CsvPriceSeriesStore(config.data_dir)
    if source == "yahoo":
        configure_client(config.yahoo_retry_count, config.yahoo_backoff_base)
        return YahooPriceSeriesStore(config.yahoo_interval)
    return price_store


# ======================================================================
# Config API routes
# ======================================================================

@app.route("/api/config", methods=["GET"])
def api_get_config():
    """Return all configurable parameters with current values."""
    try:
        return jsonify({"status": "ok", "config": get_config()})
    except Exception as e:
        logger.exception("Reading config failed")
        return _error(str(e), 500)


@app.route("/api/config", methods=["POST"])
def api_save_config():
    """Validate and write parameters to .env, then reload them."""
    try:
        data = request.get_json(silent=True)
        if not data:
            return _error("No data provided", 400)
        updates = validate_updates(data)
        save_config(updates)
        load_dotenv(ENV_PATH, override=True)
        return jsonify({"status": "ok", "message": "Configuration saved"})
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.exception("Saving config failed")
        return _error(str(e), 500)


# ======================================================================
# Strategy API routes
# ======================================================================

@app.route("/api/strategies", methods=["GET"])
def api_list_strategies():
    """The caller's strategies followed by public ones (samples included)."""
    try:
        user_id = request.args.get("user_id")
        strategies = strategy_store.list_strategies(user_id)
        return jsonify({
            "status": "ok",
            "strategies": [_strategy_json(s) for s in strategies],
        })
    except Exception as e:
        logger.exception("Listing strategies failed")
        return _error(str(e), 500)


@app.route("/api/strategies/samples", methods=["GET"])
def api_sample_strategies():
    """Return the bundled sample strategies."""
    samples = [
        dict(_strategy_json(s), key=key)
        for key, s in sorted(SAMPLE_STRATEGIES.items())
    ]
    return jsonify({"status": "ok", "strategies": samples})


@app.route("/api/strategies", methods=["POST"])
def api_create_strategy():
    """Store a new strategy.

    Expected JSON body::

        {
            "name": "My RSI",
            "description": "...",
            "pine_script": "//@version=5 ...",
            "is_public": false,
            "user_id": "alice"
        }
    """
    try:
        data = request.get_json(silent=True)
        if not data:
            return _error("No data provided", 400)
        text = (data.get("pine_script") or "").strip()
        name = (data.get("name") or "").strip()
        if not name:
            return _error("Strategy name is required.", 400)
        if not text:
            return _error("Strategy source is required.", 400)

        strategy_id = strategy_store.add(
            text,
            name=name,
            description=data.get("description", ""),
            is_public=bool(data.get("is_public", False)),
            user_id=data.get("user_id"),
        )
        strategy = strategy_store.resolve(strategy_id)
        return jsonify({"status": "ok", "strategy": _strategy_json(strategy)}), 201
    except Exception as e:
        logger.exception("Creating strategy failed")
        return _error(str(e), 500)


@app.route("/api/strategies/<strategy_id>", methods=["PUT"])
def api_update_strategy(strategy_id):
    """Change name, description, source or visibility of an owned strategy."""
    try:
        data = request.get_json(silent=True) or {}
        strategy = strategy_store.update(
            strategy_id,
            user_id=data.get("user_id"),
            name=data.get("name"),
            description=data.get("description"),
            text=data.get("pine_script"),
            is_public=data.get("is_public"),
        )
        return jsonify({"status": "ok", "strategy": _strategy_json(strategy)})
    except NotFoundError as e:
        return _error(str(e), 404)
    except Exception as e:
        logger.exception("Updating strategy failed")
        return _error(str(e), 500)


@app.route("/api/strategies/<strategy_id>", methods=["DELETE"])
def api_delete_strategy(strategy_id):
    try:
        strategy_store.delete(strategy_id, user_id=request.args.get("user_id"))
        return jsonify({"status": "ok", "message": "Strategy deleted"})
    except NotFoundError as e:
        return _error(str(e), 404)
    except Exception as e:
        logger.exception("Deleting strategy failed")
        return _error(str(e), 500)


# ======================================================================
# Price series API routes
# ======================================================================

@app.route("/api/stocks", methods=["GET"])
def api_list_stocks():
    """Symbols held in memory and their bar counts."""
    return jsonify({"status": "ok", "stocks": price_store.symbols()})


@app.route("/api/stocks/<symbol>/sample", methods=["POST"])
def api_seed_sample_stock(symbol):
    """Generate a random-walk series for *symbol* and keep it in memory.

    Optional JSON body: ``{"days": 365, "seed": 42, "start": "2024-01-01"}``.
    """
    try:
        data = request.get_json(silent=True) or {}
        symbol = symbol.strip().upper()
        days = int(data.get("days", 365))
        seed = data.get("seed")
        start = data.get("start")
        if start:
            start = parse_date(start)

        bars = generate_sample_bars(symbol, days=days, start=start, seed=seed)
        price_store.add(symbol, bars)
        return jsonify({"status": "ok", "symbol": symbol, "bars": len(bars)})
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.exception("Seeding sample data failed")
        return _error(str(e), 500)


# ======================================================================
# Backtesting API routes
# ======================================================================

@app.route("/api/backtest/run", methods=["POST"])
def api_backtest_run():
    """Run a backtest, persist it and return the result as JSON.

    Expected JSON body::

        {
            "strategy_id": "sample-rsi",
            "symbol": "NIFTY50",
            "start_date": "2024-01-01",
            "end_date": "2024-12-31",
            "initial_capital": 100000,
            "source": "memory",       // memory | csv | yahoo
            "user_id": "alice",
            "bars": [...]             // optional: explicit OHLCV bars
        }

    ``strategy_text`` may be sent instead of ``strategy_id``; it is
    stored as a private strategy of ``user_id`` before the run.
    """
    try:
        data = request.get_json(silent=True)
        if not data:
            return _error("No data provided", 400)

        config = load_config()
        symbol = (data.get("symbol") or "").strip().upper()
        start = (data.get("start_date") or "").strip()
        end = (data.get("end_date") or "").strip()
        source = data.get("source", "memory")
        user_id = data.get("user_id")
        initial_capital = float(data.get("initial_capital", config.initial_capital))

        if not symbol:
            return _error("Symbol is required.", 400)
        if not start:
            return _error("Start date is required.", 400)
        if not end:
            return _error("End date is required.", 400)
        if source not in PRICE_SOURCES:
            return _error(f"Unknown source '{source}'. Expected one of: {', '.join(PRICE_SOURCES)}", 400)

        strategy_id = data.get("strategy_id")
        if not strategy_id:
            text = (data.get("strategy_text") or "").strip()
            if not text:
                return _error("strategy_id or strategy_text is required.", 400)
            strategy_id = (
                strategy_store.find_by_text(text, user_id)
                or strategy_store.add(text, name="ad hoc", user_id=user_id)
            )

        if data.get("bars"):
            prices = InMemoryPriceSeriesStore()
            prices.add(symbol, bars_from_dicts(data["bars"], ticker=symbol))
        else:
            prices = _price_store_for(source, config)

        service = BacktestService(
            strategy_store, prices, result_store, engine=Engine(config=config),
        )
        result_id, result = service.run_backtest(
            strategy_id, symbol, start, end, initial_capital, user_id=user_id,
        )

        return jsonify({
            "status": "ok",
            "id": result_id,
            "family": result.family,
            "final_equity": result.final_equity,
            "open_position": result.open_position,
            **result.to_dict(),
            "equity_curve": [
                {"timestamp": p.timestamp, "equity": round(p.equity, 2)}
                for p in result.equity_curve
            ],
            "report": generate_report(result),
        })
    except NotFoundError as e:
        return _error(str(e), 404)
    except YahooFetchError as e:
        return _error(f"Data fetch failed: {e}", 400)
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.exception("Backtest run failed")
        return _error(str(e), 500)


@app.route("/api/backtest/<result_id>", methods=["GET"])
def api_backtest_get(result_id):
    """Return a previously persisted result with its run scope."""
    try:
        scope, result = result_store.get(result_id)
        return jsonify({
            "status": "ok",
            "id": result_id,
            "strategy_id": scope.strategy_id,
            "symbol": scope.symbol,
            "start_date": scope.start_date,
            "end_date": scope.end_date,
            "initial_capital": scope.initial_capital,
            **result.to_dict(),
        })
    except NotFoundError as e:
        return _error(str(e), 404)
    except Exception as e:
        logger.exception("Reading backtest result failed")
        return _error(str(e), 500)


# ======================================================================
# Entry point
# ======================================================================

def open_browser():
    """Open the dashboard in the default browser after a short delay."""
    webbrowser.open("http://localhost:5050/api/strategies")


if __name__ == "__main__":
    configure_logging(load_config().log_level)
    # Open browser after Flask starts
    threading.Timer(1.5, open_browser).start()
    print("=" * 50)
    print("  Pine Backtest Dashboard")
    print("  http://localhost:5050")
    print("=" * 50)
    app.run(host="127.0.0.1", port=5050, debug=False)
