"""
Tests for the dashboard JSON API and its .env config manager.
"""

from unittest.mock import patch

import pytest

import app as dashboard_app
import config_manager
from pine_backtest.data import bars_from_closes
from pine_backtest.stores import (
    InMemoryPriceSeriesStore,
    InMemoryResultStore,
    InMemoryStrategyStore,
)
from pine_backtest.strategy import get_sample_strategy

BOLLINGER_TEXT = get_sample_strategy("bollinger").text


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(dashboard_app, "strategy_store", InMemoryStrategyStore(include_samples=True))
    monkeypatch.setattr(dashboard_app, "price_store", InMemoryPriceSeriesStore())
    monkeypatch.setattr(dashboard_app, "result_store", InMemoryResultStore())
    dashboard_app.app.config["TESTING"] = True
    with patch.dict("os.environ", {}, clear=True):
        with dashboard_app.app.test_client() as c:
            yield c


@pytest.fixture
def env_file(tmp_path, monkeypatch):
    path = tmp_path / ".env"
    monkeypatch.setattr(config_manager, "ENV_PATH", path)
    monkeypatch.setattr(dashboard_app, "ENV_PATH", path)
    return path


def _seed(client, symbol="NIFTY50", seed=8):
    return client.post(f"/api/stocks/{symbol}/sample", json={
        "days": 300, "seed": seed, "start": "2024-01-01",
    })


def _bar_dicts(closes):
    return [
        {"timestamp": b.timestamp, "open": b.open, "high": b.high, "low": b.low, "close": b.close}
        for b in bars_from_closes(closes)
    ]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class TestStrategyRoutes:
    def test_samples(self, client):
        data = client.get("/api/strategies/samples").get_json()
        assert data["status"] == "ok"
        assert {s["key"] for s in data["strategies"]} == {"sma_crossover", "rsi", "bollinger"}

    def test_create_and_list(self, client):
        resp = client.post("/api/strategies", json={
            "name": "My RSI", "pine_script": "r = ta.rsi(close, 14)", "user_id": "alice",
        })
        assert resp.status_code == 201
        created = resp.get_json()["strategy"]
        assert created["is_public"] is False

        listed = client.get("/api/strategies?user_id=alice").get_json()["strategies"]
        assert listed[0]["id"] == created["id"]
        assert any(s["id"] == "sample-rsi" for s in listed)

        others = client.get("/api/strategies?user_id=bob").get_json()["strategies"]
        assert all(s["id"] != created["id"] for s in others)

    def test_create_requires_name_and_source(self, client):
        assert client.post("/api/strategies", json={"pine_script": "ta.rsi"}).status_code == 400
        assert client.post("/api/strategies", json={"name": "x"}).status_code == 400
        assert client.post("/api/strategies", json={}).status_code == 400

    def test_update_and_delete_by_owner(self, client):
        sid = client.post("/api/strategies", json={
            "name": "Old", "pine_script": "ta.rsi", "user_id": "alice",
        }).get_json()["strategy"]["id"]

        resp = client.put(f"/api/strategies/{sid}", json={"user_id": "alice", "name": "New"})
        assert resp.status_code == 200
        assert resp.get_json()["strategy"]["name"] == "New"

        assert client.put(f"/api/strategies/{sid}", json={"user_id": "bob", "name": "X"}).status_code == 404
        assert client.delete(f"/api/strategies/{sid}?user_id=alice").status_code == 200
        assert client.delete(f"/api/strategies/{sid}?user_id=alice").status_code == 404

    def test_samples_not_deletable_anonymously(self, client):
        assert client.delete("/api/strategies/sample-rsi").status_code == 404
        assert client.put("/api/strategies/sample-rsi", json={"pine_script": "x"}).status_code == 404
        assert any(s["id"] == "sample-rsi" for s in client.get("/api/strategies").get_json()["strategies"])


# ---------------------------------------------------------------------------
# Price series
# ---------------------------------------------------------------------------

class TestStockRoutes:
    def test_seed_sample_series(self, client):
        resp = _seed(client, "tcs.ns")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["symbol"] == "TCS.NS"
        assert body["bars"] > 0

        stocks = client.get("/api/stocks").get_json()["stocks"]
        assert stocks == {"TCS.NS": body["bars"]}

    def test_bad_start_date(self, client):
        resp = client.post("/api/stocks/X/sample", json={"start": "yesterday"})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Backtests
# ---------------------------------------------------------------------------

class TestBacktestRoutes:
    def test_run_and_fetch(self, client):
        _seed(client)
        resp = client.post("/api/backtest/run", json={
            "strategy_id": "sample-bollinger",
            "symbol": "NIFTY50",
            "start_date": "2024-01-01",
            "end_date": "2024-10-31",
            "initial_capital": 100000,
            "user_id": "alice",
        })
        assert resp.status_code == 200
        run = resp.get_json()
        assert run["status"] == "ok"
        assert run["family"] == "bollinger_mean_reversion"
        assert set(run["results"]) >= {"totalTrades", "profitFactor", "sharpeRatio"}
        assert "BACKTEST REPORT" in run["report"]

        stored = client.get(f"/api/backtest/{run['id']}").get_json()
        assert stored["results"] == run["results"]
        assert stored["trades"] == run["trades"]
        assert stored["symbol"] == "NIFTY50"
        assert stored["strategy_id"] == "sample-bollinger"

    def test_run_with_explicit_bars_and_text(self, client):
        closes = [100.0] * 20 + [80.0] + [100.0] * 4 + [140.0]
        resp = client.post("/api/backtest/run", json={
            "strategy_text": BOLLINGER_TEXT,
            "symbol": "DEMO",
            "start_date": "2024-01-01",
            "end_date": "2024-01-31",
            "initial_capital": 10000,
            "bars": _bar_dicts(closes),
        })
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["results"]["totalTrades"] == 1
        assert [t["type"] for t in body["trades"]] == ["buy", "sell"]

    def test_repeated_text_reuses_strategy(self, client):
        closes = [100.0] * 20 + [80.0] + [100.0] * 4 + [140.0]
        body = {
            "strategy_text": "// mine\n" + BOLLINGER_TEXT,
            "symbol": "DEMO",
            "start_date": "2024-01-01",
            "end_date": "2024-01-31",
            "user_id": "alice",
            "bars": _bar_dicts(closes),
        }
        assert client.post("/api/backtest/run", json=body).status_code == 200
        assert client.post("/api/backtest/run", json=body).status_code == 200
        own = client.get("/api/strategies?user_id=alice").get_json()["strategies"]
        assert [s["name"] for s in own if not s["is_public"]] == ["ad hoc"]

    def test_infinite_capital_400(self, client):
        closes = [100.0] * 20 + [80.0] + [100.0] * 4 + [140.0]
        resp = client.post("/api/backtest/run", json={
            "strategy_id": "sample-bollinger",
            "symbol": "DEMO",
            "start_date": "2024-01-01",
            "end_date": "2024-01-31",
            "initial_capital": "inf",
            "bars": _bar_dicts(closes),
        })
        assert resp.status_code == 400
        assert "finite" in resp.get_json()["message"]

    def test_unknown_strategy_404(self, client):
        _seed(client)
        resp = client.post("/api/backtest/run", json={
            "strategy_id": "missing", "symbol": "NIFTY50",
            "start_date": "2024-01-01", "end_date": "2024-06-30",
        })
        assert resp.status_code == 404
        assert resp.get_json()["status"] == "error"

    def test_no_price_data_400(self, client):
        resp = client.post("/api/backtest/run", json={
            "strategy_id": "sample-rsi", "symbol": "NOPE",
            "start_date": "2024-01-01", "end_date": "2024-06-30",
        })
        assert resp.status_code == 400
        assert "No price data" in resp.get_json()["message"]

    def test_bad_date_range_400(self, client):
        resp = client.post("/api/backtest/run", json={
            "strategy_id": "sample-rsi", "symbol": "X",
            "start_date": "2024-06-30", "end_date": "2024-01-01",
        })
        assert resp.status_code == 400

    @pytest.mark.parametrize("missing", ["symbol", "start_date", "end_date"])
    def test_required_fields(self, client, missing):
        body = {
            "strategy_id": "sample-rsi", "symbol": "X",
            "start_date": "2024-01-01", "end_date": "2024-06-30",
        }
        del body[missing]
        assert client.post("/api/backtest/run", json=body).status_code == 400

    def test_strategy_required(self, client):
        resp = client.post("/api/backtest/run", json={
            "symbol": "X", "start_date": "2024-01-01", "end_date": "2024-06-30",
        })
        assert resp.status_code == 400

    def test_unknown_source(self, client):
        resp = client.post("/api/backtest/run", json={
            "strategy_id": "sample-rsi", "symbol": "X", "source": "ftp",
            "start_date": "2024-01-01", "end_date": "2024-06-30",
        })
        assert resp.status_code == 400
        assert "Unknown source" in resp.get_json()["message"]

    def test_unknown_result_404(self, client):
        assert client.get("/api/backtest/nope").status_code == 404


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestConfigRoutes:
    def test_get_defaults(self, client, env_file):
        config = client.get("/api/config").get_json()["config"]
        assert config["BACKTEST_INITIAL_CAPITAL"]["value"] == "100000"
        assert config["BACKTEST_SHARPE_METHOD"]["choices"] == ["sequential", "legacy"]

    def test_save_preserves_comments(self, client, env_file):
        env_file.write_text("# settings\nLOG_LEVEL=INFO\nOTHER=keep\n")
        resp = client.post("/api/config", json={"LOG_LEVEL": "DEBUG", "YAHOO_RETRY_COUNT": 5})
        assert resp.status_code == 200
        assert env_file.read_text() == "# settings\nLOG_LEVEL=DEBUG\nOTHER=keep\nYAHOO_RETRY_COUNT=5\n"

    @pytest.mark.parametrize("body", [
        {"UNKNOWN_KEY": "1"},
        {"BACKTEST_INITIAL_CAPITAL": "lots"},
        {"BACKTEST_SHARPE_METHOD": "annualised"},
    ])
    def test_rejects_invalid(self, client, env_file, body):
        resp = client.post("/api/config", json=body)
        assert resp.status_code == 400
        assert not env_file.exists()


class TestConfigManager:
    def test_read_env_skips_comments(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("# c\n\nA=1\nB = two \nnoise\n")
        assert config_manager.read_env(path) == {"A": "1", "B": "two"}

    def test_read_env_missing_file(self, tmp_path):
        assert config_manager.read_env(tmp_path / "none") == {}
