"""
Tests for the collaborator stores and the backtest service.
"""

from datetime import date
from unittest.mock import patch

import pytest

from pine_backtest.data import bars_from_closes, generate_sample_bars
from pine_backtest.errors import (
    InvalidInputError,
    ResultNotFoundError,
    StrategyNotFoundError,
)
from pine_backtest.stores import (
    BacktestService,
    CsvPriceSeriesStore,
    InMemoryPriceSeriesStore,
    InMemoryResultStore,
    InMemoryStrategyStore,
    PriceSeriesStore,
    ResultStore,
    RunScope,
    StrategyStore,
    YahooPriceSeriesStore,
    parse_date,
    parse_date_range,
)
from pine_backtest.strategy import get_sample_strategy


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _service(bars=None, symbol="NIFTY50"):
    strategies = InMemoryStrategyStore(include_samples=True)
    prices = InMemoryPriceSeriesStore()
    if bars is not None:
        prices.add(symbol, bars)
    results = InMemoryResultStore()
    return BacktestService(strategies, prices, results)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

class TestDateRange:
    def test_parse_string(self):
        assert parse_date("2024-03-01") == date(2024, 3, 1)

    def test_malformed(self):
        with pytest.raises(InvalidInputError, match="Malformed date"):
            parse_date("03/01/2024")

    def test_start_after_end(self):
        with pytest.raises(InvalidInputError, match="must not be after"):
            parse_date_range("2024-02-01", "2024-01-01")

    def test_same_day_is_valid(self):
        assert parse_date_range("2024-01-01", "2024-01-01") == (date(2024, 1, 1), date(2024, 1, 1))


# ---------------------------------------------------------------------------
# Strategy store
# ---------------------------------------------------------------------------

class TestInMemoryStrategyStore:
    def test_samples_resolvable(self):
        store = InMemoryStrategyStore(include_samples=True)
        assert store.resolve("sample-rsi") == get_sample_strategy("rsi")

    def test_empty_by_default(self):
        with pytest.raises(StrategyNotFoundError):
            InMemoryStrategyStore().resolve("sample-rsi")

    def test_add_and_resolve(self):
        store = InMemoryStrategyStore()
        sid = store.add("ta.rsi", name="Mine", user_id="alice")
        strategy = store.resolve(sid)
        assert strategy.id == sid
        assert strategy.name == "Mine"
        assert not strategy.is_public

    def test_list_own_then_public(self):
        store = InMemoryStrategyStore(include_samples=True)
        mine = store.add("ta.rsi", name="Mine", user_id="alice")
        theirs = store.add("ta.rsi", name="Theirs", user_id="bob")
        shared = store.add("ta.rsi", name="Shared", is_public=True, user_id="bob")

        ids = [s.id for s in store.list_strategies("alice")]
        assert ids[0] == mine
        assert shared in ids
        assert "sample-rsi" in ids
        assert theirs not in ids

    def test_update_by_owner(self):
        store = InMemoryStrategyStore()
        sid = store.add("ta.rsi", name="Old", user_id="alice")
        updated = store.update(sid, user_id="alice", name="New", description=None)
        assert updated.name == "New"
        assert store.resolve(sid).name == "New"

    def test_update_by_other_user_denied(self):
        store = InMemoryStrategyStore()
        sid = store.add("ta.rsi", user_id="alice")
        with pytest.raises(StrategyNotFoundError, match="access denied"):
            store.update(sid, user_id="bob", name="Hijack")

    def test_samples_cannot_be_deleted_by_users(self):
        store = InMemoryStrategyStore(include_samples=True)
        with pytest.raises(StrategyNotFoundError):
            store.delete("sample-rsi", user_id="alice")

    def test_anonymous_caller_cannot_touch_samples(self):
        store = InMemoryStrategyStore(include_samples=True)
        original = store.resolve("sample-rsi")
        with pytest.raises(StrategyNotFoundError):
            store.delete("sample-rsi", user_id=None)
        with pytest.raises(StrategyNotFoundError):
            store.update("sample-rsi", user_id=None, text="nothing")
        assert store.resolve("sample-rsi") == original

    def test_anonymous_strategies_are_read_only(self):
        store = InMemoryStrategyStore()
        sid = store.add("ta.rsi")
        with pytest.raises(StrategyNotFoundError):
            store.delete(sid)
        assert store.resolve(sid).text == "ta.rsi"

    def test_find_by_text_scoped_to_owner(self):
        store = InMemoryStrategyStore()
        sid = store.add("ta.rsi", user_id="alice")
        assert store.find_by_text("ta.rsi", user_id="alice") == sid
        assert store.find_by_text("ta.rsi", user_id="bob") is None
        assert store.find_by_text("ta.sma", user_id="alice") is None

    def test_delete(self):
        store = InMemoryStrategyStore()
        sid = store.add("ta.rsi", user_id="alice")
        store.delete(sid, user_id="alice")
        with pytest.raises(StrategyNotFoundError):
            store.resolve(sid)


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class TestStoreInterfaces:
    @pytest.mark.parametrize("base", [StrategyStore, PriceSeriesStore, ResultStore])
    def test_cannot_instantiate_interface(self, base):
        with pytest.raises(TypeError):
            base()

    def test_partial_subclass_cannot_instantiate(self):
        class NoFetch(PriceSeriesStore):
            pass

        with pytest.raises(TypeError):
            NoFetch()


# ---------------------------------------------------------------------------
# Price stores
# ---------------------------------------------------------------------------

class TestInMemoryPriceSeriesStore:
    def test_inclusive_range(self):
        store = InMemoryPriceSeriesStore()
        store.add("X", bars_from_closes([1.0, 2.0, 3.0, 4.0], start=date(2024, 1, 1)))
        bars = store.fetch("X", "2024-01-02", "2024-01-03")
        assert [b.close for b in bars] == [2.0, 3.0]

    def test_unknown_symbol_is_empty(self):
        assert InMemoryPriceSeriesStore().fetch("X", "2024-01-01", "2024-12-31") == []

    def test_add_merges_by_timestamp(self):
        store = InMemoryPriceSeriesStore()
        store.add("X", bars_from_closes([1.0, 2.0], start=date(2024, 1, 1)))
        store.add("X", bars_from_closes([5.0, 6.0], start=date(2024, 1, 2)))
        assert [b.close for b in store.fetch("X", "2024-01-01", "2024-01-31")] == [1.0, 5.0, 6.0]
        assert store.symbols() == {"X": 3}


class TestCsvPriceSeriesStore:
    def test_reads_symbol_file(self, tmp_path):
        (tmp_path / "TCS.csv").write_text(
            "timestamp,open,high,low,close\n"
            "2024-01-01,1,1,1,1\n"
            "2024-01-02,2,2,2,2\n"
            "2024-01-03,3,3,3,3\n"
        )
        bars = CsvPriceSeriesStore(tmp_path).fetch("TCS", "2024-01-02", "2024-01-03")
        assert [b.close for b in bars] == [2.0, 3.0]
        assert bars[0].ticker == "TCS"

    def test_missing_file_is_empty(self, tmp_path):
        assert CsvPriceSeriesStore(tmp_path).fetch("NONE", "2024-01-01", "2024-01-02") == []


class TestYahooPriceSeriesStore:
    @patch("pine_backtest.yahoo_fetch.fetch_bars")
    def test_end_date_made_exclusive(self, mock_fetch):
        mock_fetch.return_value = []
        YahooPriceSeriesStore("1d").fetch("NIFTY50", "2024-01-01", "2024-01-31")
        mock_fetch.assert_called_once_with(
            "NIFTY50", start=date(2024, 1, 1), end=date(2024, 2, 1), interval="1d",
        )

    @patch("pine_backtest.yahoo_fetch._get_client")
    def test_empty_window_is_empty_list(self, mock_get_client):
        mock_get_client.return_value.get_chart.return_value = {
            "chart": {"result": [{"meta": {"symbol": "^NSEI"}, "indicators": {"quote": [{}]}}], "error": None},
        }
        store = YahooPriceSeriesStore("1d")
        assert store.fetch("NIFTY50", "2024-01-06", "2024-01-07") == []

        service = BacktestService(InMemoryStrategyStore(include_samples=True), store, InMemoryResultStore())
        with pytest.raises(InvalidInputError, match="No price data found for NIFTY50"):
            service.run_backtest("sample-rsi", "NIFTY50", "2024-01-06", "2024-01-07", 1000)


# ---------------------------------------------------------------------------
# Result store
# ---------------------------------------------------------------------------

class TestInMemoryResultStore:
    def test_unknown_id(self):
        with pytest.raises(ResultNotFoundError):
            InMemoryResultStore().get("missing")

    def test_list_for_user(self):
        store = InMemoryResultStore()
        scope = RunScope("s", "X", "2024-01-01", "2024-01-31", 1000.0, user_id="alice")
        rid = store.persist(object(), scope)
        assert store.list_for_user("alice") == [rid]
        assert store.list_for_user("bob") == []


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class TestBacktestService:
    def test_end_to_end(self):
        bars = generate_sample_bars("NIFTY50", days=300, start=date(2024, 1, 1), seed=8)
        service = _service(bars)

        rid, result = service.run_backtest(
            "sample-bollinger", "NIFTY50", "2024-01-01", "2024-10-31", 100_000, user_id="alice",
        )
        scope, stored = service.results.get(rid)
        assert stored is result
        assert scope.symbol == "NIFTY50"
        assert scope.user_id == "alice"
        assert scope.start_date == "2024-01-01"
        assert result.family == "bollinger_mean_reversion"

    def test_unknown_strategy(self):
        with pytest.raises(StrategyNotFoundError):
            _service().run_backtest("nope", "X", "2024-01-01", "2024-02-01", 1000)

    def test_no_price_data(self):
        with pytest.raises(InvalidInputError, match="No price data found for X"):
            _service().run_backtest("sample-rsi", "X", "2024-01-01", "2024-02-01", 1000)

    def test_bad_range_checked_before_fetch(self):
        with pytest.raises(InvalidInputError, match="must not be after"):
            _service().run_backtest("sample-rsi", "X", "2024-03-01", "2024-02-01", 1000)

    def test_short_window_rejected(self):
        bars = bars_from_closes([100.0] * 30, start=date(2024, 1, 1), ticker="X")
        with pytest.raises(InvalidInputError, match="at least 20"):
            _service(bars, symbol="X").run_backtest("sample-rsi", "X", "2024-01-01", "2024-01-10", 1000)

    def test_nothing_persisted_on_failure(self):
        service = _service()
        with pytest.raises(InvalidInputError):
            service.run_backtest("sample-rsi", "X", "2024-01-01", "2024-02-01", 1000)
        assert service.results.list_for_user(None) == []
