"""
Pine Backtest -- Yahoo Finance historical bar fetcher.

Downloads daily (or intraday) OHLCV bars from Yahoo Finance's v8 chart
endpoint and turns them into :class:`PriceBar` objects with
epoch-millisecond timestamps.

Yahoo wants a session cookie plus a "crumb" token on every chart call.
The client obtains the pair lazily, refreshes it when a request comes
back 401, and backs off exponentially on 429 and 5xx responses.

Index names used by the dashboard (``NIFTY50``, ``SENSEX``) are mapped to
their Yahoo symbols; any other ticker is passed through upper-cased
(e.g. ``RELIANCE.NS``).

Usage::

    from pine_backtest.yahoo_fetch import fetch_bars

    bars = fetch_bars("NIFTY50", start="2024-01-01", end="2024-06-30")
    result = Engine().run(strategy_text, bars, 100_000)
"""

from __future__ import annotations

import time
import logging
from datetime import datetime, date
from typing import Dict, List, Optional

import requests

from pine_backtest.data import to_epoch_ms
from pine_backtest.models import PriceBar

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
COOKIE_URL = "https://fc.yahoo.com"
CRUMB_URLS = (
    "https://query1.finance.yahoo.com/v1/test/getcrumb",
    "https://query2.finance.yahoo.com/v1/test/getcrumb",
)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

VALID_INTERVALS = {
    "1m", "2m", "5m", "15m", "30m", "60m", "90m",
    "1h", "1d", "5d", "1wk", "1mo", "3mo",
}

SYMBOL_ALIASES = {
    "NIFTY50": "^NSEI",
    "SENSEX": "^BSESN",
}


class YahooFetchError(Exception):
    """Raised when historical data cannot be fetched."""


def _looks_like_crumb(response: requests.Response) -> bool:
    body = (response.text or "").strip()
    return (
        response.status_code == 200
        and bool(body)
        and "Too Many" not in body
        and "Invalid" not in body
    )


class _ChartClient:
    """Session-holding chart API client.

    Args:
        retry_count: Attempts per chart request before giving up.
        backoff_base: Seconds; attempt ``n`` waits ``backoff_base ** n``.
    """

    def __init__(self, retry_count: int = 3, backoff_base: int = 2):
        self.retry_count = retry_count
        self.backoff_base = backoff_base
        self._crumb: Optional[str] = None
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})

    def _refresh_crumb(self) -> str:
        self._session.cookies.clear()
        self._session.get(COOKIE_URL, allow_redirects=True, timeout=15)

        for url in CRUMB_URLS:
            response = self._session.get(url, allow_redirects=True, timeout=15)
            if _looks_like_crumb(response):
                self._crumb = response.text.strip()
                return self._crumb

        raise YahooFetchError("Could not obtain Yahoo crumb for chart API.")

    def get_chart(self, symbol: str, params: Dict[str, object]) -> dict:
        """GET the chart JSON for *symbol*, retrying as described above."""
        try:
            return self._get_chart(symbol, params)
        except requests.RequestException as e:
            raise YahooFetchError(f"Yahoo chart request for {symbol} failed: {e}") from e

    def _get_chart(self, symbol: str, params: Dict[str, object]) -> dict:
        query = dict(params, crumb=self._crumb or self._refresh_crumb())
        url = CHART_URL.format(symbol=symbol)

        status = None
        for attempt in range(self.retry_count):
            response = self._session.get(url, params=query, timeout=20)
            status = response.status_code

            if status == 401:
                query["crumb"] = self._refresh_crumb()
                continue

            if status in RETRYABLE_STATUS:
                wait = self.backoff_base ** attempt
                logger.warning(
                    "Yahoo chart API returned %d for %s, retrying in %ds (attempt %d/%d)",
                    status, symbol, wait, attempt + 1, self.retry_count,
                )
                time.sleep(wait)
                continue

            response.raise_for_status()
            return response.json()

        raise YahooFetchError(
            f"Yahoo chart request for {symbol} failed after "
            f"{self.retry_count} attempts (last status={status})"
        )


# Shared client so the crumb survives between calls
_client: Optional[_ChartClient] = None


def _get_client() -> _ChartClient:
    global _client
    if _client is None:
        _client = _ChartClient()
    return _client


def configure_client(retry_count: int = 3, backoff_base: int = 2) -> None:
    """Replace the shared client, e.g. with values from :func:`load_config`."""
    global _client
    _client = _ChartClient(retry_count=retry_count, backoff_base=backoff_base)


def _parse_date(value: str | date | datetime) -> datetime:
    """Convert a date string or object to a naive datetime."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    raise ValueError(f"Cannot parse date: '{value}'")


def yahoo_symbol(ticker: str) -> str:
    """Map a dashboard ticker to the symbol Yahoo expects."""
    return SYMBOL_ALIASES.get(ticker, ticker)


def _column(quotes: dict, name: str, length: int) -> list:
    values = list(quotes.get(name) or [])
    return values + [None] * (length - len(values))


def parse_chart(data: dict, ticker: str) -> List[PriceBar]:
    """Convert a chart API payload into sorted bars.

    Rows with a missing open, high, low or close (holidays, halts) are
    dropped.  A missing volume counts as zero.  A window with no
    timestamps (weekend, pre-listing) yields an empty list.

    Raises:
        YahooFetchError: On an error payload or a missing result block.
    """
    chart = data.get("chart", {})
    if chart.get("error"):
        raise YahooFetchError(f"Yahoo chart error: {chart['error']}")

    results = chart.get("result")
    if not results:
        raise YahooFetchError(f"No chart data returned for {ticker}.")

    timestamps = results[0].get("timestamp") or []
    if not timestamps:
        return []

    quotes = (results[0].get("indicators", {}).get("quote") or [{}])[0]
    n = len(timestamps)
    rows = zip(
        timestamps,
        _column(quotes, "open", n),
        _column(quotes, "high", n),
        _column(quotes, "low", n),
        _column(quotes, "close", n),
        _column(quotes, "volume", n),
    )

    bars = [
        PriceBar(
            timestamp=int(ts) * 1000,
            open=float(o),
            high=float(h),
            low=float(lo),
            close=float(c),
            volume=int(v or 0),
            ticker=ticker,
        )
        for ts, o, h, lo, c, v in rows
        if None not in (o, h, lo, c)
    ]
    bars.sort(key=lambda b: b.timestamp)
    return bars


def fetch_bars(
    ticker: str,
    start: str | date | datetime,
    end: str | date | datetime | None = None,
    interval: str = "1d",
) -> List[PriceBar]:
    """Fetch historical OHLCV bars from Yahoo Finance.

    Args:
        ticker: Symbol or index alias (e.g. ``"NIFTY50"``, ``"TCS.NS"``).
        start: Start date (inclusive).  Accepts ``"YYYY-MM-DD"`` strings,
            :class:`date`, or :class:`datetime`.
        end: End of the window (Yahoo treats it as exclusive).  Defaults
            to now.
        interval: Bar interval, one of :data:`VALID_INTERVALS`.

    Returns:
        List of :class:`PriceBar` objects sorted by timestamp, each stamped
        with *ticker* as given (upper-cased), not the Yahoo alias.

    Raises:
        ValueError: If *interval* is not valid or dates are malformed.
        YahooFetchError: If the data cannot be fetched from Yahoo.
    """
    ticker = ticker.strip().upper()
    if not ticker:
        raise ValueError("Ticker must not be empty.")

    if interval not in VALID_INTERVALS:
        raise ValueError(
            f"Invalid interval '{interval}'. Must be one of: {sorted(VALID_INTERVALS)}"
        )

    start_dt = _parse_date(start)
    end_dt = _parse_date(end) if end else datetime.now()
    if start_dt >= end_dt:
        raise ValueError(f"Start date ({start_dt.date()}) must be before end date ({end_dt.date()}).")

    data = _get_client().get_chart(yahoo_symbol(ticker), {
        "period1": to_epoch_ms(start_dt) // 1000,
        "period2": to_epoch_ms(end_dt) // 1000,
        "interval": interval,
        "includePrePost": "false",
        "events": "",
    })
    bars = parse_chart(data, ticker)

    logger.info(
        "Fetched %d bars for %s (%s to %s, interval=%s)",
        len(bars), ticker, start_dt.date(), end_dt.date(), interval,
    )
    return bars
