"""
Pine Backtest -- Historical data loading.

Reads OHLCV bars from CSV files or plain dicts, and generates synthetic
sample series for demos.

Expected CSV format
-------------------

One row per bar::

    timestamp,open,high,low,close,volume
    2024-01-02,21727.75,21834.35,21680.85,21665.80,250000

  - ``timestamp`` is parsed flexibly (ISO-8601, common US formats, or an
    integer epoch-milliseconds value).  Naive datetimes are taken as UTC.
  - An optional ``ticker`` column is supported; when absent, the ticker
    must be supplied to :func:`load_bars_csv` via the *ticker* argument.
  - ``volume`` defaults to 0 when the column is absent.
"""

import csv
import random
from datetime import datetime, date, timedelta, timezone
from pathlib import Path
from typing import List, Union, Dict, Optional

from pine_backtest.models import PriceBar


# ---------------------------------------------------------------------------
# Timestamp parsing
# ---------------------------------------------------------------------------

_TIMESTAMP_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
]


def _parse_timestamp(value: str) -> datetime:
    """Try multiple common timestamp formats and return the first match."""
    value = value.strip()
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise ValueError(f"Cannot parse timestamp: '{value}'")


def to_epoch_ms(dt: Union[datetime, date]) -> int:
    """Convert a datetime (naive means UTC) or date to epoch milliseconds."""
    if not isinstance(dt, datetime):
        dt = datetime(dt.year, dt.month, dt.day)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def parse_timestamp_ms(value: Union[str, int, float, datetime, date]) -> int:
    """Normalise a timestamp of any supported form to epoch milliseconds."""
    if isinstance(value, (datetime, date)):
        return to_epoch_ms(value)
    if isinstance(value, (int, float)):
        return int(value)
    text = value.strip()
    if text.isdigit():
        return int(text)
    return to_epoch_ms(_parse_timestamp(text))


# ---------------------------------------------------------------------------
# Bar loading
# ---------------------------------------------------------------------------

def load_bars_csv(
    path: Union[str, Path],
    ticker: str = "",
) -> List[PriceBar]:
    """Load OHLCV bars from a CSV file.

    Args:
        path: Path to the CSV file.
        ticker: Default ticker symbol.  Overridden by a ``ticker`` column
            in the CSV if present.

    Returns:
        A list of :class:`PriceBar` objects sorted by timestamp (ascending).

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: On malformed rows.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Bars CSV not found: {path}")

    bars: List[PriceBar] = []

    with open(path, "r", newline="") as f:
        reader = csv.DictReader(f)
        for row_num, row in enumerate(reader, start=2):
            try:
                bars.append(PriceBar(
                    timestamp=parse_timestamp_ms(row["timestamp"]),
                    open=float(row["open"]),
                    high=float(row["high"]),
                    low=float(row["low"]),
                    close=float(row["close"]),
                    volume=int(float(row.get("volume") or 0)),
                    ticker=row.get("ticker") or ticker,
                ))
            except (KeyError, ValueError) as e:
                raise ValueError(f"Error on row {row_num}: {e}") from e

    bars.sort(key=lambda b: b.timestamp)
    return bars


def bars_from_dicts(records: List[Dict], ticker: str = "") -> List[PriceBar]:
    """Build :class:`PriceBar` objects from a list of dicts.

    Each dict needs ``timestamp``, ``open``, ``high``, ``low`` and
    ``close``; ``volume`` and ``ticker`` are optional.  ``timestamp`` may
    be epoch milliseconds, a :class:`datetime`, or a string.
    """
    bars: List[PriceBar] = []
    for rec in records:
        bars.append(PriceBar(
            timestamp=parse_timestamp_ms(rec["timestamp"]),
            open=float(rec["open"]),
            high=float(rec["high"]),
            low=float(rec["low"]),
            close=float(rec["close"]),
            volume=int(rec.get("volume", 0)),
            ticker=rec.get("ticker", ticker),
        ))
    bars.sort(key=lambda b: b.timestamp)
    return bars


def bars_from_closes(
    closes: List[float],
    start: Union[datetime, date] = date(2024, 1, 1),
    ticker: str = "",
) -> List[PriceBar]:
    """Daily bars whose open/high/low all equal the given closes."""
    start_ms = to_epoch_ms(start)
    day_ms = 24 * 60 * 60 * 1000
    return [
        PriceBar(
            timestamp=start_ms + i * day_ms,
            open=c, high=c, low=c, close=c,
            volume=0,
            ticker=ticker,
        )
        for i, c in enumerate(closes)
    ]


# ---------------------------------------------------------------------------
# Synthetic data
# ---------------------------------------------------------------------------

def generate_sample_bars(
    symbol: str,
    days: int = 252,
    start: Optional[date] = None,
    seed: Optional[int] = None,
    volatility: float = 0.02,
) -> List[PriceBar]:
    """Generate a random-walk daily series for demos.

    Steps one calendar day at a time for *days* days, skipping weekends,
    so ~252 calendar days yields ~180 bars.  Prices are rounded to cents.

    Args:
        symbol: Ticker stamped on every bar.
        days: Calendar days to cover.
        start: First calendar day (defaults to one year before today).
        seed: Seed for reproducible output.
        volatility: Maximum absolute daily close-to-open change.
    """
    rng = random.Random(seed)
    if start is None:
        start = date.today() - timedelta(days=365)

    price = rng.random() * 1000 + 100
    bars: List[PriceBar] = []

    for i in range(days):
        day = start + timedelta(days=i)
        if day.weekday() >= 5:
            continue

        change = (rng.random() - 0.5) * 2 * volatility
        open_ = price
        close = open_ * (1 + change)
        high = max(open_, close) * (1 + rng.random() * 0.01)
        low = min(open_, close) * (1 - rng.random() * 0.01)
        volume = rng.randrange(100_000, 1_100_000)

        bars.append(PriceBar(
            timestamp=to_epoch_ms(day),
            open=round(open_, 2),
            high=round(high, 2),
            low=round(low, 2),
            close=round(close, 2),
            volume=volume,
            ticker=symbol,
        ))
        price = close

    return bars
