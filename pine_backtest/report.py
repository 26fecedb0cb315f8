"""
Pine Backtest -- Text report generation.

Produces a human-readable summary of a :class:`BacktestResult` for
terminal output.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pine_backtest.models import BacktestResult

DEFAULT_TITLE = "PINE BACKTEST -- BACKTEST REPORT"


def _fmt_ts(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def generate_report(
    result: BacktestResult,
    title: str = DEFAULT_TITLE,
    max_trades: int = 20,
) -> str:
    """Generate a text summary report from a backtest result.

    Args:
        result: Completed :class:`BacktestResult`.
        title: Header line.
        max_trades: How many of the most recent fills to list.

    Returns:
        A formatted multi-line string.
    """
    m = result.metrics
    lines: list[str] = []
    w = 60

    lines.append("=" * w)
    lines.append(title)
    lines.append("=" * w)

    if result.start_time is not None and result.end_time is not None:
        lines.append(f"Period:           {_fmt_ts(result.start_time)} to {_fmt_ts(result.end_time)}")
    lines.append(f"Strategy family:  {result.family}")
    lines.append(f"Bars replayed:    {result.bars_processed:,}")
    lines.append(f"Signals recorded: {len(result.signals):,}")
    lines.append("")

    lines.append("-" * w)
    lines.append("RETURNS")
    lines.append("-" * w)
    lines.append(f"Initial capital:  {result.initial_capital:>15,.2f}")
    lines.append(f"Final equity:     {result.final_equity:>15,.2f}")
    lines.append(f"Total return:     {m.total_return_pct:>14.2f}%")
    lines.append("")

    lines.append("-" * w)
    lines.append("RISK METRICS")
    lines.append("-" * w)
    lines.append(f"Sharpe ratio:     {m.sharpe_ratio:>15.2f}")
    lines.append(f"Max drawdown:     {m.max_drawdown_pct:>14.2f}%")
    lines.append("")

    lines.append("-" * w)
    lines.append("TRADE STATISTICS")
    lines.append("-" * w)
    lines.append(f"Closed trades:    {m.total_trades:>15}")
    lines.append(f"Winning trades:   {m.winning_trades:>15}")
    lines.append(f"Losing trades:    {m.losing_trades:>15}")
    lines.append(f"Win rate:         {m.win_rate:>14.2f}%")
    lines.append(f"Profit factor:    {m.profit_factor:>15.2f}")
    lines.append("")

    if result.open_position and result.trades:
        entry = result.trades[-1]
        lines.append("-" * w)
        lines.append("OPEN POSITION AT END")
        lines.append("-" * w)
        lines.append(f"  qty={entry.quantity} entry={entry.price:.2f} since {_fmt_ts(entry.timestamp)}")
        lines.append("")

    if result.trades:
        shown = result.trades[-max_trades:]
        lines.append("-" * w)
        lines.append(f"FILLS (last {len(shown)} of {len(result.trades)})")
        lines.append("-" * w)
        for t in shown:
            pnl = f"pnl={t.pnl:,.2f}" if t.pnl is not None else ""
            lines.append(
                f"  {_fmt_ts(t.timestamp)}  {t.side.value:<4}  "
                f"{t.quantity:>8} @ {t.price:>10.2f}  {pnl}".rstrip()
            )
        lines.append("")

    lines.append("=" * w)
    lines.append("END OF REPORT")
    lines.append("=" * w)

    return "\n".join(lines)
