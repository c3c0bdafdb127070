"""Plain-text rendering of backtest reports and Monte Carlo summaries."""

from typing import List

from phantomfill.simulation.results import BacktestReport, MonteCarloSummary

_RULE = "=" * 55


def _pct(numerator: float, denominator: float) -> float:
    return numerator / denominator * 100.0 if denominator > 0 else 0.0


def _section(title: str) -> str:
    return f"  --- {title} {'-' * max(53 - len(title) - 5, 3)}"


def format_report(report: BacktestReport) -> str:
    """
    Render a single-run report.

    Example:
        >>> print(format_report(runner.run(windows, seed=1)))
    """
    lines: List[str] = [
        "",
        _RULE,
        f"  PhantomFill Report: {report.strategy_name} + {report.fill_model_name}",
        _RULE,
        "",
    ]
    if report.data_exhausted:
        lines += ["  No windows to replay (data source exhausted).", "", _RULE, ""]
        return "\n".join(lines)

    total = report.total_windows
    lines += [
        f"  Windows:      {total}",
        f"  Trades taken: {report.trades_taken}    ({_pct(report.trades_taken, total):.1f}%)",
        f"  Fills:        {report.fills}    ({report.fill_rate * 100:.1f}% fill rate)",
        f"  Correct:      {report.correct}    ({report.realistic_win_rate * 100:.1f}% WR)",
        f"  Skipped:      {report.skipped}    ({_pct(report.skipped, total):.1f}%)",
        f"  Failed:       {report.failed}",
    ]
    if report.invalid_actions:
        lines.append(f"  Invalid actions discarded: {report.invalid_actions}")

    lines += [
        "",
        _section("PnL"),
        f"  Naive paper:     {report.naive_total_pnl:+.2f}",
        f"  Realistic:       {report.realistic_total_pnl:+.2f}",
        f"  Phantom gap:      {report.phantom_gap:.2f}  <- \"what you THOUGHT you'd make\"",
        "",
        f"  Avg naive/trade:    {report.avg_naive_pnl:+.2f}",
        f"  Avg real/trade:     {report.avg_realistic_pnl:+.2f}",
        "",
        _section("Queue Stats"),
        f"  Avg queue ahead:   {report.avg_queue_ahead:.1f} shares",
        f"  Avg fill time:    {report.avg_fill_time_ms:.0f} ms",
        "",
        _RULE,
        "",
    ]
    return "\n".join(lines)


def format_monte_carlo(summary: MonteCarloSummary) -> str:
    """Render a Monte Carlo summary with its 5th-95th percentile band."""
    first = summary.reports[0] if summary.reports else None
    strategy = first.strategy_name if first else "?"
    fill_model = first.fill_model_name if first else "?"
    seed = "random" if summary.seed is None else str(summary.seed)

    lines: List[str] = [
        "",
        _RULE,
        f"  PhantomFill Monte Carlo: {strategy} + {fill_model}",
        f"  {summary.runs} runs, seed: {seed}",
        _RULE,
        "",
    ]
    if first is None or first.data_exhausted:
        lines += ["  No windows to replay (data source exhausted).", "", _RULE, ""]
        return "\n".join(lines)

    lines += [
        f"  Windows:      {first.total_windows}",
        f"  Trades taken: {first.trades_taken}    "
        f"({_pct(first.trades_taken, first.total_windows):.1f}%)",
        "",
        _section("PnL (95% confidence interval)"),
        f"  Naive paper:     {summary.naive_total_pnl:+.2f}   (deterministic)",
        f"  Realistic:       {summary.realistic_pnl_median:+.2f}   median "
        f"[{summary.realistic_pnl_p5:+.2f}, {summary.realistic_pnl_p95:+.2f}]",
        f"  Phantom gap:      {summary.phantom_gap:.2f}    median",
        "",
        f"  Fill rate:       {summary.fill_rate_mean * 100:.1f}%     mean across runs",
        f"  Win rate:        {summary.win_rate_mean * 100:.1f}%     mean across runs",
        "",
        f"  Std dev:          {summary.realistic_pnl_std:.2f}    (realistic PnL)",
        "",
        _RULE,
        "",
    ]
    return "\n".join(lines)
