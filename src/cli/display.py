"""Rich display helpers for the exui-e2e CLI."""

from __future__ import annotations

from datetime import datetime

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from cli.reports import FlakeReport
from cli.secret_scan import SecretFinding
from core.file_lock import LockStatus

THEME = Theme(
    {
        "exui.accent": "#1D70B8",
        "exui.muted": "#505A5F",
        "exui.text": "#B1B4B6",
        "exui.ok": "#00703C",
        "exui.warn": "#F47738",
        "exui.err": "#D4351C",
    }
)

console = Console(theme=THEME, highlight=False)
err_console = Console(theme=THEME, stderr=True)


# ── Flake budget ──────────────────────────────────────────────────────────────


def print_flake_report(report: FlakeReport) -> None:
    color = "exui.err" if report.exceeded else "exui.ok"
    label = "OVER BUDGET" if report.exceeded else "WITHIN BUDGET"

    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    table.add_column(style="exui.muted", no_wrap=True)
    table.add_column()
    table.add_row("Tests", str(report.total))
    table.add_row("Flaky", f"[{color}]{len(report.flaky)}[/{color}]")
    table.add_row("Retries", str(report.retries))
    table.add_row("Budget", str(report.allowed))

    console.print(Panel(table, title=f"[{color}]Flake budget — {label}[/{color}]", border_style=color))
    for title in report.flaky[:20]:
        console.print(f"  [exui.warn]~[/exui.warn]  {title}")


# ── Coverage ──────────────────────────────────────────────────────────────────


def print_coverage_rows(rows: list[dict]) -> None:
    table = Table(box=box.ROUNDED, show_header=True, header_style="exui.accent", padding=(0, 1))
    table.add_column("Metric", style="exui.text", no_wrap=True)
    table.add_column("Covered", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("%", justify="right")
    for row in rows:
        style = "exui.ok" if row["pct"] >= 80 else "exui.warn"
        table.add_row(
            row["metric"],
            str(row["covered"]),
            str(row["total"]),
            f"[{style}]{row['pct']:.2f}[/{style}]",
        )
    console.print(table)


# ── Locks ─────────────────────────────────────────────────────────────────────


def _fmt_ms(epoch_ms: int | None) -> str:
    if not epoch_ms:
        return "—"
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def print_lock_status(status: LockStatus) -> None:
    if not status.exists:
        info(f"No lock at [bold]{status.path}[/bold]")
        return

    color = "exui.warn" if status.stale else "exui.ok"
    record = status.record
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    table.add_column(style="exui.muted", no_wrap=True)
    table.add_column()
    table.add_row("Path", str(status.path))
    table.add_row("Age", f"{(status.age_ms or 0) / 1000:.1f}s")
    table.add_row("State", f"[{color}]{'stale' if status.stale else 'live'}[/{color}]")
    if record is not None:
        table.add_row("Token", record.token)
        table.add_row("Owner pid", str(record.pid) if record.pid is not None else "—")
        table.add_row("Host", record.host or "—")
        table.add_row("Created", _fmt_ms(record.created_at))
    console.print(Panel(table, title=f"[{color}]Lock[/{color}]", border_style=color))


# ── Secret scan ───────────────────────────────────────────────────────────────


def print_secret_findings(findings: list[SecretFinding]) -> None:
    table = Table(box=box.SIMPLE, show_header=True, header_style="exui.err", padding=(0, 1))
    table.add_column("File", style="exui.text")
    table.add_column("Match", style="exui.muted")
    for finding in findings:
        table.add_row(finding.file, finding.redacted)
    err_console.print(table)


# ── Utility ───────────────────────────────────────────────────────────────────


def ok(message: str) -> None:
    console.print(f"  [exui.ok]✓[/exui.ok]  {message}")


def warn(message: str) -> None:
    console.print(f"  [exui.warn]⚠[/exui.warn]  {message}")


def err(message: str) -> None:
    err_console.print(f"  [exui.err]✗[/exui.err]  [exui.err]{message}[/exui.err]")


def info(message: str) -> None:
    console.print(f"  [exui.muted]·[/exui.muted]  [exui.text]{message}[/exui.text]")
