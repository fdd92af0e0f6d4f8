"""
exui-e2e — CLI entry point for the suite's housekeeping tasks.

Usage:
  exui-e2e flake-budget [--report PATH] [--budget N | --percent P]
  exui-e2e coverage [--summary PATH] [--text-out PATH] [--rows-out PATH]
  exui-e2e lock-status PATH [--stale-ms N]
  exui-e2e storage-state [ROLE...] [--optional ROLE]...
  exui-e2e secret-scan [FILE...] [--root PATH]
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape

from core import config
from core.exception import Error
from core.file_lock import DEFAULT_STALE_MS, inspect_lock

from . import __version__
from .display import (
    console,
    err,
    info,
    ok,
    print_coverage_rows,
    print_flake_report,
    print_lock_status,
    print_secret_findings,
    warn,
)
from .reports import check_flake_budget, write_coverage_report
from .secret_scan import list_tracked_files, scan_files

# ── App ───────────────────────────────────────────────────────────────────────

app = typer.Typer(
    name="exui-e2e",
    help="Housekeeping for the ExUI end-to-end suite",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"exui-e2e [bold]v{__version__}[/bold]")
        raise typer.Exit()


@app.callback()
def root(
    version: bool = typer.Option(
        False, "--version", "-V", help="Print version and exit", is_eager=True, callback=_version_callback
    ),
) -> None:
    """[bold]exui-e2e[/bold] — flake budget, coverage, locks, sessions and secret scan."""


# ── Subcommands ───────────────────────────────────────────────────────────────


@app.command("flake-budget")
def flake_budget(
    report: Path = typer.Option(
        config.PLAYWRIGHT_JSON_REPORT, "--report", "-r", help="Playwright JSON report", envvar="PLAYWRIGHT_JSON_OUTPUT"
    ),
    budget: str = typer.Option("", "--budget", "-b", help="Allowed flaky tests", envvar="FLAKE_BUDGET"),
    percent: str = typer.Option(
        "", "--percent", "-p", help="Allowed flaky tests as % of total", envvar="FLAKE_PERCENT_BUDGET"
    ),
) -> None:
    """Fail when more tests were flaky than the budget allows."""
    result = check_flake_budget(report.resolve(), budget=budget, percent=percent)
    if result is None:
        warn(f"JSON report not found at [bold]{report.resolve()}[/bold]; skipping flake check.")
        return

    print_flake_report(result)
    if result.exceeded:
        err(
            f"Flake budget exceeded: {len(result.flaky)} flaky tests > allowed {result.allowed}. "
            "Set FLAKE_BUDGET or FLAKE_PERCENT_BUDGET to adjust."
        )
        raise typer.Exit(1)


@app.command()
def coverage(
    summary: Path = typer.Option(config.COVERAGE_SUMMARY, "--summary", envvar="COVERAGE_SUMMARY_PATH"),
    text_out: Path = typer.Option(config.COVERAGE_TEXT, "--text-out", envvar="COVERAGE_TEXT_PATH"),
    rows_out: Path = typer.Option(config.COVERAGE_ROWS, "--rows-out", envvar="COVERAGE_ROWS_PATH"),
) -> None:
    """Render coverage-summary.json as text and JSON rows."""
    rows = write_coverage_report(summary, text_out, rows_out)
    if rows is None:
        info(f"No coverage summary found at [bold]{summary.resolve()}[/bold]; skipping report generation.")
        return
    print_coverage_rows(rows)
    ok(f"Coverage summary written to [bold]{text_out}[/bold] and [bold]{rows_out}[/bold]")


@app.command("lock-status")
def lock_status(
    path: Annotated[Path, typer.Argument(help="Lock file to inspect")],
    stale_ms: int = typer.Option(DEFAULT_STALE_MS, "--stale-ms", help="Age at which the lock counts as abandoned"),
) -> None:
    """Show who holds a lock file and whether it has gone stale."""
    print_lock_status(inspect_lock(path, stale_ms))


@app.command("storage-state")
def storage_state(
    roles: Annotated[Optional[list[str]], typer.Argument(help="Required roles, e.g. solicitor caseOfficer_r1")] = None,
    optional: Annotated[
        Optional[list[str]],
        typer.Option("--optional", "-o", help="Role to set up only if it can be; repeatable"),
    ] = None,
) -> None:
    """Create (or reuse) cached sessions.  Required ROLES must succeed; --optional roles are skipped with a warning."""
    from api_tests.storage_state import ensure_storage_state

    if not roles and not optional:
        err("Give at least one ROLE or --optional ROLE.")
        raise typer.Exit(2)

    for role in roles or []:
        try:
            path = ensure_storage_state(role)
        except Error as exc:
            err(escape(str(exc)))
            raise typer.Exit(1) from exc
        ok(f"Storage state for [bold]{role}[/bold] at [bold]{path}[/bold]")

    for role in optional or []:
        try:
            path = ensure_storage_state(role)
        except Error as exc:
            warn(f"Skipping storage state for [bold]{role}[/bold]: {escape(str(exc))}")
            continue
        ok(f"Storage state for [bold]{role}[/bold] at [bold]{path}[/bold]")


@app.command("secret-scan")
def secret_scan(
    files: Annotated[Optional[list[str]], typer.Argument(help="Files to scan, relative to --root (default: git ls-files)")] = None,
    root: Path = typer.Option(config.REPO_ROOT, "--root", help="Repository root"),
) -> None:
    """Fail when tracked files contain obvious credentials."""
    if files:
        names = list(files)
    else:
        try:
            names = list_tracked_files(root)
        except (OSError, subprocess.CalledProcessError) as exc:
            err(f"Could not list tracked files under {root}: {escape(str(exc))}")
            raise typer.Exit(1) from exc

    findings = scan_files(names, root)
    if findings:
        err("Potential secret disclosures detected:")
        print_secret_findings(findings)
        raise typer.Exit(1)
    ok("Secret scan passed: no high-risk patterns found.")


# ── Entry ─────────────────────────────────────────────────────────────────────


def main() -> None:
    app()


if __name__ == "__main__":
    main()
