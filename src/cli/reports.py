"""
cli/reports.py — Post-run report checks: flaky-test budget and coverage summary.

Both read artefacts produced by the Playwright run and never talk to the
application under test.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path

FAILED_STATUSES = frozenset({"failed", "timedOut", "interrupted"})
COVERAGE_METRICS = ("lines", "statements", "functions", "branches")


# ── Flake budget ───────────────────────────────────────────────────────────────


@dataclass
class FlakeReport:
    total: int
    allowed: int
    retries: int
    flaky: list[str] = field(default_factory=list)

    @property
    def exceeded(self) -> bool:
        return len(self.flaky) > self.allowed


def collect_tests(suites: list | None) -> list[dict]:
    """Flatten every test entry in a Playwright JSON report's suite tree."""
    tests: list[dict] = []
    for suite in suites or []:
        if not isinstance(suite, dict):
            continue
        for spec in suite.get("specs") or []:
            if not isinstance(spec, dict):
                continue
            for test in spec.get("tests") or []:
                if not isinstance(test, dict):
                    continue
                test.setdefault("title", spec.get("title", ""))
                tests.append(test)
        tests.extend(t for t in suite.get("tests") or [] if isinstance(t, dict))
        tests.extend(collect_tests(suite.get("suites")))
    return tests


def _results(test: dict) -> list[dict]:
    results = test.get("results")
    return [r for r in results if isinstance(r, dict)] if isinstance(results, list) else []


def is_flaky(test: dict) -> bool:
    results = _results(test)
    if test.get("outcome") == "flaky" or test.get("status") == "flaky":
        return True
    if any((r.get("retry") or 0) > 0 for r in results):
        return True
    had_failure = any(r.get("status") in FAILED_STATUSES for r in results)
    had_pass = any(r.get("status") == "passed" for r in results)
    return (had_failure and had_pass) or len(results) > 1


def resolve_allowed_flakes(total: int, budget: str | None = None, percent: str | None = None) -> int:
    """FLAKE_BUDGET (absolute) wins over FLAKE_PERCENT_BUDGET; neither means zero."""
    if budget:
        try:
            return max(0, int(budget, 10))
        except ValueError:
            return 0
    try:
        pct = float(percent) if percent else 0.0
    except ValueError:
        pct = 0.0
    if math.isfinite(pct) and pct > 0:
        return math.floor(total * pct / 100)
    return 0


def check_flake_budget(report_path: Path, budget: str | None = None, percent: str | None = None) -> FlakeReport | None:
    """Evaluate the report at ``report_path``; None when there is no report."""
    if not report_path.exists():
        return None
    data = json.loads(report_path.read_text(encoding="utf-8"))
    tests = collect_tests(data.get("suites"))
    retries = sum(1 for t in tests for r in _results(t) if (r.get("retry") or 0) > 0)
    return FlakeReport(
        total=len(tests),
        allowed=resolve_allowed_flakes(len(tests), budget, percent),
        retries=retries,
        flaky=[t.get("title") or t.get("projectName") or "?" for t in tests if is_flaky(t)],
    )


# ── Coverage ───────────────────────────────────────────────────────────────────


def read_coverage_summary(path: Path) -> dict | None:
    """Return the ``total`` block of an istanbul coverage-summary.json."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    totals = data.get("total") if isinstance(data, dict) else None
    return totals if isinstance(totals, dict) else None


def _pct(metric: dict) -> float:
    pct = metric.get("pct")
    if isinstance(pct, (int, float)) and not isinstance(pct, bool):
        return float(pct)
    total = metric.get("total") or 0
    return 100.0 if total == 0 else round(100 * (metric.get("covered") or 0) / total, 2)


def build_coverage_rows(totals: dict) -> list[dict]:
    rows = []
    for name in COVERAGE_METRICS:
        metric = totals.get(name)
        if not isinstance(metric, dict):
            continue
        rows.append(
            {
                "metric": name,
                "covered": metric.get("covered", 0),
                "total": metric.get("total", 0),
                "skipped": metric.get("skipped", 0),
                "pct": _pct(metric),
            }
        )
    return rows


def format_coverage_text(totals: dict) -> str:
    lines = ["Coverage summary", "================"]
    for row in build_coverage_rows(totals):
        label = row["metric"].capitalize()
        lines.append(f"{label:<11}: {row['pct']:6.2f}% ( {row['covered']}/{row['total']} )")
    return "\n".join(lines) + "\n"


def write_coverage_report(summary_path: Path, text_out: Path, rows_out: Path) -> list[dict] | None:
    """Render the summary to text and JSON rows; None when there is no summary."""
    totals = read_coverage_summary(summary_path)
    if totals is None:
        return None
    rows = build_coverage_rows(totals)
    text_out.parent.mkdir(parents=True, exist_ok=True)
    rows_out.parent.mkdir(parents=True, exist_ok=True)
    text_out.write_text(format_coverage_text(totals), encoding="utf-8")
    rows_out.write_text(json.dumps(rows, indent=2), encoding="utf-8")
    return rows
