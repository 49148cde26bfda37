"""Result Aggregator & Reporter for the webhook probe harness.

This module provides:
- `summarize`, a pure function turning step results into a RunReport
- RunReporter, which renders reports and store recaps to the terminal with rich
- JSON save/load of run reports
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from rich import box
from rich.console import Console
from rich.table import Table

from .models import RateMetric, RunReport, StepResult, Thresholds
from .store import StoreRecap


logger = logging.getLogger(__name__)


def _rate(name: str, numerator: int, denominator: int, threshold: float | None) -> RateMetric:
    if denominator == 0:
        return RateMetric(name=name, threshold=threshold, has_data=False, passed=True)
    value = numerator / denominator
    return RateMetric(
        name=name,
        numerator=numerator,
        denominator=denominator,
        value=value,
        threshold=threshold,
        has_data=True,
        passed=threshold is None or value >= threshold,
    )


def summarize(
    step_results: list[StepResult],
    thresholds: Thresholds | None = None,
    scenario_id: str = "",
    scenario_name: str = "",
    warnings: Iterable[str] = (),
    reduced_confidence: bool = False,
    cancelled: bool = False,
) -> RunReport:
    """Aggregate step results into a run report.

    Pure and deterministic: the same inputs always produce an equal report.

    - delivery = sent steps / total steps
    - signal = steps whose required signals all matched / steps with required signals
    - keyword = keyword matches / keywords expected

    A zero denominator yields value 1.0 with has_data False. The run succeeds
    when every configured rate meets its threshold, there are no critical failures
    and the run was not cancelled.
    """
    thresholds = thresholds or Thresholds()

    sent = sum(1 for r in step_results if r.sent)
    eligible = [r for r in step_results if r.required_signals]
    signal_ok = sum(1 for r in eligible if r.sent and r.signals_ok)
    keyword_matches = sum(r.keyword_matches for r in step_results)
    keywords_expected = sum(r.keywords_expected for r in step_results)

    delivery = _rate("delivery", sent, len(step_results), thresholds.delivery)
    signal = _rate("signal", signal_ok, len(eligible), thresholds.signal)
    keyword = _rate("keyword", keyword_matches, keywords_expected, thresholds.keyword)

    failures: list[str] = []
    critical: list[str] = []
    all_warnings: list[str] = list(dict.fromkeys(warnings))
    for r in step_results:
        prefix = f"step {r.index} ({r.name})"
        failures.extend(f"{prefix}: {f}" for f in r.failures)
        critical.extend(f"{prefix}: {f}" for f in r.critical_failures)
        for w in r.warnings:
            entry = f"{prefix}: {w}"
            if entry not in all_warnings:
                all_warnings.append(entry)

    overall = all(m.passed for m in (delivery, signal, keyword)) and not critical and not cancelled

    return RunReport(
        scenario_id=scenario_id,
        scenario_name=scenario_name,
        total_steps=len(step_results),
        delivery=delivery,
        signal=signal,
        keyword=keyword,
        failures=failures,
        critical_failures=critical,
        warnings=all_warnings,
        reduced_confidence=reduced_confidence,
        cancelled=cancelled,
        step_results=list(step_results),
        overall_success=overall,
    )


def format_rate(metric: RateMetric) -> str:
    if not metric.has_data:
        return "n/a (no data)"
    return f"{metric.value:.1%} ({metric.numerator}/{metric.denominator})"


def format_threshold(metric: RateMetric) -> str:
    return "disabled" if metric.threshold is None else f"≥ {metric.threshold:.0%}"


def save_report(report: RunReport, path: str | Path) -> None:
    """Save the report as a JSON file."""
    logger.info(f"Saving report to {path}")
    with open(path, "w", encoding="utf-8") as f:
        f.write(report_json(report))
    logger.info(f"Report saved successfully to {path}")


def report_json(report: RunReport) -> str:
    return json.dumps(report.model_dump(mode="json"), indent=2, ensure_ascii=False)


def load_report(path: str | Path) -> RunReport:
    """Load a report from a JSON file."""
    logger.info(f"Loading report from {path}")
    with open(path, encoding="utf-8") as f:
        report = RunReport.model_validate(json.load(f))
    logger.info(f"Report loaded successfully from {path}")
    return report


class RunReporter:
    """Renders run reports and store recaps to a rich console.

    Args:
        console: Target console (stdout by default).
        show_evidence: Also list matched signals per step.
    """

    def __init__(self, console: Console | None = None, show_evidence: bool = True):
        self.console = console or Console()
        self.show_evidence = show_evidence

    def render(self, report: RunReport) -> None:
        """Print the full report, always ending with a PASS/FAIL line."""
        c = self.console
        c.rule(f"[bold cyan]{report.scenario_name or report.scenario_id or 'Scenario'}")
        if report.scenario_id:
            c.print(f"Scenario: [bold]{report.scenario_id}[/]   Steps: {report.total_steps}")

        if report.step_results:
            c.print(self._steps_table(report))
            if self.show_evidence:
                self._signal_detail(report)

        c.print(self._metrics_table(report))

        if report.critical_failures:
            c.rule("[bold red]Critical failures")
            for failure in report.critical_failures:
                c.print(f"[bold red]✖ {failure}[/]", highlight=False)

        if report.failures:
            c.rule("[red]Failures")
            for failure in report.failures:
                c.print(f"[red]- {failure}[/]", highlight=False)

        if report.warnings:
            c.rule("[yellow]Warnings")
            for warning in report.warnings:
                c.print(f"[yellow]- {warning}[/]", highlight=False)

        if report.reduced_confidence:
            c.print("[yellow]Reduced confidence: a fixture or baseline could not be applied[/]")

        if report.cancelled:
            c.print(f"[yellow]Run cancelled after {len(report.step_results)} step(s); results are partial[/]")

        c.rule()
        if report.overall_success:
            c.print("[bold green]PASS[/] all thresholds met, no critical failures")
        else:
            reasons = [m.name for m in report.rates() if not m.passed]
            if report.cancelled:
                reasons.append("cancelled")
            if report.critical_failures:
                reasons.append(f"{len(report.critical_failures)} critical failure(s)")
            c.print(f"[bold red]FAIL[/] {', '.join(reasons)}")

    def _steps_table(self, report: RunReport) -> Table:
        table = Table(title="Steps", box=box.ROUNDED)
        table.add_column("#", justify="right")
        table.add_column("Step", style="bold")
        table.add_column("Status")
        table.add_column("HTTP", justify="right")
        table.add_column("Latency", justify="right")
        table.add_column("Signals", justify="right")
        table.add_column("Keywords", justify="right")

        for r in report.step_results:
            if r.skipped:
                status = "[dim]SKIP[/]"
            elif r.passed:
                status = "[green]PASS[/]"
            elif r.critical_failures:
                status = "[bold red]CRIT[/]"
            else:
                status = "[red]FAIL[/]"
            required_matched = len([n for n in r.required_signals if n in r.matched_signals])
            table.add_row(
                str(r.index),
                r.name,
                status,
                str(r.status_code) if r.status_code is not None else "-",
                f"{r.latency_ms}ms" if r.sent or r.transport_error else "-",
                f"{required_matched}/{len(r.required_signals)}" if r.required_signals else "-",
                f"{r.keyword_matches}/{r.keywords_expected}" if r.keywords_expected else "-",
            )
        return table

    def _signal_detail(self, report: RunReport) -> None:
        for r in report.step_results:
            if r.skipped or not (r.matched_signals or r.unmatched_signals or r.advisory_unmatched):
                continue
            parts = [f"[green]✔ {name}[/]" for name in r.matched_signals]
            parts += [f"[red]✖ {name}[/]" for name in r.unmatched_signals]
            parts += [f"[yellow]? {name}[/]" for name in r.advisory_unmatched]
            self.console.print(f"  {r.index}. {r.name}: " + "  ".join(parts), highlight=False)
            if r.keywords_expected:
                found = ", ".join(r.keywords_found) or "none"
                self.console.print(f"     keywords: {found}", highlight=False)

    def _metrics_table(self, report: RunReport) -> Table:
        table = Table(title="Metrics", box=box.ROUNDED)
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right")
        table.add_column("Threshold", justify="right")
        table.add_column("Result")
        for metric in report.rates():
            if metric.threshold is None:
                verdict = "[dim]-[/]"
            elif not metric.has_data:
                verdict = "[dim]n/a[/]"
            else:
                verdict = "[green]met[/]" if metric.passed else "[red]below[/]"
            table.add_row(metric.name, format_rate(metric), format_threshold(metric), verdict)
        return table

    def render_recap(self, recap: StoreRecap) -> None:
        """Print a database recap."""
        c = self.console
        c.rule("[bold cyan]Database structure recap")
        if not recap.reachable:
            c.print("[bold red]✖ database not reachable[/]")
            for error in recap.errors:
                c.print(f"[red]- {error}[/]", highlight=False)
            return
        c.print("[green]✔ connection active[/]")

        table = Table(title="Collections", box=box.ROUNDED)
        table.add_column("Collection", style="bold")
        table.add_column("Documents", justify="right")
        table.add_column("Indexes")
        for name, count in recap.collections.items():
            table.add_row(name, f"{count:,}", ", ".join(recap.indexes.get(name, [])))
        c.print(table)

        c.rule("Users")
        total = recap.total_users

        def share(n: int) -> str:
            return f" ({n / total:.1%})" if total else ""

        c.print(f"Total users: {total:,}")
        c.print(f"Paid users: {recap.paid_users:,}{share(recap.paid_users)}")
        c.print(f"Trial users: {recap.trial_users:,}{share(recap.trial_users)}")
        c.print(f"Active (24h): {recap.recent_users:,}")
        c.print(f"Users with a context reset: {recap.reset_users:,}")
        c.print(f"AI models in use: {', '.join(recap.ai_models) or 'none'}")
        c.print(f"Languages: {', '.join(recap.languages) or 'none'}")

        for error in recap.errors:
            c.print(f"[yellow]- {error}[/]", highlight=False)
