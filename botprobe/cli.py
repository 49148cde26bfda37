"""Command-line entry point: `botprobe run|list|recap`.

Exit codes: 0 when every scenario passes, 1 on failure or unexpected error,
130 when cancelled with SIGINT/SIGTERM.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

from rich import box
from rich.console import Console
from rich.table import Table

from .cancellation import CancellationToken, RunCancelled
from .config import HarnessConfig
from .loader import ScenarioLoadError, bundled_scenarios, load_scenario, resolve_scenario
from .logtail import LogTail
from .models import RunReport, Scenario, Thresholds
from .observer import SignalObserver
from .payloads import PayloadBuilder
from .reporter import RunReporter, save_report, summarize
from .runner import ScenarioRunner
from .store import MongoDocumentStore, build_recap
from .transport import WebhookClient

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

logger = logging.getLogger("botprobe")


def configure_logging(verbose: int = 0) -> None:
    """Console logging in the harness's `[time] LEVEL: message` format."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s", datefmt="%H:%M:%S"))
    root = logging.getLogger("botprobe")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _threshold(value: str) -> float | str:
    if value.lower() in ("off", "none"):
        return "off"
    try:
        rate = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a rate between 0 and 1 or 'off', got {value!r}")
    if not 0.0 <= rate <= 1.0:
        raise argparse.ArgumentTypeError(f"rate must be between 0 and 1, got {rate}")
    return rate


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="botprobe",
        description="Black-box webhook test harness for a Telegram AI bot",
    )
    parser.add_argument("--env-file", type=str, default=None, help="Path to a .env file")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug logs")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one or more scenarios")
    run.add_argument("scenarios", nargs="+", help="Bundled scenario id or path to a YAML file")
    run.add_argument("--base-url", type=str, help="Bot server base URL")
    run.add_argument("--token", type=str, help="Bot token used in the webhook path")
    run.add_argument("--log-path", type=str, help="Bot log file to observe")
    run.add_argument("--mongo-uri", type=str, help="MongoDB connection string")
    run.add_argument("--mongo-db", type=str, help="MongoDB database name")
    run.add_argument("--chat-id", type=int, help="Chat id of the probing user")
    run.add_argument("--report-json", type=str, help="Write the run report(s) as JSON to this path")
    run.add_argument("--delivery-threshold", type=_threshold, help="Minimum delivery rate, or 'off'")
    run.add_argument("--signal-threshold", type=_threshold, help="Minimum signal rate, or 'off'")
    run.add_argument("--keyword-threshold", type=_threshold, help="Minimum keyword rate, or 'off'")

    sub.add_parser("list", help="List bundled scenarios")

    recap = sub.add_parser("recap", help="Print a recap of the bot's database")
    recap.add_argument("--mongo-uri", type=str, help="MongoDB connection string")
    recap.add_argument("--mongo-db", type=str, help="MongoDB database name")
    return parser


def apply_overrides(config: HarnessConfig, args: argparse.Namespace) -> HarnessConfig:
    """CLI flags take precedence over environment settings."""
    mapping = {
        "base_url": "base_url",
        "token": "bot_token",
        "log_path": "log_path",
        "mongo_uri": "mongo_uri",
        "mongo_db": "mongo_db",
        "chat_id": "chat_id",
    }
    update = {
        field: getattr(args, arg)
        for arg, field in mapping.items()
        if getattr(args, arg, None) is not None
    }
    return config.model_copy(update=update)


def effective_thresholds(scenario: Scenario, config: HarnessConfig, args: argparse.Namespace) -> Thresholds:
    """CLI threshold flags, then the scenario's thresholds, then the configured defaults."""
    base = scenario.thresholds or config.thresholds
    update = {}
    for name in ("delivery", "signal", "keyword"):
        value = getattr(args, f"{name}_threshold", None)
        if value is not None:
            update[name] = None if value == "off" else value
    return base.model_copy(update=update) if update else base


class ScenarioCancelled(RunCancelled):
    """A scenario was cancelled mid-run; carries the report of the completed steps."""

    def __init__(self, reason: str, report: RunReport):
        super().__init__(reason)
        self.report = report


async def run_scenario(
    scenario: Scenario,
    config: HarnessConfig,
    thresholds: Thresholds,
    token: CancellationToken,
) -> RunReport:
    """Wire the components for one scenario, run it and summarize the results.

    Raises:
        ScenarioCancelled: If the run is cancelled; the partial report is attached.
    """
    store = None
    if config.mongo_uri:
        store = MongoDocumentStore(
            config.mongo_uri,
            config.mongo_db,
            users_collection=config.users_collection,
            user_key=config.user_key,
            timeout_ms=config.store_timeout_ms,
        )
    cancelled: RunCancelled | None = None
    try:
        async with WebhookClient(config.endpoint, timeout_ms=config.request_timeout_ms) as client:
            observer = SignalObserver(
                LogTail(config.log_path, tail_lines=config.tail_lines),
                store=store,
                poll_interval_ms=config.poll_interval_ms,
                default_budget_ms=config.signal_budget_ms,
                absence_policy=scenario.absence_policy,
                token=token,
            )
            runner = ScenarioRunner(
                client,
                observer,
                PayloadBuilder(config.bot_username, config.bot_first_name),
                default_identity=config.identity(),
                store=store,
                token=token,
                store_timeout_ms=config.store_timeout_ms,
            )
            try:
                results = await runner.run(scenario)
            except RunCancelled as e:
                cancelled = e
                results = list(runner.results)
    finally:
        if store is not None:
            await store.aclose()

    warnings = list(runner.warnings)
    if cancelled is not None:
        warnings.append(f"run cancelled ({cancelled}) after {len(results)} of {len(scenario.steps)} step(s)")
    report = summarize(
        results,
        thresholds,
        scenario_id=scenario.id,
        scenario_name=scenario.name,
        warnings=warnings,
        reduced_confidence=runner.reduced_confidence,
        cancelled=cancelled is not None,
    )
    if cancelled is not None:
        raise ScenarioCancelled(str(cancelled), report) from cancelled
    return report


def _save_reports(path: Path, reports: list[RunReport], per_scenario: bool) -> None:
    if not per_scenario:
        save_report(reports[0], path)
        return
    for report in reports:
        save_report(report, path.with_name(f"{path.stem}_{report.scenario_id}{path.suffix or '.json'}"))


async def _run_command(args: argparse.Namespace, config: HarnessConfig, token: CancellationToken, console: Console) -> int:
    scenarios = [resolve_scenario(name) for name in args.scenarios]
    reporter = RunReporter(console)
    reports: list[RunReport] = []

    try:
        for scenario in scenarios:
            thresholds = effective_thresholds(scenario, config, args)
            try:
                report = await run_scenario(scenario, config, thresholds, token)
            except ScenarioCancelled as e:
                reports.append(e.report)
                reporter.render(e.report)
                raise
            reporter.render(report)
            reports.append(report)
    finally:
        if args.report_json and reports:
            _save_reports(Path(args.report_json), reports, per_scenario=len(scenarios) > 1)

    return EXIT_OK if all(r.overall_success for r in reports) else EXIT_FAILED


def _list_command(console: Console) -> int:
    table = Table(title="Bundled scenarios", box=box.ROUNDED)
    table.add_column("Id", style="bold cyan")
    table.add_column("Steps", justify="right")
    table.add_column("Tags")
    table.add_column("Description")
    for scenario_id, path in bundled_scenarios().items():
        scenario = load_scenario(path)
        table.add_row(scenario_id, str(len(scenario.steps)), ", ".join(scenario.tags), scenario.description or "")
    console.print(table)
    return EXIT_OK


async def _recap_command(config: HarnessConfig, console: Console) -> int:
    if not config.mongo_uri:
        console.print("[red]No MongoDB URI configured (set PROBE_MONGO_URI or pass --mongo-uri)[/]")
        return EXIT_FAILED
    store = MongoDocumentStore(
        config.mongo_uri,
        config.mongo_db,
        users_collection=config.users_collection,
        user_key=config.user_key,
    )
    try:
        recap = await build_recap(store)
    finally:
        await store.aclose()
    RunReporter(console).render_recap(recap)
    return EXIT_OK if recap.reachable else EXIT_FAILED


async def _dispatch(args: argparse.Namespace, config: HarnessConfig, token: CancellationToken, console: Console) -> int:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, token.cancel, f"received {sig.name}")

    match args.command:
        case "run":
            return await _run_command(args, config, token, console)
        case "recap":
            return await _recap_command(config, console)
        case _:
            return _list_command(console)


def main(argv: list[str] | None = None, console: Console | None = None) -> int:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    console = console or Console()

    config = apply_overrides(HarnessConfig.from_env(args.env_file), args)
    token = CancellationToken()

    try:
        return asyncio.run(_dispatch(args, config, token, console))
    except (RunCancelled, KeyboardInterrupt):
        console.print("[yellow]Run cancelled[/]")
        return EXIT_CANCELLED
    except (FileNotFoundError, ScenarioLoadError) as e:
        console.print(f"[red]{e}[/]", highlight=False)
        return EXIT_FAILED
    except Exception:
        logger.exception("Unexpected error")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
