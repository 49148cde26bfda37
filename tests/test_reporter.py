"""Tests for result aggregation and report rendering."""

import io
from pathlib import Path

import pytest
from rich.console import Console

from botprobe.models import StepResult, Thresholds
from botprobe.reporter import (
    RunReporter,
    format_rate,
    format_threshold,
    load_report,
    report_json,
    save_report,
    summarize,
)
from botprobe.store import StoreRecap


def step(index: int, **fields) -> StepResult:
    fields.setdefault("name", f"step_{index}")
    fields.setdefault("sent", True)
    fields.setdefault("status_code", 200 if fields["sent"] else None)
    return StepResult(index=index, **fields)


def rendered(report, **kwargs) -> str:
    buffer = io.StringIO()
    RunReporter(Console(file=buffer, width=120, color_system=None), **kwargs).render(report)
    return buffer.getvalue()


@pytest.fixture
def mixed_results() -> list[StepResult]:
    return [
        step(1, required_signals=["a", "b"], matched_signals=["a", "b"], keyword_matches=2, keywords_expected=3),
        step(2, required_signals=["a"], unmatched_signals=["a"], failures=["signal 'a' not matched: not observed within 50ms"],
             keyword_matches=1, keywords_expected=3),
        step(3, sent=False, transport_error="timeout: no response within 45000ms", failures=["delivery failed (timeout)"]),
        step(4, required_signals=["a"], matched_signals=["a"]),
    ]


class TestSummarize:
    """Tests for rate computation and the overall verdict."""

    def test_rates(self, mixed_results: list[StepResult]):
        report = summarize(mixed_results, scenario_id="demo", scenario_name="Demo")

        assert report.total_steps == 4
        assert (report.delivery.numerator, report.delivery.denominator) == (3, 4)
        assert (report.signal.numerator, report.signal.denominator) == (2, 3)
        assert (report.keyword.numerator, report.keyword.denominator) == (3, 6)
        assert report.delivery.value == pytest.approx(0.75)
        assert report.failures[0] == "step 2 (step_2): signal 'a' not matched: not observed within 50ms"
        # delivery 0.75 < 0.8, signal 0.67 < 0.7, keyword 0.5 < 0.6
        assert not report.overall_success
        assert [m.passed for m in report.rates()] == [False, False, False]

    def test_thresholds_and_disabled_rates(self, mixed_results: list[StepResult]):
        report = summarize(mixed_results, Thresholds(delivery=0.75, signal=None, keyword=0.5))
        assert report.delivery.passed
        assert report.signal.passed and report.signal.threshold is None
        assert report.keyword.passed
        assert report.overall_success

    def test_zero_steps_is_vacuous_success(self):
        report = summarize([])
        assert report.total_steps == 0
        for metric in report.rates():
            assert not metric.has_data
            assert metric.value == 1.0
            assert format_rate(metric) == "n/a (no data)"
        assert report.overall_success

    def test_critical_failure_forces_fail(self):
        results = [step(1, critical_failures=["Users count decreased from 10 to 9"])]
        report = summarize(results, Thresholds(delivery=None, signal=None, keyword=None))
        assert report.critical_failures == ["step 1 (step_1): Users count decreased from 10 to 9"]
        assert not report.overall_success

    def test_unsent_step_with_signals_is_not_signal_ok(self):
        results = [step(1, sent=False, required_signals=["a"])]
        report = summarize(results)
        assert report.signal.numerator == 0
        assert report.signal.denominator == 1

    def test_run_warnings_come_first_and_are_not_duplicated(self):
        results = [step(1, warnings=["advisory signal 'x' not matched: not observed"])]
        report = summarize(
            results,
            warnings=["setup fixture 'clear' failed: denied", "setup fixture 'clear' failed: denied"],
            reduced_confidence=True,
        )
        assert report.warnings == [
            "setup fixture 'clear' failed: denied",
            "step 1 (step_1): advisory signal 'x' not matched: not observed",
        ]
        assert report.reduced_confidence

    def test_cancelled_run_fails(self):
        report = summarize([step(1, required_signals=["a"], matched_signals=["a"])], cancelled=True)
        assert report.cancelled
        assert report.total_steps == 1
        assert not report.overall_success

    def test_pure_and_idempotent(self, mixed_results: list[StepResult]):
        first = summarize(mixed_results, Thresholds(), "demo", "Demo")
        second = summarize(mixed_results, Thresholds(), "demo", "Demo")
        assert first == second
        assert report_json(first) == report_json(second)
        assert [r.name for r in mixed_results] == ["step_1", "step_2", "step_3", "step_4"]


class TestPersistence:
    """Tests for JSON reports."""

    def test_save_and_load(self, tmp_path: Path, mixed_results: list[StepResult]):
        report = summarize(mixed_results, scenario_id="demo")
        path = tmp_path / "report.json"
        save_report(report, path)

        assert load_report(path) == report
        assert '"scenario_id": "demo"' in path.read_text(encoding="utf-8")


class TestRunReporter:
    """Tests for terminal rendering."""

    def test_pass_line(self):
        report = summarize([step(1, required_signals=["a"], matched_signals=["a"])], scenario_id="ok")
        output = rendered(report)
        assert output.rstrip().splitlines()[-1].startswith("PASS")

    def test_fail_line_names_reasons(self, mixed_results: list[StepResult]):
        output = rendered(summarize(mixed_results, scenario_id="demo"))
        last = output.rstrip().splitlines()[-1]
        assert last.startswith("FAIL")
        assert "delivery" in last and "signal" in last and "keyword" in last
        assert "delivery failed (timeout)" in output

    def test_critical_failures_listed(self):
        report = summarize([step(1, critical_failures=["critical step 'verify' failed"])])
        output = rendered(report)
        assert "Critical failures" in output
        assert "critical step 'verify' failed" in output
        assert "1 critical failure(s)" in output.rstrip().splitlines()[-1]

    def test_no_data_rates_shown_as_na(self):
        output = rendered(summarize([]))
        assert "n/a (no data)" in output
        assert output.rstrip().splitlines()[-1].startswith("PASS")

    def test_reduced_confidence_shown(self):
        output = rendered(summarize([step(1)], reduced_confidence=True))
        assert "Reduced confidence" in output

    def test_cancelled_run_shown_as_partial(self):
        output = rendered(summarize([step(1), step(2)], cancelled=True))
        assert "Run cancelled after 2 step(s)" in output
        last = output.rstrip().splitlines()[-1]
        assert last.startswith("FAIL")
        assert "cancelled" in last

    def test_format_threshold(self):
        report = summarize([], Thresholds(delivery=0.8, signal=None))
        assert format_threshold(report.delivery) == "≥ 80%"
        assert format_threshold(report.signal) == "disabled"

    def test_render_recap(self):
        recap = StoreRecap(
            reachable=True,
            collections={"Users": 12, "History": 40},
            indexes={"Users": ["_id_", "chatId_1"]},
            total_users=12,
            paid_users=3,
            ai_models=["gpt-4o"],
        )
        buffer = io.StringIO()
        RunReporter(Console(file=buffer, width=120, color_system=None)).render_recap(recap)
        output = buffer.getvalue()
        assert "connection active" in output
        assert "chatId_1" in output
        assert "Paid users: 3 (25.0%)" in output

    def test_render_unreachable_recap(self):
        buffer = io.StringIO()
        recap = StoreRecap(reachable=False, errors=["database did not answer ping"])
        RunReporter(Console(file=buffer, width=120, color_system=None)).render_recap(recap)
        assert "not reachable" in buffer.getvalue()
