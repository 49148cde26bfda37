"""Scenario Runner for the webhook probe harness.

This module provides the ScenarioRunner class that:
- Applies scenario fixtures and baselines monitored document counts
- Sends each step's probe to the webhook, waits, and observes its signals
- Threads ids from earlier steps into later payloads and patterns
- Returns one immutable StepResult per step
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from .cancellation import CancellationToken
from .matchers import score_keywords
from .models import (
    FixtureAction,
    Observation,
    ProbePayload,
    Scenario,
    SignalSource,
    SignalSpec,
    Step,
    StepResult,
    UserIdentity,
)
from .observer import SignalObserver
from .payloads import DEFAULT_ORIGIN_TEXT, PayloadBuilder
from .store import DocumentStore, FixtureError, StoreError, apply_fixture, count_snapshot
from .transport import TransportError, WebhookClient


class ScenarioRunner:
    """Runs scenarios step by step against a live bot.

    Run-level warnings (fixture failures, count monitoring problems), the
    reduced-confidence flag and the step results of the most recent run are
    kept on the runner, so a cancelled run can still be reported.

    Args:
        client: Webhook transport.
        observer: Signal observer (owns the log tail).
        builder: Payload builder.
        default_identity: User for scenarios that do not declare one.
        store: Document store for fixtures and count monitoring.
        token: Cancellation token shared with the observer.
        store_timeout_ms: Budget for each fixture write and count snapshot.
        logger: Logger instance for logging.
    """

    def __init__(
        self,
        client: WebhookClient,
        observer: SignalObserver,
        builder: PayloadBuilder,
        default_identity: UserIdentity,
        store: DocumentStore | None = None,
        token: CancellationToken | None = None,
        store_timeout_ms: int = 5000,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.observer = observer
        self.builder = builder
        self.default_identity = default_identity
        self.store = store
        self.token = token or observer.token
        self.store_timeout_ms = store_timeout_ms
        self.logger = logger or logging.getLogger(__name__)
        self.warnings: list[str] = []
        self.reduced_confidence = False
        self.results: list[StepResult] = []

    async def run(self, scenario: Scenario) -> list[StepResult]:
        """Run every step of a scenario in order.

        Args:
            scenario: The scenario to run.

        Returns:
            One StepResult per step, skipped steps included.

        Raises:
            RunCancelled: If the run is cancelled.
        """
        self.logger.info("=" * 60)
        self.logger.info(f"Running scenario: {scenario.id} - {scenario.name}")
        self.logger.info("=" * 60)

        self.warnings = []
        self.reduced_confidence = False
        self.results = []
        identity = scenario.identity or self.default_identity
        context: dict[str, Any] = {
            "chat_id": identity.chat_id,
            "user_id": identity.user_id,
            "username": identity.username,
        }

        await self._apply_fixtures(scenario.setup, identity, "setup")
        counts = await self._snapshot(scenario)

        results = self.results
        failed_fast: str | None = None
        try:
            for index, step in enumerate(scenario.steps, start=1):
                if failed_fast is not None:
                    self.logger.info(f"Step {index} '{step.name}' SKIPPED after '{failed_fast}' failed")
                    results.append(self._skipped(index, step, failed_fast))
                    continue

                result, counts = await self._run_step(index, step, scenario, identity, context, counts)
                results.append(result)

                if step.fail_fast and not result.passed:
                    failed_fast = step.name
                    self.logger.warning(f"Step '{step.name}' failed and is fail-fast; skipping the rest")
                elif index < len(scenario.steps) and scenario.pause_between_steps_ms:
                    await self.token.sleep(scenario.pause_between_steps_ms / 1000)
        finally:
            await self._apply_fixtures(scenario.teardown, identity, "teardown")

        passed = sum(1 for r in results if r.passed)
        self.logger.info(f"Scenario {scenario.id}: {passed}/{len(results)} step(s) passed")
        return list(results)

    async def _run_step(
        self,
        index: int,
        step: Step,
        scenario: Scenario,
        scenario_identity: UserIdentity,
        context: dict[str, Any],
        counts: dict[str, int] | None,
    ) -> tuple[StepResult, dict[str, int] | None]:
        """Send → wait → observe for one step."""
        identity = step.identity or scenario_identity
        started = datetime.now().isoformat()
        self.logger.info("-" * 60)
        self.logger.info(f"Step {index}/{len(scenario.steps)}: {step.name}")

        failures: list[str] = []
        critical: list[str] = []
        warnings: list[str] = []

        mark = self.observer.log_tail.mark()
        payload = self._build_payload(step, identity, context)
        ids = payload.ids()
        step_context = {**context, **ids, "chat_id": identity.chat_id}

        sent = False
        status_code: int | None = None
        latency_ms = 0
        transport_error: str | None = None
        try:
            response = await self.token.guard(self.client.send(payload))
            sent = True
            status_code = response.status_code
            latency_ms = response.latency_ms
        except TransportError as e:
            transport_error = str(e)
            status_code = e.status_code
            latency_ms = e.latency_ms
            failures.append(f"delivery failed ({transport_error})")
            self.logger.warning(f"Delivery failed for step '{step.name}': {transport_error}")

        required = step.required_signal_names()
        if sent:
            if step.wait_ms:
                self.logger.debug(f"Waiting {step.wait_ms}ms for processing")
                await self.token.sleep(step.wait_ms / 1000)
            observation = await self.observer.await_signals(
                step.signals,
                budget_ms=step.budget_ms,
                context=step_context,
                since=mark,
                absence_policy=scenario.absence_policy,
            )
        else:
            observation = Observation(unmatched=[s.name for s in step.signals])

        unmatched_required, advisory = self._classify(step.signals, observation, failures, critical, warnings)
        if sent and not observation.log_available and any(s.source == SignalSource.LOG for s in step.signals):
            warnings.append("log stream unavailable; log signals could not be observed")

        found = score_keywords(step.keywords, "\n".join(observation.lines)) if sent else []
        if step.keywords:
            self.logger.info(f"Keywords found {len(found)}/{len(step.keywords)}: {', '.join(found) or 'none'}")

        counts = await self._check_counts(scenario, counts, critical, warnings)

        if step.critical and (failures or not sent):
            critical.append(f"critical step '{step.name}' failed")

        for key, value in ids.items():
            context[f"{step.name}.{key}"] = value
            context[f"last.{key}"] = value

        result = StepResult(
            index=index,
            name=step.name,
            sent=sent,
            status_code=status_code,
            latency_ms=latency_ms,
            transport_error=transport_error,
            ids=ids,
            required_signals=required,
            matched_signals=observation.matched,
            unmatched_signals=unmatched_required,
            advisory_unmatched=advisory,
            keyword_matches=len(found),
            keywords_expected=len(step.keywords),
            keywords_found=found,
            failures=failures,
            critical_failures=critical,
            warnings=warnings,
            log_available=observation.log_available,
            timestamp=started,
        )

        self.logger.info(f"Step {index} '{step.name}': {'PASSED' if result.passed else 'FAILED'}")
        for failure in failures + critical:
            self.logger.warning(f"  Failure: {failure}")
        return result, counts

    def _build_payload(self, step: Step, identity: UserIdentity, context: dict[str, Any]) -> ProbePayload:
        probe = step.probe
        if probe.kind == "callback":
            origin_id = context.get(f"{probe.origin_step}.message_id") if probe.origin_step else None
            return self.builder.build_callback(
                identity,
                probe.callback_data,
                origin_message_id=origin_id,
                origin_text=probe.origin_text or DEFAULT_ORIGIN_TEXT,
            )

        reply_id = context.get(f"{probe.reply_to_step}.message_id") if probe.reply_to_step else None
        if reply_id is None and probe.reply_to_text:
            reply_id = self.builder.ids.next_id()
        return self.builder.build_text_message(
            identity,
            probe.text,
            reply_to_message_id=reply_id,
            reply_to_text=probe.reply_to_text,
        )

    def _classify(
        self,
        specs: list[SignalSpec],
        observation: Observation,
        failures: list[str],
        critical: list[str],
        warnings: list[str],
    ) -> tuple[list[str], list[str]]:
        """Split unmatched signals into required failures and advisory warnings."""
        unmatched_required: list[str] = []
        advisory: list[str] = []
        for spec in specs:
            if spec.name in observation.matched:
                continue
            note = observation.notes.get(spec.name, "not observed")
            if spec.required:
                unmatched_required.append(spec.name)
                failures.append(f"signal '{spec.name}' not matched: {note}")
                if spec.critical:
                    critical.append(f"critical signal '{spec.name}' not matched: {note}")
            else:
                advisory.append(spec.name)
                warnings.append(f"advisory signal '{spec.name}' not matched: {note}")
        return unmatched_required, advisory

    def _skipped(self, index: int, step: Step, failed_step: str) -> StepResult:
        return StepResult(
            index=index,
            name=step.name,
            skipped=True,
            required_signals=step.required_signal_names(),
            keywords_expected=len(step.keywords),
            warnings=[f"skipped because fail-fast step '{failed_step}' failed"],
            timestamp=datetime.now().isoformat(),
        )

    async def _apply_fixtures(self, fixtures: list[FixtureAction], identity: UserIdentity, phase: str) -> None:
        if not fixtures:
            return
        if self.store is None:
            self._reduce_confidence(f"{phase} fixtures skipped: no data store configured")
            return
        for fixture in fixtures:
            try:
                matched = await self._store_call(
                    apply_fixture(self.store, identity.chat_id, fixture.set_fields, fixture.collection)
                )
            except (FixtureError, StoreError) as e:
                self._reduce_confidence(f"{phase} fixture '{fixture.name}' failed: {e}")
                continue
            if matched:
                self.logger.info(f"Applied {phase} fixture '{fixture.name}'")
            else:
                self.logger.info(f"{phase.capitalize()} fixture '{fixture.name}': no document for chat {identity.chat_id}")

    async def _store_call(self, awaitable):
        """Await a store operation, bounded by the store timeout.

        After a cancel only the timeout applies, so teardown fixtures still run.
        """
        timeout = self.store_timeout_ms / 1000
        try:
            if self.token.cancelled:
                return await asyncio.wait_for(awaitable, timeout)
            return await self.token.guard(awaitable, timeout=timeout)
        except TimeoutError as e:
            raise StoreError(f"no answer within {self.store_timeout_ms}ms") from e

    def _reduce_confidence(self, message: str) -> None:
        self.logger.warning(message)
        self.warnings.append(message)
        self.reduced_confidence = True

    async def _snapshot(self, scenario: Scenario) -> dict[str, int] | None:
        if not scenario.monitor_counts and not scenario.monitor_collection_count:
            return None
        if self.store is None:
            self._reduce_confidence("count monitoring disabled: no data store configured")
            return None
        try:
            counts = await self._store_call(
                count_snapshot(self.store, scenario.monitor_counts, scenario.monitor_collection_count)
            )
        except StoreError as e:
            self._reduce_confidence(f"count monitoring disabled: baseline failed ({e})")
            return None
        self.logger.info(f"Baseline counts: {counts}")
        return counts

    async def _check_counts(
        self,
        scenario: Scenario,
        previous: dict[str, int] | None,
        critical: list[str],
        warnings: list[str],
    ) -> dict[str, int] | None:
        """Compare monitored counts with the previous snapshot; any decrease is critical."""
        if previous is None or self.store is None:
            return previous
        try:
            current = await self._store_call(
                count_snapshot(self.store, scenario.monitor_counts, scenario.monitor_collection_count)
            )
        except StoreError as e:
            warnings.append(f"count snapshot failed: {e}")
            self.logger.warning(f"Count snapshot failed: {e}")
            return previous

        for name, before in previous.items():
            after = current.get(name, 0)
            if after < before:
                critical.append(f"{name} count decreased from {before} to {after}")
                self.logger.error(f"{name} count DECREASED: {before} -> {after}")
        self.logger.info(f"Counts: {current}")
        return current
