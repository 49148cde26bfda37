"""Signal Observer: waits for expected evidence in the log stream and data store."""

import logging
import time
from collections import deque
from typing import Any

from .cancellation import CancellationToken
from .logtail import LogTail
from .matchers import first_matching_line, match_field
from .models import AbsencePolicy, Observation, SignalSource, SignalSpec
from .store import DocumentStore, StoreError, find_user

EVIDENCE_MAX_CHARS = 240


class SignalObserver:
    """Polls the log tail and the store until signals hold or the budget runs out.

    Every poll scans each log line appended since the previous poll, so no line
    is skipped however fast the bot writes. A positive signal is matched the
    first time its predicate holds and is never retracted. An absence signal is
    violated the first time a matching line appears, and a violation is never
    retracted either. Observation ends once every positive signal has matched
    and no absence signal is still being watched, or when the budget elapses.
    A step with absence signals is therefore observed for its full budget.

    Args:
        log_tail: Reader for the bot's log file.
        store: Document store for store signals (optional).
        poll_interval_ms: Default polling interval.
        default_budget_ms: Budget used when none is given.
        absence_policy: Default policy for absence signals.
        token: Cancellation token raced by every wait.
        logger: Logger instance for logging.
    """

    def __init__(
        self,
        log_tail: LogTail,
        store: DocumentStore | None = None,
        poll_interval_ms: int = 500,
        default_budget_ms: int = 15_000,
        absence_policy: AbsencePolicy = AbsencePolicy.REQUIRE_ACTIVITY,
        token: CancellationToken | None = None,
        logger: logging.Logger | None = None,
    ):
        self.log_tail = log_tail
        self.store = store
        self.poll_interval_ms = poll_interval_ms
        self.default_budget_ms = default_budget_ms
        self.absence_policy = absence_policy
        self.token = token or CancellationToken()
        self.logger = logger or logging.getLogger(__name__)

    async def await_signals(
        self,
        specs: list[SignalSpec],
        budget_ms: int | None = None,
        context: dict[str, Any] | None = None,
        since: int | None = None,
        absence_policy: AbsencePolicy | None = None,
    ) -> Observation:
        """Observe until the signals are decided or the budget elapses.

        Returns within the budget plus one poll interval: waits and store
        queries are both bounded by the remaining budget.

        Args:
            specs: Signals to observe.
            budget_ms: Total observation budget.
            context: Placeholder values for patterns; `chat_id` selects the user document.
            since: Log mark; only lines appended after it are considered.
                Defaults to the end of the log when observation starts.
            absence_policy: Overrides the observer's default policy.

        Returns:
            Observation with matched / unmatched signal names.

        Raises:
            RunCancelled: If the cancellation token fires during a wait.
        """
        context = context or {}
        policy = absence_policy or self.absence_policy
        budget_ms = self.default_budget_ms if budget_ms is None else budget_ms

        positives = [s for s in specs if not (s.source == SignalSource.LOG and s.absent)]
        absences = [s for s in specs if s.source == SignalSource.LOG and s.absent]

        interval_ms = min(
            [self.poll_interval_ms] + [s.poll_interval_ms for s in specs if s.poll_interval_ms]
        )
        start = time.monotonic()
        deadline = start + budget_ms / 1000
        spec_deadlines = {
            s.name: start + min(s.budget_ms if s.budget_ms is not None else budget_ms, budget_ms) / 1000
            for s in specs
        }

        cursor = self.log_tail.mark() if since is None else since
        recent: deque[str] = deque(maxlen=self.log_tail.tail_lines)
        evidence: dict[str, str] = {}
        violations: dict[str, str] = {}
        notes: dict[str, str] = {}
        log_available = True
        saw_activity = False
        store_warned: set[str] = set()
        polls = 0

        self.logger.debug(
            f"Observing {len(positives)} signal(s) and {len(absences)} absence(s) for up to {budget_ms}ms"
        )

        while True:
            self.token.raise_if_cancelled()
            now = time.monotonic()

            chunk = self.log_tail.read_from(cursor)
            cursor, log_available = chunk.end, chunk.available
            recent.extend(chunk.lines)
            saw_activity = saw_activity or bool(chunk.lines)

            docs: dict[str, dict[str, Any] | None] = {}
            for spec in positives:
                if spec.name in evidence or (polls and now > spec_deadlines[spec.name]):
                    continue
                if spec.source == SignalSource.LOG:
                    line = first_matching_line(spec, chunk.lines, context)
                    if line is not None:
                        evidence[spec.name] = line[:EVIDENCE_MAX_CHARS]
                        self.logger.info(f"Signal '{spec.name}' MATCHED")
                else:
                    hit = await self._check_store(spec, context, docs, store_warned, deadline)
                    if hit is not None:
                        evidence[spec.name] = hit
                        self.logger.info(f"Signal '{spec.name}' MATCHED ({hit})")

            for spec in absences:
                if spec.name in violations or (polls and now > spec_deadlines[spec.name]):
                    continue
                line = first_matching_line(spec, chunk.lines, context)
                if line is not None:
                    violations[spec.name] = line[:EVIDENCE_MAX_CHARS]
                    self.logger.warning(f"Absence signal '{spec.name}' VIOLATED")

            polls += 1
            now = time.monotonic()
            pending = [s for s in positives if s.name not in evidence and now <= spec_deadlines[s.name]]
            watching = [s for s in absences if s.name not in violations and now <= spec_deadlines[s.name]]
            if not pending and not watching:
                break
            remaining = deadline - now
            if remaining <= 0:
                break
            await self.token.sleep(min(interval_ms / 1000, remaining))

        for spec in absences:
            if spec.name in violations:
                notes[spec.name] = f"unexpected line seen: {violations[spec.name]}"
            elif policy == AbsencePolicy.REQUIRE_ACTIVITY and (not log_available or not saw_activity):
                notes[spec.name] = "inconclusive: no log activity during the window"
                self.logger.warning(f"Absence signal '{spec.name}' is inconclusive (no log activity)")
            else:
                evidence[spec.name] = "no matching line"

        for spec in positives:
            if spec.name not in evidence:
                if spec.source == SignalSource.LOG and not log_available:
                    notes.setdefault(spec.name, "log stream unavailable")
                else:
                    notes.setdefault(spec.name, f"not observed within {budget_ms}ms")

        matched = [s.name for s in specs if s.name in evidence]
        unmatched = [s.name for s in specs if s.name not in evidence]
        elapsed_ms = int((time.monotonic() - start) * 1000)

        self.logger.info(
            f"Observation finished in {elapsed_ms}ms: {len(matched)}/{len(specs)} signal(s) held"
        )
        return Observation(
            matched=matched,
            unmatched=unmatched,
            lines=list(recent),
            log_available=log_available,
            evidence=evidence,
            notes=notes,
            elapsed_ms=elapsed_ms,
        )

    async def _check_store(
        self,
        spec: SignalSpec,
        context: dict[str, Any],
        docs: dict[str, dict[str, Any] | None],
        store_warned: set[str],
        deadline: float,
    ) -> str | None:
        """Evaluate a store signal, fetching each collection's user document once per poll.

        The query is abandoned one poll interval after the observation deadline,
        so a zero budget still gets one answer from a responsive store.
        """
        if self.store is None:
            if spec.name not in store_warned:
                self.logger.warning(f"Signal '{spec.name}' needs a data store, but none is configured")
                store_warned.add(spec.name)
            return None

        chat_id = context.get("chat_id")
        collection = spec.collection or self.store.users_collection
        if collection not in docs:
            try:
                docs[collection] = await self.token.guard(
                    find_user(self.store, chat_id, collection),
                    timeout=max(deadline - time.monotonic(), 0.0) + self.poll_interval_ms / 1000,
                )
            except (StoreError, TimeoutError) as e:
                if spec.name not in store_warned:
                    reason = e if isinstance(e, StoreError) else "timed out at the observation deadline"
                    self.logger.warning(f"Store query for signal '{spec.name}' failed: {reason}")
                    store_warned.add(spec.name)
                return None

        matched, actual = match_field(spec, docs[collection], context)
        if not matched:
            return None
        return f"{spec.field}={actual!r}"[:EVIDENCE_MAX_CHARS]
