"""
Data Models for the Webhook Probe Harness.

This module defines the Pydantic models shared by every harness component:

- Probe payloads (text messages and button callbacks) sent to the bot webhook
- Signal definitions evaluated against the bot's log stream and data store
- Scenario and step definitions loaded from YAML
- Per-step results and the aggregated run report

Key Design Principles:
- Probes, step results and run reports are immutable once built
- Every model is JSON-serializable so reports can be saved and diffed
- Expected failures (non-200, timeouts, missing signals) are data, not exceptions
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# Enumerations
# =============================================================================


class MatchStrategy(str, Enum):
    """
    Strategy for matching a signal against log lines or document fields.

    Attributes:
        CONTAINS: Line/field must contain the pattern (substring match)
        REGEX: Pattern is treated as a regular expression
        EXACT: Field value must equal the expected value
        PRESENT: Field must exist and be non-null
        ABSENT: Field must be missing or null
        NUMERIC_RANGE: Field value must be within [min_value, max_value]
    """
    CONTAINS = "contains"
    REGEX = "regex"
    EXACT = "exact"
    PRESENT = "present"
    ABSENT = "absent"
    NUMERIC_RANGE = "numeric_range"


class SignalSource(str, Enum):
    """Where a signal is observed."""
    LOG = "log"
    STORE = "store"


class AbsencePolicy(str, Enum):
    """
    How absence assertions are judged when evidence is thin.

    Attributes:
        REQUIRE_ACTIVITY: Absence only counts when the log was readable and
            received at least one line during the observation window
        BENEFIT_OF_DOUBT: Absence counts whenever no matching line was seen
    """
    REQUIRE_ACTIVITY = "require_activity"
    BENEFIT_OF_DOUBT = "benefit_of_doubt"


class TransportFailure(str, Enum):
    """Reason a webhook delivery failed."""
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    PROTOCOL = "protocol"


# =============================================================================
# Identity and Probe Payloads
# =============================================================================


class UserIdentity(BaseModel):
    """
    The simulated Telegram user a probe is sent as.

    Attributes:
        chat_id: Private chat id (equal to the user id for private chats)
        user_id: Telegram user id, defaults to chat_id
        username: Telegram @username without the @
        first_name: Display name
        language_code: IETF language tag reported by the client
    """
    chat_id: int
    user_id: int | None = None
    username: str
    first_name: str
    language_code: str = "en"

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def default_user_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("user_id") is None and "chat_id" in data:
            data = {**data, "user_id": data["chat_id"]}
        return data

    def sender(self) -> dict[str, Any]:
        """Render the Telegram `from` object for this user."""
        return {
            "id": self.user_id,
            "is_bot": False,
            "first_name": self.first_name,
            "username": self.username,
            "language_code": self.language_code,
        }

    def chat(self) -> dict[str, Any]:
        """Render the Telegram `chat` object for this user's private chat."""
        return {
            "id": self.chat_id,
            "first_name": self.first_name,
            "username": self.username,
            "type": "private",
        }


class TextMessage(BaseModel):
    """
    A synthetic inbound text message update.

    Attributes:
        identity: The user sending the message
        text: Message text, never empty
        timestamp: Unix seconds used as the message `date`
        message_id: Unique message id within the run
        update_id: Unique update id within the run
        reply_to_message_id: Id of the message this one replies to
        reply_to_text: Text of the replied-to message
    """
    kind: Literal["message"] = "message"
    identity: UserIdentity
    text: str = Field(min_length=1)
    timestamp: int
    message_id: int
    update_id: int
    reply_to_message_id: int | None = None
    reply_to_text: str | None = None

    model_config = {"extra": "forbid", "frozen": True}

    @property
    def chat_id(self) -> int:
        return self.identity.chat_id

    def ids(self) -> dict[str, Any]:
        """Identifiers later steps may reference."""
        return {"message_id": self.message_id, "update_id": self.update_id}

    def to_update(self) -> dict[str, Any]:
        """Render the Telegram message-update JSON body."""
        message: dict[str, Any] = {
            "message_id": self.message_id,
            "from": self.identity.sender(),
            "chat": self.identity.chat(),
            "date": self.timestamp,
            "text": self.text,
        }
        if self.reply_to_message_id is not None:
            message["reply_to_message"] = {
                "message_id": self.reply_to_message_id,
                "text": self.reply_to_text or "",
            }
        return {"update_id": self.update_id, "message": message}


class CallbackEvent(BaseModel):
    """
    A synthetic inline-button click (callback query) update.

    Attributes:
        identity: The user pressing the button
        callback_id: Unique callback query id
        callback_data: The button's callback data, never empty
        origin_message_id: Id of the bot message carrying the button
        origin_text: Text of the bot message carrying the button
        update_id: Unique update id within the run
        timestamp: Unix seconds used as the origin message `date`
        bot_username: Username of the bot that sent the origin message
        bot_first_name: Display name of the bot
    """
    kind: Literal["callback"] = "callback"
    identity: UserIdentity
    callback_id: str
    callback_data: str = Field(min_length=1)
    origin_message_id: int
    origin_text: str = ""
    update_id: int
    timestamp: int
    bot_username: str = "bot"
    bot_first_name: str = "Bot"

    model_config = {"extra": "forbid", "frozen": True}

    @property
    def chat_id(self) -> int:
        return self.identity.chat_id

    def ids(self) -> dict[str, Any]:
        """Identifiers later steps may reference."""
        return {
            "message_id": self.origin_message_id,
            "update_id": self.update_id,
            "callback_id": self.callback_id,
        }

    def to_update(self) -> dict[str, Any]:
        """Render the Telegram callback-update JSON body."""
        return {
            "update_id": self.update_id,
            "callback_query": {
                "id": self.callback_id,
                "from": self.identity.sender(),
                "message": {
                    "message_id": self.origin_message_id,
                    "from": {
                        "id": self.identity.chat_id,
                        "is_bot": True,
                        "first_name": self.bot_first_name,
                        "username": self.bot_username,
                    },
                    "chat": self.identity.chat(),
                    "date": self.timestamp,
                    "text": self.origin_text,
                },
                "chat_instance": str(self.identity.chat_id),
                "data": self.callback_data,
            },
        }


ProbePayload = TextMessage | CallbackEvent


# =============================================================================
# Signal Definitions
# =============================================================================


class SignalSpec(BaseModel):
    """
    A named piece of evidence to look for after a probe is sent.

    Log signals match `pattern` against recent log lines. Store signals evaluate
    `field` of the probing user's document.

    Attributes:
        name: Identifier used in results and reports
        source: Log stream or data store
        strategy: How the pattern or field is matched
        pattern: Substring or regex for log signals; may contain ${var} placeholders
        level: Only consider structured log lines with this `level`
        absent: The signal holds when NO line matches during the window
        collection: Store collection (defaults to the users collection)
        field: Dotted field path for store signals
        expected_value: For EXACT/CONTAINS store matching
        min_value: For NUMERIC_RANGE, inclusive
        max_value: For NUMERIC_RANGE, inclusive
        case_sensitive: Whether text comparisons are case-sensitive
        budget_ms: Per-signal wait budget, capped by the step budget
        poll_interval_ms: Per-signal polling interval
        required: Unmatched required signals fail the step; others only warn
        critical: An unmatched critical signal is a critical failure
        description: Human-readable explanation

    Example:
        >>> SignalSpec(name="memory retrieved", pattern="Retrieved conversation memory")
        >>> SignalSpec(name="reset recorded", source=SignalSource.STORE,
        ...            field="lastContextReset", strategy=MatchStrategy.PRESENT)
    """
    name: str
    source: SignalSource = SignalSource.LOG
    strategy: MatchStrategy = MatchStrategy.CONTAINS
    pattern: str | None = None
    level: str | None = None
    absent: bool = False
    collection: str | None = None
    field: str | None = None
    expected_value: Any = None
    min_value: float | None = None
    max_value: float | None = None
    case_sensitive: bool = True
    budget_ms: int | None = Field(default=None, ge=0)
    poll_interval_ms: int | None = Field(default=None, ge=10)
    required: bool = True
    critical: bool = False
    description: str | None = None

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def check_source_fields(self) -> "SignalSpec":
        if self.source == SignalSource.LOG:
            if self.strategy not in (MatchStrategy.CONTAINS, MatchStrategy.REGEX):
                raise ValueError(f"Log signal '{self.name}' must use contains or regex")
            if not self.pattern and not self.level:
                raise ValueError(f"Log signal '{self.name}' needs a pattern or a level")
        else:
            if not self.field:
                raise ValueError(f"Store signal '{self.name}' needs a field")
            if self.absent:
                raise ValueError(f"Store signal '{self.name}' cannot use absent; use strategy absent")
        return self


# =============================================================================
# Scenario Definition
# =============================================================================


class ProbeSpec(BaseModel):
    """
    What to send in a step, before ids are generated.

    Attributes:
        kind: Text message or button callback
        text: Message text (kind=message)
        callback_data: Button data (kind=callback)
        reply_to_step: Earlier step whose message this one replies to
        reply_to_text: Text of the replied-to message
        origin_step: Earlier step whose message carries the pressed button
        origin_text: Text of the bot message carrying the button
    """
    kind: Literal["message", "callback"] = "message"
    text: str | None = None
    callback_data: str | None = None
    reply_to_step: str | None = None
    reply_to_text: str | None = None
    origin_step: str | None = None
    origin_text: str | None = None

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_kind_fields(self) -> "ProbeSpec":
        if self.kind == "message" and not self.text:
            raise ValueError("Message probe requires text")
        if self.kind == "callback" and not self.callback_data:
            raise ValueError("Callback probe requires callback_data")
        return self


class Step(BaseModel):
    """
    One send → wait → observe unit of a scenario.

    Attributes:
        name: Unique name within the scenario, used for id references
        probe: What to send
        identity: Overrides the scenario identity for this step
        wait_ms: Nominal processing wait after a successful send
        signals: Signals expected after the probe
        keywords: Substrings scored against the observed log text
        budget_ms: Observation budget; defaults to the configured signal budget
        fail_fast: A failure here skips the remaining steps
        critical: A failure here is a critical failure
        description: Human-readable explanation
    """
    name: str
    probe: ProbeSpec
    identity: UserIdentity | None = None
    wait_ms: int = Field(default=0, ge=0)
    signals: list[SignalSpec] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    budget_ms: int | None = Field(default=None, ge=0)
    fail_fast: bool = False
    critical: bool = False
    description: str | None = None

    model_config = {"extra": "forbid"}

    @field_validator("signals")
    @classmethod
    def unique_signal_names(cls, signals: list[SignalSpec]) -> list[SignalSpec]:
        names = [s.name for s in signals]
        if len(names) != len(set(names)):
            raise ValueError(f"Signal names must be unique within a step: {names}")
        return signals

    def required_signal_names(self) -> list[str]:
        return [s.name for s in self.signals if s.required]


class FixtureAction(BaseModel):
    """
    A store write performed before or after a scenario.

    Fixtures prepare external state; they are not part of the measured behavior.

    Attributes:
        name: Human-readable fixture name
        collection: Target collection (defaults to the users collection)
        set_fields: Fields to set on the probing user's document
    """
    name: str
    collection: str | None = None
    set_fields: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}


class Thresholds(BaseModel):
    """
    Minimum rates (0.0-1.0) for a run to pass. None disables a rate.

    Attributes:
        delivery: Sent steps / total steps
        signal: Steps with all required signals matched / steps with required signals
        keyword: Keyword matches / keywords expected
    """
    delivery: float | None = Field(default=0.8, ge=0.0, le=1.0)
    signal: float | None = Field(default=0.7, ge=0.0, le=1.0)
    keyword: float | None = Field(default=0.6, ge=0.0, le=1.0)

    model_config = {"extra": "forbid", "frozen": True}


class Scenario(BaseModel):
    """
    An ordered script of probes and expected signals modeling a user workflow.

    Attributes:
        id: Unique identifier, also the bundled file stem
        name: Human-readable name
        description: What the scenario verifies
        identity: Default user for all steps (falls back to the configured user)
        steps: The ordered steps
        setup: Fixtures applied before the first step
        teardown: Fixtures applied after the last step
        monitor_counts: Collections whose document counts must never decrease
        monitor_collection_count: Also require the collection count to never decrease
        thresholds: Pass thresholds (falls back to the CLI/default thresholds)
        absence_policy: How absence assertions are judged
        pause_between_steps_ms: Idle time between consecutive steps
        tags: Arbitrary tags for listing and filtering
    """
    id: str
    name: str
    description: str | None = None
    identity: UserIdentity | None = None
    steps: list[Step] = Field(default_factory=list)
    setup: list[FixtureAction] = Field(default_factory=list)
    teardown: list[FixtureAction] = Field(default_factory=list)
    monitor_counts: list[str] = Field(default_factory=list)
    monitor_collection_count: bool = False
    thresholds: Thresholds | None = None
    absence_policy: AbsencePolicy = AbsencePolicy.REQUIRE_ACTIVITY
    pause_between_steps_ms: int = Field(default=0, ge=0)
    tags: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @field_validator("steps")
    @classmethod
    def validate_step_references(cls, steps: list[Step]) -> list[Step]:
        """Step names are unique and only reference earlier steps."""
        seen: set[str] = set()
        for step in steps:
            if step.name in seen:
                raise ValueError(f"Duplicate step name: {step.name}")
            for ref in (step.probe.reply_to_step, step.probe.origin_step):
                if ref is not None and ref not in seen:
                    raise ValueError(
                        f"Step '{step.name}' references '{ref}', which is not an earlier step"
                    )
            seen.add(step.name)
        return steps


# =============================================================================
# Results
# =============================================================================


class TransportResponse(BaseModel):
    """Outcome of a successful webhook delivery."""
    status_code: int
    body: str = ""
    latency_ms: int = 0

    model_config = {"extra": "forbid", "frozen": True}


class Observation(BaseModel):
    """
    Outcome of one signal observation window.

    Attributes:
        matched: Names of signals that held
        unmatched: Names of signals that did not hold
        lines: Log lines seen during the window (bounded)
        log_available: Whether the log stream could be read
        evidence: First matching line or field value per matched signal
        notes: Explanations for unmatched signals (e.g. inconclusive absence)
        elapsed_ms: Time spent observing
    """
    matched: list[str] = Field(default_factory=list)
    unmatched: list[str] = Field(default_factory=list)
    lines: list[str] = Field(default_factory=list)
    log_available: bool = True
    evidence: dict[str, str] = Field(default_factory=dict)
    notes: dict[str, str] = Field(default_factory=dict)
    elapsed_ms: int = 0

    model_config = {"extra": "forbid", "frozen": True}


class StepResult(BaseModel):
    """
    Result of one scenario step. Immutable once produced.

    Attributes:
        index: 1-based position in the scenario
        name: Step name
        sent: Whether the webhook accepted the probe (HTTP 200)
        skipped: Whether the step was skipped after a fail-fast failure
        status_code: HTTP status returned, if any
        latency_ms: Webhook round-trip time
        transport_error: Failure reason if the send failed
        ids: Identifiers of the sent probe
        required_signals: Names of required signals
        matched_signals: Names of signals that held
        unmatched_signals: Names of required signals that did not hold
        advisory_unmatched: Names of non-required signals that did not hold
        keyword_matches: Number of expected keywords found
        keywords_expected: Number of expected keywords
        keywords_found: The keywords found
        failures: Failure descriptions
        critical_failures: Critical failure descriptions
        warnings: Non-fatal observations
        log_available: Whether the log stream could be read
        timestamp: ISO-8601 time the step started
    """
    index: int = Field(ge=1)
    name: str
    sent: bool = False
    skipped: bool = False
    status_code: int | None = None
    latency_ms: int = 0
    transport_error: str | None = None
    ids: dict[str, Any] = Field(default_factory=dict)
    required_signals: list[str] = Field(default_factory=list)
    matched_signals: list[str] = Field(default_factory=list)
    unmatched_signals: list[str] = Field(default_factory=list)
    advisory_unmatched: list[str] = Field(default_factory=list)
    keyword_matches: int = 0
    keywords_expected: int = 0
    keywords_found: list[str] = Field(default_factory=list)
    failures: list[str] = Field(default_factory=list)
    critical_failures: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    log_available: bool = True
    timestamp: str = ""

    model_config = {"extra": "forbid", "frozen": True}

    @property
    def signals_ok(self) -> bool:
        """All required signals matched."""
        return not self.unmatched_signals and set(self.required_signals) <= set(self.matched_signals)

    @property
    def passed(self) -> bool:
        return self.sent and self.signals_ok and not self.failures and not self.critical_failures


class RateMetric(BaseModel):
    """
    A ratio metric compared against an optional threshold.

    A zero denominator yields value 1.0 with has_data False (vacuously met).
    """
    name: str
    numerator: int = 0
    denominator: int = 0
    value: float = Field(default=1.0, ge=0.0, le=1.0)
    threshold: float | None = None
    has_data: bool = False
    passed: bool = True

    model_config = {"extra": "forbid", "frozen": True}


class RunReport(BaseModel):
    """
    Aggregated outcome of one scenario run. Terminal once built.

    Attributes:
        scenario_id: Scenario identifier
        scenario_name: Scenario name
        total_steps: Number of step results
        delivery: Delivery rate metric
        signal: Signal-match rate metric
        keyword: Keyword-match rate metric
        failures: All failure descriptions, prefixed by step
        critical_failures: All critical failure descriptions, prefixed by step
        warnings: Run-level and step-level warnings
        reduced_confidence: A fixture failed, so results may be affected
        cancelled: The run was cancelled; step_results holds the steps that completed
        step_results: The step results the report was built from
        overall_success: Thresholds met and no critical failures
    """
    scenario_id: str = ""
    scenario_name: str = ""
    total_steps: int = 0
    delivery: RateMetric
    signal: RateMetric
    keyword: RateMetric
    failures: list[str] = Field(default_factory=list)
    critical_failures: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    reduced_confidence: bool = False
    cancelled: bool = False
    step_results: list[StepResult] = Field(default_factory=list)
    overall_success: bool = False

    model_config = {"extra": "forbid", "frozen": True}

    def rates(self) -> list[RateMetric]:
        return [self.delivery, self.signal, self.keyword]


__all__ = [
    # Enums
    "MatchStrategy",
    "SignalSource",
    "AbsencePolicy",
    "TransportFailure",
    # Probes
    "UserIdentity",
    "TextMessage",
    "CallbackEvent",
    "ProbePayload",
    # Signals
    "SignalSpec",
    # Scenario
    "ProbeSpec",
    "Step",
    "FixtureAction",
    "Thresholds",
    "Scenario",
    # Results
    "TransportResponse",
    "Observation",
    "StepResult",
    "RateMetric",
    "RunReport",
]
