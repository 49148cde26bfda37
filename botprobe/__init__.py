"""Black-box webhook test harness for a Telegram AI bot.

This package provides:
- Payload builder for synthetic message and button-callback updates
- Webhook transport client
- Signal observer over the bot's log file and MongoDB documents
- Scenario runner with id threading, fixtures and count monitoring
- Result aggregation and a colorized terminal report
"""

from .cancellation import CancellationToken, RunCancelled
from .config import HarnessConfig
from .loader import ScenarioLoadError, bundled_scenarios, load_scenario, resolve_scenario
from .logtail import LogTail
from .models import (
    AbsencePolicy,
    CallbackEvent,
    FixtureAction,
    MatchStrategy,
    Observation,
    ProbeSpec,
    RateMetric,
    RunReport,
    Scenario,
    SignalSource,
    SignalSpec,
    Step,
    StepResult,
    TextMessage,
    Thresholds,
    TransportFailure,
    TransportResponse,
    UserIdentity,
)
from .observer import SignalObserver
from .payloads import IdGenerator, PayloadBuilder
from .reporter import RunReporter, load_report, save_report, summarize
from .runner import ScenarioRunner
from .store import (
    DocumentStore,
    FixtureError,
    InMemoryDocumentStore,
    MongoDocumentStore,
    StoreError,
)
from .transport import TransportError, WebhookClient

__version__ = "0.1.0"

__all__ = [
    # Components
    "PayloadBuilder",
    "IdGenerator",
    "WebhookClient",
    "LogTail",
    "SignalObserver",
    "ScenarioRunner",
    "RunReporter",
    "summarize",
    "save_report",
    "load_report",
    # Store
    "DocumentStore",
    "MongoDocumentStore",
    "InMemoryDocumentStore",
    # Config and loading
    "HarnessConfig",
    "load_scenario",
    "resolve_scenario",
    "bundled_scenarios",
    # Cancellation
    "CancellationToken",
    "RunCancelled",
    # Errors
    "TransportError",
    "StoreError",
    "FixtureError",
    "ScenarioLoadError",
    # Models
    "AbsencePolicy",
    "CallbackEvent",
    "FixtureAction",
    "MatchStrategy",
    "Observation",
    "ProbeSpec",
    "RateMetric",
    "RunReport",
    "Scenario",
    "SignalSource",
    "SignalSpec",
    "Step",
    "StepResult",
    "TextMessage",
    "Thresholds",
    "TransportFailure",
    "TransportResponse",
    "UserIdentity",
]
