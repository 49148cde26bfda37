"""
Pytest configuration and fixtures for botprobe tests.

Provides:
- Session-scoped test logger
- A fake bot webhook built on httpx.MockTransport
- Temporary bot log files the fake bot appends to
- In-memory document store standing in for MongoDB
- Wired runner/observer fixtures with fast polling
"""

import asyncio
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from botprobe.cancellation import CancellationToken
from botprobe.logtail import LogTail
from botprobe.models import UserIdentity
from botprobe.observer import SignalObserver
from botprobe.payloads import PayloadBuilder
from botprobe.runner import ScenarioRunner
from botprobe.store import InMemoryDocumentStore
from botprobe.transport import WebhookClient

WEBHOOK = "http://bot.test/webhook/TEST_TOKEN"


class FakeBot:
    """Webhook double that records updates and appends log lines for them.

    Args:
        log_path: File the bot writes its log lines to.
        reactions: Maps message text or callback data to log lines to append.
            Lines may use {message_id}, {chat_id} and {data} placeholders.
        status_code: HTTP status returned for every update.
        store: Optional store the bot mutates (new users are inserted).
    """

    def __init__(
        self,
        log_path: Path,
        reactions: dict[str, list[str]] | None = None,
        status_code: int = 200,
        store: InMemoryDocumentStore | None = None,
    ):
        self.log_path = log_path
        self.reactions = reactions or {}
        self.status_code = status_code
        self.store = store
        self.updates: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.on_update: Callable[[dict[str, Any]], None] | None = None

    def write(self, *lines: str) -> None:
        with open(self.log_path, "a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")

    def handler(self, request: httpx.Request) -> httpx.Response:
        update = json.loads(request.content)
        self.requests.append(request)
        self.updates.append(update)

        if "message" in update:
            message = update["message"]
            key = message["text"]
            fields = {"message_id": message["message_id"], "chat_id": message["chat"]["id"], "data": ""}
        else:
            query = update["callback_query"]
            key = query["data"]
            fields = {
                "message_id": query["message"]["message_id"],
                "chat_id": query["message"]["chat"]["id"],
                "data": key,
            }

        self.write(json.dumps({"level": "info", "msg": "Incoming update", "message_id": fields["message_id"]}, separators=(",", ":")))
        for line in self.reactions.get(key, []):
            self.write(line.format(**fields))

        if self.on_update is not None:
            self.on_update(update)

        return httpx.Response(self.status_code, json={"ok": self.status_code == 200})


class SlowStore(InMemoryDocumentStore):
    """In-memory store whose queries take `delay` seconds, like an unreachable MongoDB."""

    def __init__(self, delay: float, collections: dict[str, list[dict[str, Any]]] | None = None):
        super().__init__(collections)
        self.delay = delay

    async def find_one(self, collection: str, query: dict[str, Any]) -> dict[str, Any] | None:
        await asyncio.sleep(self.delay)
        return await super().find_one(collection, query)

    async def count(self, collection: str, query: dict[str, Any] | None = None) -> int:
        await asyncio.sleep(self.delay)
        return await super().count(collection, query)

    async def set_fields(self, collection: str, query: dict[str, Any], fields: dict[str, Any]) -> int:
        await asyncio.sleep(self.delay)
        return await super().set_fields(collection, query, fields)


@pytest.fixture(scope="session")
def test_logger() -> logging.Logger:
    """Session-scoped logger fixture."""
    logger = logging.getLogger("botprobe_test")
    logger.setLevel(logging.DEBUG)

    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S"
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.info("Test logging initialized for botprobe")
    return logger


@pytest.fixture
def identity() -> UserIdentity:
    return UserIdentity(chat_id=830403309, username="probe_user", first_name="Probe")


@pytest.fixture
def log_file(tmp_path: Path) -> Path:
    path = tmp_path / "bot.log"
    path.write_text("startup line\n", encoding="utf-8")
    return path


@pytest.fixture
def store(identity: UserIdentity) -> InMemoryDocumentStore:
    return InMemoryDocumentStore({
        "Users": [{"chatId": identity.chat_id, "currentAI": "gpt-4o", "lastContextReset": None}],
        "History": [{"userId": identity.chat_id}],
    })


@pytest.fixture
def fake_bot(log_file: Path, store: InMemoryDocumentStore) -> FakeBot:
    return FakeBot(log_file, store=store)


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def make_runner(fake_bot: FakeBot, log_file: Path, store: InMemoryDocumentStore, identity: UserIdentity, token: CancellationToken, test_logger: logging.Logger):
    """Factory for a runner wired to the fake bot with fast polling."""
    clients: list[WebhookClient] = []

    def factory(
        budget_ms: int = 300,
        with_store: bool = True,
        data_store: InMemoryDocumentStore | None = None,
        store_timeout_ms: int = 5000,
    ) -> ScenarioRunner:
        active_store = (data_store or store) if with_store else None
        client = WebhookClient(
            WEBHOOK,
            timeout_ms=2000,
            client=httpx.AsyncClient(transport=httpx.MockTransport(fake_bot.handler)),
            logger=test_logger,
        )
        clients.append(client)
        observer = SignalObserver(
            LogTail(log_file, tail_lines=200, logger=test_logger),
            store=active_store,
            poll_interval_ms=20,
            default_budget_ms=budget_ms,
            token=token,
            logger=test_logger,
        )
        return ScenarioRunner(
            client,
            observer,
            PayloadBuilder("grademeai_bot", "GrademeAI"),
            default_identity=identity,
            store=active_store,
            token=token,
            store_timeout_ms=store_timeout_ms,
            logger=test_logger,
        )

    return factory


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
    config.addinivalue_line(
        "markers", "store: marks tests that exercise the document store"
    )
