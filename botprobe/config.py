"""Harness configuration.

Settings are carried by an explicit HarnessConfig passed to each component.
`HarnessConfig.from_env` loads a `.env` file (if present) and reads the
`PROBE_*` environment variables; CLI flags override either.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .models import Thresholds, UserIdentity
from .transport import webhook_url


class HarnessConfig(BaseModel):
    """Everything needed to reach the bot and its collaborators.

    Attributes:
        base_url: Bot server base URL
        bot_token: Token in the webhook path
        log_path: Bot log file (None disables log signals)
        tail_lines: Lines kept per log read
        mongo_uri: MongoDB connection string (None disables store signals)
        mongo_db: Database name
        users_collection: Per-user collection
        user_key: Field holding the chat id
        request_timeout_ms: Webhook request budget
        store_timeout_ms: Budget for each database call outside signal polling
        poll_interval_ms: Signal polling interval
        signal_budget_ms: Default per-step observation budget
        chat_id: Default probing user
        username: Default probing username
        first_name: Default probing display name
        language_code: Default probing language
        bot_username: Bot username on callback origin messages
        bot_first_name: Bot display name on callback origin messages
        thresholds: Pass thresholds when a scenario declares none
    """
    base_url: str = "http://localhost"
    bot_token: str = ""
    log_path: str | None = None
    tail_lines: int = Field(default=200, ge=1)
    mongo_uri: str | None = None
    mongo_db: str = "grademe_db"
    users_collection: str = "Users"
    user_key: str = "chatId"
    request_timeout_ms: int = Field(default=45_000, ge=1)
    store_timeout_ms: int = Field(default=5_000, ge=1)
    poll_interval_ms: int = Field(default=500, ge=10)
    signal_budget_ms: int = Field(default=15_000, ge=0)
    chat_id: int = 123456789
    username: str = "test_user"
    first_name: str = "Test"
    language_code: str = "en"
    bot_username: str = "grademeai_bot"
    bot_first_name: str = "GrademeAI"
    thresholds: Thresholds = Field(default_factory=Thresholds)

    model_config = {"extra": "forbid"}

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "HarnessConfig":
        """Build a config from `.env` and `PROBE_*` environment variables."""
        if env_file is not None:
            load_dotenv(env_file, override=True)
        else:
            load_dotenv()

        defaults = cls()
        return cls(
            base_url=os.getenv("PROBE_BASE_URL", defaults.base_url),
            bot_token=os.getenv("PROBE_BOT_TOKEN", defaults.bot_token),
            log_path=os.getenv("PROBE_LOG_PATH") or None,
            tail_lines=int(os.getenv("PROBE_TAIL_LINES", str(defaults.tail_lines))),
            mongo_uri=os.getenv("PROBE_MONGO_URI") or None,
            mongo_db=os.getenv("PROBE_MONGO_DB", defaults.mongo_db),
            users_collection=os.getenv("PROBE_USERS_COLLECTION", defaults.users_collection),
            user_key=os.getenv("PROBE_USER_KEY", defaults.user_key),
            request_timeout_ms=int(os.getenv("PROBE_REQUEST_TIMEOUT_MS", str(defaults.request_timeout_ms))),
            store_timeout_ms=int(os.getenv("PROBE_STORE_TIMEOUT_MS", str(defaults.store_timeout_ms))),
            poll_interval_ms=int(os.getenv("PROBE_POLL_INTERVAL_MS", str(defaults.poll_interval_ms))),
            signal_budget_ms=int(os.getenv("PROBE_SIGNAL_BUDGET_MS", str(defaults.signal_budget_ms))),
            chat_id=int(os.getenv("PROBE_CHAT_ID", str(defaults.chat_id))),
            username=os.getenv("PROBE_USERNAME", defaults.username),
            first_name=os.getenv("PROBE_FIRST_NAME", defaults.first_name),
            language_code=os.getenv("PROBE_LANGUAGE_CODE", defaults.language_code),
            bot_username=os.getenv("PROBE_BOT_USERNAME", defaults.bot_username),
            bot_first_name=os.getenv("PROBE_BOT_FIRST_NAME", defaults.bot_first_name),
        )

    @property
    def endpoint(self) -> str:
        return webhook_url(self.base_url, self.bot_token)

    def identity(self) -> UserIdentity:
        return UserIdentity(
            chat_id=self.chat_id,
            username=self.username,
            first_name=self.first_name,
            language_code=self.language_code,
        )
