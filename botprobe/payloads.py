"""Payload Builder for webhook probes.

Builds synthetic Telegram updates (text messages and button callbacks) with
identifiers that are unique for the lifetime of the builder.
"""

import logging
import random
import threading
import time

from .models import CallbackEvent, TextMessage, UserIdentity

DEFAULT_ORIGIN_TEXT = "⚠️ Are you sure you want to reset your settings to the default ?"


class IdGenerator:
    """Issues strictly increasing integer ids and unique callback ids.

    Ids are seeded from the current time in milliseconds plus a random suffix,
    so two harness runs against the same bot rarely collide, and every id issued
    by one generator is greater than the previous one.
    """

    def __init__(self, seed: int | None = None):
        if seed is None:
            seed = int(time.time() * 1000) * 1000 + random.randint(0, 999)
        self._last = seed
        self._counter = 0
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            candidate = int(time.time() * 1000) * 1000 + random.randint(0, 999)
            self._last = max(candidate, self._last + 1)
            return self._last

    def next_callback_id(self) -> str:
        with self._lock:
            self._counter += 1
            return f"{time.time_ns()}_{self._counter}{random.randint(100, 999)}"


class PayloadBuilder:
    """Builds probe payloads for a bot.

    Args:
        bot_username: Username of the bot that owns callback buttons.
        bot_first_name: Display name of the bot.
        ids: Id generator, shared with other builders if ids must be unique across them.
        logger: Logger instance for logging.
    """

    def __init__(
        self,
        bot_username: str = "bot",
        bot_first_name: str = "Bot",
        ids: IdGenerator | None = None,
        logger: logging.Logger | None = None,
    ):
        self.bot_username = bot_username
        self.bot_first_name = bot_first_name
        self.ids = ids or IdGenerator()
        self.logger = logger or logging.getLogger(__name__)

    def build_text_message(
        self,
        identity: UserIdentity,
        text: str,
        message_id: int | None = None,
        update_id: int | None = None,
        reply_to_message_id: int | None = None,
        reply_to_text: str | None = None,
    ) -> TextMessage:
        """Build a text message update.

        Raises:
            ValueError: If text is empty.
        """
        if not text:
            raise ValueError("Message text must not be empty")

        message = TextMessage(
            identity=identity,
            text=text,
            timestamp=int(time.time()),
            message_id=message_id if message_id is not None else self.ids.next_id(),
            update_id=update_id if update_id is not None else self.ids.next_id(),
            reply_to_message_id=reply_to_message_id,
            reply_to_text=reply_to_text,
        )
        self.logger.debug(
            f"Built message {message.message_id} for chat {identity.chat_id}: {text[:60]!r}"
        )
        return message

    def build_callback(
        self,
        identity: UserIdentity,
        callback_data: str,
        origin_message_id: int | None = None,
        origin_text: str = DEFAULT_ORIGIN_TEXT,
    ) -> CallbackEvent:
        """Build a callback query update for an inline button click.

        Raises:
            ValueError: If callback_data is empty.
        """
        if not callback_data:
            raise ValueError("Callback data must not be empty")

        event = CallbackEvent(
            identity=identity,
            callback_id=self.ids.next_callback_id(),
            callback_data=callback_data,
            origin_message_id=(
                origin_message_id if origin_message_id is not None else self.ids.next_id()
            ),
            origin_text=origin_text,
            update_id=self.ids.next_id(),
            timestamp=int(time.time()),
            bot_username=self.bot_username,
            bot_first_name=self.bot_first_name,
        )
        self.logger.debug(
            f"Built callback {event.callback_id} ({callback_data}) for chat {identity.chat_id}"
        )
        return event
