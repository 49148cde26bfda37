"""Transport Client: delivers probe payloads to the bot webhook."""

import asyncio
import logging
import time

import httpx

from .models import ProbePayload, TransportFailure, TransportResponse

TELEGRAM_USER_AGENT = "TelegramBot (https://core.telegram.org/bots/api)"
DEFAULT_TIMEOUT_MS = 45_000


class TransportError(Exception):
    """A webhook delivery that did not end in HTTP 200.

    Attributes:
        reason: timeout, connection or protocol
        status_code: HTTP status for protocol failures
        latency_ms: Time spent before the failure
    """

    def __init__(
        self,
        reason: TransportFailure,
        message: str,
        status_code: int | None = None,
        latency_ms: int = 0,
    ):
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code
        self.latency_ms = latency_ms

    def __str__(self) -> str:
        base = super().__str__()
        return f"{self.reason.value}: {base}"


def webhook_url(base_url: str, bot_token: str) -> str:
    """Build `<base_url>/webhook/<token>`."""
    return f"{base_url.rstrip('/')}/webhook/{bot_token}"


class WebhookClient:
    """POSTs Telegram updates to the bot's webhook endpoint.

    One call per send, no retries. The client owns its httpx.AsyncClient unless
    one is passed in.

    Args:
        endpoint: Default webhook URL.
        timeout_ms: Default per-request budget.
        client: Optional pre-built httpx.AsyncClient (tests pass a MockTransport one).
        logger: Logger instance for logging.
    """

    def __init__(
        self,
        endpoint: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        self.endpoint = endpoint
        self.timeout_ms = timeout_ms
        self._client = client
        self._owns_client = client is None
        self.logger = logger or logging.getLogger(__name__)

    async def __aenter__(self) -> "WebhookClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": TELEGRAM_USER_AGENT,
                },
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        payload: ProbePayload,
        endpoint: str | None = None,
        timeout_ms: int | None = None,
    ) -> TransportResponse:
        """POST a payload and wait for the webhook's response.

        Args:
            payload: Text message or callback event.
            endpoint: Overrides the default webhook URL.
            timeout_ms: Overrides the default budget.

        Returns:
            TransportResponse for HTTP 200.

        Raises:
            TransportError: On timeout, connection failure or any non-200 status.
        """
        url = endpoint or self.endpoint
        budget_ms = timeout_ms if timeout_ms is not None else self.timeout_ms
        timeout_s = budget_ms / 1000
        body = payload.to_update()

        self.logger.info(f"POST {payload.kind} update {body['update_id']} (chat {payload.chat_id})")
        start = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                self._get_client().post(
                    url,
                    json=body,
                    headers={"User-Agent": TELEGRAM_USER_AGENT},
                    timeout=timeout_s,
                ),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            self.logger.warning(f"Webhook timed out after {latency_ms}ms")
            raise TransportError(
                TransportFailure.TIMEOUT,
                f"no response within {budget_ms}ms",
                latency_ms=latency_ms,
            ) from e
        except httpx.RequestError as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            self.logger.warning(f"Webhook connection failed: {e}")
            raise TransportError(
                TransportFailure.CONNECTION,
                str(e) or type(e).__name__,
                latency_ms=latency_ms,
            ) from e

        latency_ms = int((time.perf_counter() - start) * 1000)

        if response.status_code != 200:
            self.logger.warning(f"Webhook returned HTTP {response.status_code} in {latency_ms}ms")
            raise TransportError(
                TransportFailure.PROTOCOL,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
                latency_ms=latency_ms,
            )

        self.logger.info(f"Webhook accepted update in {latency_ms}ms")
        return TransportResponse(
            status_code=response.status_code,
            body=response.text,
            latency_ms=latency_ms,
        )
