"""Channel client backed by the Evolution API (HTTP WhatsApp gateway).

Outbound calls go over HTTP; inbound events (messages, connection state,
QR codes) arrive through the webhook route, which hands each payload to
`handle_webhook` on the supervisor's current client.

Security: NEVER log recipients or text. Only log id prefixes and lengths.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import time
from datetime import datetime
from typing import Any

import requests

from lardigital.infra.settings import EvolutionConfig
from lardigital.observability.correlation import get_correlation_id
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import id_prefix, safe_log_context

from .channel import (
    EVENT_AUTH_FAILURE,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    ChannelError,
    ListenerRegistry,
)
from .evolution_adapter import (
    EVENT_CONNECTION_UPDATE,
    EVENT_MESSAGES_UPSERT,
    EVENT_QRCODE_UPDATED,
    InvalidPayloadError,
    event_name,
    normalize,
    normalize_connection,
    normalize_message,
)
from .models import InboundMessage

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 10

# Retry config for sends
MAX_RETRIES = 1
RETRY_DELAY = 0.2

# Replay fetch bounds
REPLAY_PAGE_SIZE = 100
REPLAY_MAX_PAGES = 5

# Baileys disconnect reason for a revoked/logged-out session
STATUS_LOGGED_OUT = 401


def _is_retryable(error: requests.RequestException) -> bool:
    response = getattr(error, "response", None)
    if response is None:
        return True
    return 500 <= response.status_code < 600


class EvolutionChannelClient(ListenerRegistry):
    """ChannelClient implementation for one Evolution instance."""

    def __init__(
        self,
        config: EvolutionConfig,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__()
        self._config = config
        self._session = session or requests.Session()
        self._destroyed = False

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self._config.base_url}{path}/{self._config.instance}"

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        if not self._config.configured:
            raise ChannelError(
                "Missing Evolution config: EVOLUTION_BASE_URL, EVOLUTION_INSTANCE, EVOLUTION_API_KEY"
            )
        headers = {
            "Content-Type": "application/json",
            "apikey": self._config.api_key,
            "X-Correlation-Id": get_correlation_id(),
        }
        response = self._session.request(
            method, self._url(path), json=body, headers=headers, timeout=HTTP_TIMEOUT
        )
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    async def _call(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        try:
            return await asyncio.to_thread(self._request, method, path, body)
        except requests.RequestException as e:
            raise ChannelError(f"{method} {path} failed: {type(e).__name__}") from e
        except ValueError as e:
            raise ChannelError(f"{method} {path} returned invalid JSON") from e

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Ask the gateway for the session; emits ready or qr.

        Raises:
            ChannelError: If the gateway is unreachable or misconfigured.
        """
        self._destroyed = False
        state = await self._call("GET", "/instance/connectionState") or {}
        current = (state.get("instance") or state).get("state")
        if current == "open":
            await self.emit(EVENT_READY)
            return

        connect = await self._call("GET", "/instance/connect") or {}
        code = connect.get("code") or connect.get("base64")
        if code:
            await self.emit(EVENT_QR, code)
        logger.info(
            "evolution session waiting for handshake",
            extra={"extra_fields": safe_log_context(state=current, has_qr=bool(code))},
        )

    async def destroy(self) -> None:
        # The gateway keeps the paired session; dropping the client is enough
        self._destroyed = True
        self._session.close()

    async def logout(self) -> None:
        await self._call("DELETE", "/instance/logout")

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    def send_message_sync(self, target: str, text: str) -> None:
        """Send a text message, retrying once on network errors and 5xx.

        Raises:
            ChannelError: After the retry, or on non-retryable errors.
        """
        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            to_prefix=id_prefix(target, 6),
            text_len=len(text),
        )
        logger.info("sending outbound message", extra={"extra_fields": log_ctx})

        for attempt in range(MAX_RETRIES + 1):
            try:
                self._request("POST", "/message/sendText", {"number": target, "text": text})
                logger.info(
                    "outbound message sent",
                    extra={"extra_fields": {**log_ctx, "attempt": str(attempt)}},
                )
                return
            except requests.RequestException as e:
                if attempt < MAX_RETRIES and _is_retryable(e):
                    logger.warning(
                        "outbound send failed, retrying",
                        extra={
                            "extra_fields": {
                                **log_ctx,
                                "attempt": str(attempt),
                                "error_type": type(e).__name__,
                            }
                        },
                    )
                    time.sleep(RETRY_DELAY)
                    continue
                logger.error(
                    "outbound send failed",
                    extra={
                        "extra_fields": {
                            **log_ctx,
                            "attempt": str(attempt),
                            "error_type": type(e).__name__,
                        }
                    },
                )
                raise ChannelError(f"send failed: {type(e).__name__}") from e

    async def send_message(self, target: str, text: str) -> None:
        await asyncio.to_thread(self.send_message_sync, target, text)

    async def get_chats(self) -> list[dict[str, Any]]:
        chats = await self._call("POST", "/chat/findChats", {})
        return chats if isinstance(chats, list) else []

    async def fetch_messages_since(self, since: datetime) -> list[InboundMessage]:
        """Inbound messages sent at or after `since`, oldest first."""
        cutoff = int(since.timestamp())
        collected: dict[str, InboundMessage] = {}

        for page in range(1, REPLAY_MAX_PAGES + 1):
            body = {
                "where": {"messageTimestamp": {"gte": cutoff}},
                "page": page,
                "offset": REPLAY_PAGE_SIZE,
            }
            result = await self._call("POST", "/chat/findMessages", body)
            container = result.get("messages", result) if isinstance(result, dict) else {}
            records = container.get("records", []) if isinstance(container, dict) else result
            if not isinstance(records, list) or not records:
                break

            for record in records:
                try:
                    message = normalize_message(record)
                except InvalidPayloadError:
                    continue
                if message.from_me or int(message.sent_at.timestamp()) < cutoff:
                    continue
                collected[message.message_id] = message

            pages = container.get("pages") if isinstance(container, dict) else None
            if not pages or page >= int(pages):
                break

        return sorted(collected.values(), key=lambda m: m.sent_at)

    async def download_media(self, message: InboundMessage) -> bytes | None:
        key = message.raw.get("key") if message.raw else None
        if not key:
            return None
        result = await self._call(
            "POST",
            "/chat/getBase64FromMediaMessage",
            {"message": {"key": key}, "convertToMp4": False},
        )
        encoded = result.get("base64") if isinstance(result, dict) else None
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded)
        except (binascii.Error, ValueError) as e:
            raise ChannelError("media download returned invalid base64") from e

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    async def handle_webhook(self, payload: dict[str, Any]) -> str:
        """Dispatch one webhook payload to listeners.

        Returns:
            The normalized event name (for the route's log line).

        Raises:
            InvalidPayloadError: If a message or connection payload is malformed.
        """
        name = event_name(payload)

        if name == EVENT_MESSAGES_UPSERT:
            message = normalize(payload)
            if not message.from_me:
                await self.emit(EVENT_MESSAGE, message)
        elif name == EVENT_CONNECTION_UPDATE:
            update = normalize_connection(payload)
            if update.state == "open":
                await self.emit(EVENT_READY)
            elif update.state == "close":
                if update.status_reason == STATUS_LOGGED_OUT:
                    await self.emit(EVENT_AUTH_FAILURE, "logged out")
                else:
                    await self.emit(EVENT_DISCONNECTED, str(update.status_reason or "close"))
        elif name == EVENT_QRCODE_UPDATED:
            qrcode = (payload.get("data") or {}).get("qrcode") or {}
            code = qrcode.get("code") or qrcode.get("base64")
            if code:
                await self.emit(EVENT_QR, code)

        return name
