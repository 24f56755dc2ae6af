"""Chat channel client contract.

The session supervisor and the router depend only on this narrow surface.
Listeners may be plain callables or coroutine functions.
"""

from __future__ import annotations

import inspect
from datetime import datetime
from typing import Any, Callable, Protocol

from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context

from .models import InboundMessage

logger = get_logger(__name__)

EVENT_MESSAGE = "message"
EVENT_QR = "qr"
EVENT_READY = "ready"
EVENT_DISCONNECTED = "disconnected"
EVENT_AUTH_FAILURE = "auth_failure"

CHANNEL_EVENTS = frozenset(
    {EVENT_MESSAGE, EVENT_QR, EVENT_READY, EVENT_DISCONNECTED, EVENT_AUTH_FAILURE}
)

Listener = Callable[..., Any]


class ChannelError(Exception):
    """Channel gateway unreachable or rejected a request."""


class ChannelClient(Protocol):
    def on(self, event: str, listener: Listener) -> None: ...

    def remove_all_listeners(self) -> None: ...

    async def initialize(self) -> None: ...

    async def destroy(self) -> None: ...

    async def logout(self) -> None: ...

    async def send_message(self, target: str, text: str) -> None: ...

    async def get_chats(self) -> list[dict[str, Any]]: ...

    async def fetch_messages_since(self, since: datetime) -> list[InboundMessage]: ...

    async def download_media(self, message: InboundMessage) -> bytes | None: ...


class ListenerRegistry:
    """Minimal event emitter shared by channel client implementations."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        if event not in CHANNEL_EVENTS:
            raise ValueError(f"Unknown channel event: {event}")
        self._listeners.setdefault(event, []).append(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def listener_count(self, event: str | None = None) -> int:
        if event is None:
            return sum(len(items) for items in self._listeners.values())
        return len(self._listeners.get(event, []))

    async def emit(self, event: str, *args: Any) -> None:
        # Copy: a listener may detach everything (reconnect) mid-dispatch
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "channel listener failed",
                    extra={"extra_fields": safe_log_context(event=event)},
                )
