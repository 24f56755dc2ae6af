"""Channel session supervisor.

Owns the lifecycle of the chat channel connection:

    disconnected -> initializing -> waiting_handshake -> connected
    connected -> disconnected   (any channel-level failure)

- initialize: up to MAX_INIT_ATTEMPTS attempts, RETRY_DELAY_SECONDS apart;
  exhausting them leaves the session disconnected and alerts an operator;
- unexpected disconnect: alert, reset the attempt counter, restart the loop;
- manual reconnect: rejected while connected or initializing; otherwise the
  old client loses all listeners before it is destroyed, so its late
  events cannot start a second retry loop;
- health check: independent of reconnects, alerts when the feature is
  enabled but the session is not connected.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal

from lardigital.infra.alerts import OperatorAlerts
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context

from .channel import (
    EVENT_AUTH_FAILURE,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    ChannelClient,
)
from .models import InboundMessage

logger = get_logger(__name__)

SessionState = Literal["disconnected", "initializing", "waiting_handshake", "connected"]

MAX_INIT_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 30
HANDSHAKE_TIMEOUT_SECONDS = 120

ALERT_INIT_FAILED = "whatsapp_init_failed"
ALERT_DISCONNECTED = "whatsapp_disconnected"
ALERT_AUTH_FAILURE = "whatsapp_auth_failure"
ALERT_HEALTH = "whatsapp_health"

MessageHandler = Callable[[InboundMessage], Awaitable[Any]]
ConnectedCallback = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class ReconnectResult:
    accepted: bool
    reason: str


class SessionSupervisor:
    """Supervises one channel session at a time.

    Args:
        client_factory: Builds a fresh ChannelClient for each attempt.
        alerts: Operator alert sink.
        enabled: Feature flag (WHATSAPP_ENABLED).
        sleep: Injected for tests.
    """

    def __init__(
        self,
        client_factory: Callable[[], ChannelClient],
        alerts: OperatorAlerts,
        *,
        enabled: bool = True,
        max_attempts: int = MAX_INIT_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        handshake_timeout: float = HANDSHAKE_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client_factory = client_factory
        self._alerts = alerts
        self._enabled = enabled
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._handshake_timeout = handshake_timeout
        self._sleep = sleep

        self._state: SessionState = "disconnected"
        self._attempts = 0
        self._client: ChannelClient | None = None
        self._ready = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._health_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._message_handlers: list[MessageHandler] = []
        self._connected_callbacks: list[ConnectedCallback] = []
        self.last_qr: str | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def client(self) -> ChannelClient | None:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._state == "connected"

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "state": self._state,
            "attempts": self._attempts,
            "has_qr": self.last_qr is not None and self._state != "connected",
        }

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_connected(self, callback: ConnectedCallback) -> None:
        self._connected_callbacks.append(callback)

    def _attach(self, client: ChannelClient) -> None:
        client.on(EVENT_READY, self._handle_ready)
        client.on(EVENT_QR, self._handle_qr)
        client.on(EVENT_DISCONNECTED, self._handle_disconnected)
        client.on(EVENT_AUTH_FAILURE, self._handle_auth_failure)
        client.on(EVENT_MESSAGE, self._handle_message)

    async def _teardown(self, client: ChannelClient | None) -> None:
        if client is None:
            return
        # Detach first: a late "disconnected" from the old client must not
        # restart the retry loop.
        client.remove_all_listeners()
        try:
            await client.destroy()
        except Exception:
            logger.exception("channel client destroy failed")
        if self._client is client:
            self._client = None

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the initialize loop unless disabled or already running."""
        if not self._enabled:
            logger.info("whatsapp disabled, supervisor not started")
            return
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._loop_task = asyncio.ensure_future(self._run())

    async def wait_until_settled(self) -> None:
        """Await the current initialize loop (tests and shutdown)."""
        if self._loop_task is not None:
            await asyncio.gather(self._loop_task, return_exceptions=True)

    async def drain(self) -> None:
        """Await message handlers and connected callbacks still running."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _run(self) -> None:
        while self._attempts < self._max_attempts:
            self._attempts += 1
            self._state = "initializing"
            self._ready.clear()
            client = self._client_factory()
            self._client = client
            self._attach(client)
            log_ctx = safe_log_context(attempt=self._attempts, max_attempts=self._max_attempts)
            logger.info("channel initialize attempt", extra={"extra_fields": log_ctx})

            try:
                await client.initialize()
                if self._state == "initializing":
                    self._state = "waiting_handshake"
                await asyncio.wait_for(self._ready.wait(), timeout=self._handshake_timeout)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "channel initialize attempt failed",
                    extra={
                        "extra_fields": safe_log_context(
                            attempt=self._attempts, error_type=type(e).__name__
                        )
                    },
                )
                await self._teardown(client)
                self._state = "disconnected"

            if self._attempts < self._max_attempts:
                await self._sleep(self._retry_delay)

        self._state = "disconnected"
        logger.error(
            "channel initialize attempts exhausted",
            extra={"extra_fields": safe_log_context(attempts=self._attempts)},
        )
        self._alerts.notify(
            ALERT_INIT_FAILED,
            "WhatsApp não conectou",
            f"A sessão do WhatsApp falhou após {self._attempts} tentativas. "
            "Use a reconexão manual no painel.",
        )

    async def reconnect(self) -> ReconnectResult:
        """Manual reconnect requested by an operator."""
        if self._state in ("connected", "initializing"):
            logger.info(
                "reconnect rejected",
                extra={"extra_fields": safe_log_context(state=self._state)},
            )
            return ReconnectResult(False, f"session is {self._state}")

        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
        await self._teardown(self._client)

        self._state = "disconnected"
        self._attempts = 0
        self._loop_task = None
        logger.info("reconnect accepted")
        await self.start()
        return ReconnectResult(True, "reconnecting")

    async def stop(self) -> None:
        for task in (self._loop_task, self._health_task):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._loop_task = None
        self._health_task = None
        await self._teardown(self._client)
        self._state = "disconnected"

    # ------------------------------------------------------------------
    # Channel events
    # ------------------------------------------------------------------

    async def _handle_ready(self) -> None:
        self._state = "connected"
        self._attempts = 0
        self.last_qr = None
        self._ready.set()
        logger.info("channel connected")
        for callback in self._connected_callbacks:
            self._spawn(callback())

    async def _handle_qr(self, code: str) -> None:
        self.last_qr = code
        logger.info("channel qr code received")

    async def _handle_disconnected(self, reason: str | None = None) -> None:
        if self._state != "connected":
            return
        self._state = "disconnected"
        logger.warning(
            "channel disconnected",
            extra={"extra_fields": safe_log_context(reason=reason)},
        )
        self._alerts.notify(
            ALERT_DISCONNECTED,
            "WhatsApp desconectado",
            f"A sessão do WhatsApp caiu (motivo: {reason or 'desconhecido'}). "
            "Tentando reconectar.",
        )
        old = self._client
        await self._teardown(old)
        self._attempts = 0
        self._loop_task = asyncio.ensure_future(self._run())

    async def _handle_auth_failure(self, reason: str | None = None) -> None:
        logger.error(
            "channel auth failure",
            extra={"extra_fields": safe_log_context(reason=reason)},
        )
        self._alerts.notify(
            ALERT_AUTH_FAILURE,
            "WhatsApp sem autenticação",
            "A sessão do WhatsApp foi desautenticada. Reconecte e leia o QR code.",
        )
        client = self._client
        self._state = "disconnected"
        if client is not None:
            try:
                await client.logout()
            except Exception:
                logger.exception("channel logout failed")
            await self._teardown(client)

    async def _handle_message(self, message: InboundMessage) -> None:
        # Handlers run in the background so the webhook can ACK right away.
        for handler in self._message_handlers:
            self._spawn(handler(message))

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health_check(self) -> bool:
        """Alert if enabled but not connected. Returns True when healthy."""
        if not self._enabled or self._state == "connected":
            return True
        logger.warning(
            "channel health check failed",
            extra={"extra_fields": safe_log_context(state=self._state)},
        )
        self._alerts.notify(
            ALERT_HEALTH,
            "WhatsApp fora do ar",
            f"Verificação periódica: a sessão do WhatsApp está '{self._state}'.",
        )
        return False

    def start_health_checks(self, interval: float) -> None:
        if self._health_task is not None and not self._health_task.done():
            return
        self._health_task = asyncio.ensure_future(self._health_loop(interval))

    async def _health_loop(self, interval: float) -> None:
        while True:
            await self._sleep(interval)
            self.health_check()
