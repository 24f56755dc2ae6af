"""Pending confirmation store.

A pending confirmation is a question the bot asked an actor ("Registrar
entrada às 08:30?") and is waiting on. Rules:

- at most one `pending` entry per actor; creating a new one expires the
  previous one in the same transaction;
- entries older than CONFIRMATION_TTL are expired lazily, when next read;
- a global sweep of stale rows runs at most once per EXPIRY_SWEEP_INTERVAL;
- status transitions are terminal. Only the caller whose `resolve` wins
  the pending -> confirmed transition may apply the effect;
- the one exception: a confirmed entry whose effect failed to apply is
  reopened, so the actor can answer again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Literal, Protocol

from lardigital.infra.time import utc_now
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context

logger = get_logger(__name__)

CONFIRMATION_TTL = timedelta(minutes=30)
EXPIRY_SWEEP_INTERVAL = timedelta(minutes=5)

ConfirmationStatus = Literal["pending", "confirmed", "denied", "expired"]
TERMINAL_ANSWERS = ("confirmed", "denied")


@dataclass(frozen=True)
class PendingConfirmation:
    """Row of pending_confirmations.

    Attributes:
        kind: Intent kind awaiting confirmation.
        subject_date: Local date the effect applies to.
        subject_time: HH:MM for attendance punches, else None.
        payload: Everything the resolver needs to apply the effect later
            (extracted data, media path, message id, suggestion id).
        chat_id: Chat where the question was asked.
    """

    id: int
    actor_id: int
    kind: str
    subject_date: date
    subject_time: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    status: ConfirmationStatus = "pending"
    created_at: datetime = field(default_factory=utc_now)
    resolved_at: datetime | None = None
    chat_id: str | None = None


class ConfirmationRepository(Protocol):
    def replace_pending(
        self,
        *,
        actor_id: int,
        kind: str,
        subject_date: date,
        subject_time: str | None,
        payload: dict[str, Any],
        chat_id: str | None,
        created_at: datetime,
    ) -> int:
        """Expire the actor's pending entry and insert a new one, atomically."""
        ...

    def find_pending(self, actor_id: int) -> PendingConfirmation | None: ...

    def expire(self, confirmation_id: int, *, resolved_at: datetime) -> bool: ...

    def expire_stale(self, *, cutoff: datetime, resolved_at: datetime) -> int: ...

    def transition(
        self,
        confirmation_id: int,
        status: ConfirmationStatus,
        *,
        resolved_at: datetime,
        fresh_after: datetime,
    ) -> PendingConfirmation | None:
        """pending -> status if still pending and created after fresh_after."""
        ...

    def reopen(self, confirmation_id: int) -> bool:
        """confirmed -> pending, so a failed apply can be answered again."""
        ...


class ConfirmationStore:
    """TTL-aware facade over a ConfirmationRepository."""

    def __init__(
        self,
        repository: ConfirmationRepository,
        *,
        ttl: timedelta = CONFIRMATION_TTL,
        sweep_interval: timedelta = EXPIRY_SWEEP_INTERVAL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo = repository
        self._ttl = ttl
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._last_sweep: datetime | None = None

    def create(
        self,
        *,
        actor_id: int,
        kind: str,
        subject_date: date,
        subject_time: str | None = None,
        payload: dict[str, Any] | None = None,
        chat_id: str | None = None,
    ) -> int:
        """Open a new pending confirmation for the actor, superseding any other."""
        confirmation_id = self._repo.replace_pending(
            actor_id=actor_id,
            kind=kind,
            subject_date=subject_date,
            subject_time=subject_time,
            payload=payload or {},
            chat_id=chat_id,
            created_at=self._clock(),
        )
        logger.info(
            "confirmation created",
            extra={
                "extra_fields": safe_log_context(
                    confirmation_id=confirmation_id, actor_id=actor_id, kind=kind
                )
            },
        )
        return confirmation_id

    def get_pending(self, actor_id: int) -> PendingConfirmation | None:
        """Return the actor's live pending entry.

        A stale entry is persisted as expired and reported as absent.
        """
        now = self._clock()
        self._maybe_sweep(now)

        entry = self._repo.find_pending(actor_id)
        if entry is None:
            return None
        if self.is_stale(entry, now):
            self._repo.expire(entry.id, resolved_at=now)
            logger.info(
                "confirmation expired on read",
                extra={
                    "extra_fields": safe_log_context(
                        confirmation_id=entry.id, actor_id=actor_id, kind=entry.kind
                    )
                },
            )
            return None
        return entry

    def resolve(
        self, confirmation_id: int, status: ConfirmationStatus
    ) -> PendingConfirmation | None:
        """Close a pending entry as confirmed or denied.

        Returns:
            The updated entry, or None when it was no longer pending
            (already answered, superseded, or stale). None means the caller
            lost the transition and must not apply the effect.

        Raises:
            ValueError: If status is not a terminal answer.
        """
        if status not in TERMINAL_ANSWERS:
            raise ValueError(f"Cannot resolve a confirmation as {status!r}")
        now = self._clock()
        entry = self._repo.transition(
            confirmation_id,
            status,
            resolved_at=now,
            fresh_after=now - self._ttl,
        )
        logger.info(
            "confirmation resolved" if entry else "confirmation resolve ignored",
            extra={
                "extra_fields": safe_log_context(
                    confirmation_id=confirmation_id, status=status
                )
            },
        )
        return entry

    def reopen(self, entry: PendingConfirmation) -> bool:
        """Put a confirmed entry back to pending after its effect failed."""
        reopened = self._repo.reopen(entry.id)
        logger.warning(
            "confirmation reopened after failed apply",
            extra={
                "extra_fields": safe_log_context(
                    confirmation_id=entry.id, actor_id=entry.actor_id, reopened=reopened
                )
            },
        )
        return reopened

    def is_stale(self, entry: PendingConfirmation, now: datetime | None = None) -> bool:
        return (now or self._clock()) - entry.created_at > self._ttl

    def _maybe_sweep(self, now: datetime) -> None:
        if self._last_sweep is not None and now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        expired = self._repo.expire_stale(cutoff=now - self._ttl, resolved_at=now)
        if expired:
            logger.info(
                "stale confirmations expired",
                extra={"extra_fields": safe_log_context(count=expired)},
            )
