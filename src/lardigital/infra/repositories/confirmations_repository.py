"""Pending confirmations repository - persistence for pending_confirmations.

Uses raw SQL with psycopg2 (no ORM).
The partial unique index uq_pending_confirmations_one_pending backs the
one-pending-per-actor rule; replace_pending serializes on the actor row.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from lardigital.domain.confirmations import ConfirmationStatus, PendingConfirmation
from lardigital.infra.db import txn

_COLUMNS = """
    id, funcionario_id, tipo, data, horario, payload, status,
    created_at, resolved_at, whatsapp_chat_id
"""


def _row_to_confirmation(row: tuple[Any, ...]) -> PendingConfirmation:
    return PendingConfirmation(
        id=row[0],
        actor_id=row[1],
        kind=row[2],
        subject_date=row[3],
        subject_time=row[4],
        payload=row[5] or {},
        status=row[6],
        created_at=row[7],
        resolved_at=row[8],
        chat_id=row[9],
    )


def replace_pending(
    cur: PgCursor,
    *,
    actor_id: int,
    kind: str,
    subject_date: date,
    subject_time: str | None,
    payload: dict[str, Any],
    chat_id: str | None,
    created_at: datetime,
) -> int:
    """Expire the actor's open question and insert a new one.

    Locks the funcionarios row first so two concurrent creates for the same
    actor cannot both pass the expire step.

    Returns:
        Id of the new pending confirmation.
    """
    cur.execute("SELECT id FROM funcionarios WHERE id = %s FOR UPDATE", (actor_id,))
    cur.execute(
        """
        UPDATE pending_confirmations
        SET status = 'expired', resolved_at = %s
        WHERE funcionario_id = %s AND status = 'pending'
        """,
        (created_at, actor_id),
    )
    cur.execute(
        """
        INSERT INTO pending_confirmations (
            funcionario_id, tipo, data, horario, payload, whatsapp_chat_id, created_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (actor_id, kind, subject_date, subject_time, Json(payload), chat_id, created_at),
    )
    return cur.fetchone()[0]


def select_pending(cur: PgCursor, *, actor_id: int) -> PendingConfirmation | None:
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM pending_confirmations
        WHERE funcionario_id = %s AND status = 'pending'
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (actor_id,),
    )
    row = cur.fetchone()
    return _row_to_confirmation(row) if row else None


def expire_one(cur: PgCursor, *, confirmation_id: int, resolved_at: datetime) -> bool:
    cur.execute(
        """
        UPDATE pending_confirmations
        SET status = 'expired', resolved_at = %s
        WHERE id = %s AND status = 'pending'
        """,
        (resolved_at, confirmation_id),
    )
    return cur.rowcount == 1


def expire_older_than(cur: PgCursor, *, cutoff: datetime, resolved_at: datetime) -> int:
    """Expire every pending row created before cutoff. Returns the count."""
    cur.execute(
        """
        UPDATE pending_confirmations
        SET status = 'expired', resolved_at = %s
        WHERE status = 'pending' AND created_at < %s
        """,
        (resolved_at, cutoff),
    )
    return cur.rowcount


def transition_status(
    cur: PgCursor,
    *,
    confirmation_id: int,
    status: ConfirmationStatus,
    resolved_at: datetime,
    fresh_after: datetime,
) -> PendingConfirmation | None:
    """Guarded pending -> status update.

    Returns:
        The updated row, or None if it was not pending or is older than
        fresh_after (0 rows updated).
    """
    cur.execute(
        f"""
        UPDATE pending_confirmations
        SET status = %s, resolved_at = %s
        WHERE id = %s AND status = 'pending' AND created_at >= %s
        RETURNING {_COLUMNS}
        """,
        (status, resolved_at, confirmation_id, fresh_after),
    )
    row = cur.fetchone()
    return _row_to_confirmation(row) if row else None


def reopen_confirmed(cur: PgCursor, *, confirmation_id: int) -> bool:
    """confirmed -> pending, unless the actor already has another pending row."""
    cur.execute(
        """
        UPDATE pending_confirmations pc
        SET status = 'pending', resolved_at = NULL
        WHERE pc.id = %s AND pc.status = 'confirmed'
          AND NOT EXISTS (
              SELECT 1 FROM pending_confirmations other
              WHERE other.funcionario_id = pc.funcionario_id AND other.status = 'pending'
          )
        """,
        (confirmation_id,),
    )
    return cur.rowcount == 1


class PgConfirmationRepository:
    """ConfirmationRepository over Postgres, one transaction per call."""

    def replace_pending(self, **kwargs: Any) -> int:
        with txn() as cur:
            return replace_pending(cur, **kwargs)

    def find_pending(self, actor_id: int) -> PendingConfirmation | None:
        with txn() as cur:
            return select_pending(cur, actor_id=actor_id)

    def expire(self, confirmation_id: int, *, resolved_at: datetime) -> bool:
        with txn() as cur:
            return expire_one(cur, confirmation_id=confirmation_id, resolved_at=resolved_at)

    def expire_stale(self, *, cutoff: datetime, resolved_at: datetime) -> int:
        with txn() as cur:
            return expire_older_than(cur, cutoff=cutoff, resolved_at=resolved_at)

    def transition(
        self,
        confirmation_id: int,
        status: ConfirmationStatus,
        *,
        resolved_at: datetime,
        fresh_after: datetime,
    ) -> PendingConfirmation | None:
        with txn() as cur:
            return transition_status(
                cur,
                confirmation_id=confirmation_id,
                status=status,
                resolved_at=resolved_at,
                fresh_after=fresh_after,
            )

    def reopen(self, confirmation_id: int) -> bool:
        with txn() as cur:
            return reopen_confirmed(cur, confirmation_id=confirmation_id)
