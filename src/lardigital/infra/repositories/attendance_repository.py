"""Attendance repository - persistence for registros.

Uses raw SQL with psycopg2 (no ORM).
One row per (funcionario_id, data, evento). The 'jornada' row carries
entrada and saida; lunch rows use saida (saida_almoco) or entrada
(retorno_almoco). Writes are idempotent through the unique index.
"""

from __future__ import annotations

from datetime import date

from psycopg2.extensions import cursor as PgCursor

from lardigital.domain.records import UNMATCHED_SAIDA_NOTE, AttendanceEvent, SaidaResult
from lardigital.infra.db import txn

_EVENT_COLUMN: dict[str, str] = {
    "saida_almoco": "saida",
    "retorno_almoco": "entrada",
}


def insert_entrada(
    cur: PgCursor, *, actor_id: int, day: date, hhmm: str, source: str
) -> bool:
    """Write the day's entrada.

    A saida-only row written earlier that day gets its entrada filled in.

    Returns:
        True if the entrada was written, False if one already existed.
    """
    cur.execute(
        """
        INSERT INTO registros (funcionario_id, data, evento, entrada, tipo)
        VALUES (%s, %s, 'jornada', %s, %s)
        ON CONFLICT (funcionario_id, data, evento)
        DO UPDATE SET entrada = EXCLUDED.entrada, observacao = NULL, updated_at = now()
        WHERE registros.entrada IS NULL
        """,
        (actor_id, day, hhmm, source),
    )
    return cur.rowcount == 1


def close_jornada(
    cur: PgCursor, *, actor_id: int, day: date, hhmm: str, source: str
) -> SaidaResult:
    """Close the open entrada, or record a flagged saida-only row."""
    cur.execute(
        """
        UPDATE registros
        SET saida = %s, updated_at = now()
        WHERE funcionario_id = %s AND data = %s AND evento = 'jornada'
          AND entrada IS NOT NULL AND saida IS NULL
        """,
        (hhmm, actor_id, day),
    )
    if cur.rowcount == 1:
        return "closed"

    cur.execute(
        """
        INSERT INTO registros (funcionario_id, data, evento, saida, tipo, observacao)
        VALUES (%s, %s, 'jornada', %s, %s, %s)
        ON CONFLICT (funcionario_id, data, evento) DO NOTHING
        """,
        (actor_id, day, hhmm, source, UNMATCHED_SAIDA_NOTE),
    )
    return "unmatched" if cur.rowcount == 1 else "duplicate"


def insert_event(
    cur: PgCursor,
    *,
    actor_id: int,
    day: date,
    hhmm: str,
    event: AttendanceEvent,
    source: str,
) -> bool:
    column = _EVENT_COLUMN.get(event)
    if column is None:
        raise ValueError(f"Not a tagged attendance event: {event}")
    cur.execute(
        f"""
        INSERT INTO registros (funcionario_id, data, evento, {column}, tipo)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (funcionario_id, data, evento) DO NOTHING
        """,
        (actor_id, day, event, hhmm, source),
    )
    return cur.rowcount == 1


class PgAttendanceRepository:
    def record_entrada(self, *, actor_id: int, day: date, hhmm: str, source: str) -> bool:
        with txn() as cur:
            return insert_entrada(cur, actor_id=actor_id, day=day, hhmm=hhmm, source=source)

    def record_saida(
        self, *, actor_id: int, day: date, hhmm: str, source: str
    ) -> SaidaResult:
        with txn() as cur:
            return close_jornada(cur, actor_id=actor_id, day=day, hhmm=hhmm, source=source)

    def record_event(
        self,
        *,
        actor_id: int,
        day: date,
        hhmm: str,
        event: AttendanceEvent,
        source: str,
    ) -> bool:
        with txn() as cur:
            return insert_event(
                cur, actor_id=actor_id, day=day, hhmm=hhmm, event=event, source=source
            )
