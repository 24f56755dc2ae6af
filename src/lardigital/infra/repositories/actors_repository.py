"""Actors repository - funcionarios rows the pipeline reads and creates."""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from lardigital.domain.records import Actor
from lardigital.infra.db import txn


def select_active(cur: PgCursor) -> list[Actor]:
    cur.execute(
        """
        SELECT id, nome, telefone
        FROM funcionarios
        WHERE status = 'ativo'
        ORDER BY id
        """
    )
    return [Actor(id=row[0], name=row[1], phone=row[2]) for row in cur.fetchall()]


def insert_actor(
    cur: PgCursor, *, name: str, phone: str | None, created_via: str = "whatsapp"
) -> Actor:
    cur.execute(
        """
        INSERT INTO funcionarios (nome, telefone, criado_via)
        VALUES (%s, %s, %s)
        RETURNING id
        """,
        (name, phone, created_via),
    )
    return Actor(id=cur.fetchone()[0], name=name, phone=phone)


class PgActorRepository:
    def list_active(self) -> list[Actor]:
        with txn() as cur:
            return select_active(cur)

    def create(self, *, name: str, phone: str | None) -> Actor:
        with txn() as cur:
            return insert_actor(cur, name=name, phone=phone)
