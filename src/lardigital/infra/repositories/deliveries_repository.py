"""Deliveries repository - persistence for entregas."""

from __future__ import annotations

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from lardigital.infra.db import txn


def insert_delivery(
    cur: PgCursor,
    *,
    actor_id: int | None,
    received_at: datetime,
    image_path: str | None,
    recipient: str | None,
    sender: str | None,
    carrier: str | None,
    description: str | None,
    message_id: str | None,
) -> int:
    cur.execute(
        """
        INSERT INTO entregas (
            funcionario_id, data_hora, imagem_path, destinatario,
            remetente, transportadora, descricao, whatsapp_message_id
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (actor_id, received_at, image_path, recipient, sender, carrier, description, message_id),
    )
    return cur.fetchone()[0]


class PgDeliveryRepository:
    def create(self, **kwargs) -> int:
        with txn() as cur:
            return insert_delivery(cur, **kwargs)
