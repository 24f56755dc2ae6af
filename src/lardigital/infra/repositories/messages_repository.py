"""WhatsApp message log repository - whatsapp_mensagens and whatsapp_chats.

whatsapp_mensagens.message_id is UNIQUE: record_inbound is the dedupe gate
for redelivered webhooks and replayed history.
"""

from __future__ import annotations

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from lardigital.infra.db import txn


def insert_inbound(
    cur: PgCursor,
    *,
    message_id: str,
    chat_id: str,
    sender_phone: str | None,
    sender_name: str | None,
    text: str | None,
    message_type: str,
    media_path: str | None,
    sent_at: datetime,
) -> bool:
    """Log an inbound message.

    Returns:
        True if newly logged, False if message_id was already present.
    """
    cur.execute(
        """
        INSERT INTO whatsapp_mensagens (
            message_id, chat_id, sender_phone, sender_name,
            message_text, message_type, media_path, sent_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (message_id) DO NOTHING
        """,
        (message_id, chat_id, sender_phone, sender_name, text, message_type, media_path, sent_at),
    )
    return cur.rowcount == 1


def update_processed(
    cur: PgCursor, *, message_id: str, actor_id: int | None, text: str | None
) -> None:
    # text may be a transcription the webhook did not have
    cur.execute(
        """
        UPDATE whatsapp_mensagens
        SET processed = TRUE,
            funcionario_id = %s,
            message_text = COALESCE(%s, message_text)
        WHERE message_id = %s
        """,
        (actor_id or None, text, message_id),
    )


def insert_chat_line(
    cur: PgCursor, *, chat_id: str, direction: str, text: str, author: str | None
) -> None:
    cur.execute(
        """
        INSERT INTO whatsapp_chats (chat_id, direction, author, message_text)
        VALUES (%s, %s, %s, %s)
        """,
        (chat_id, direction, author, text),
    )


def select_last_sent_at(cur: PgCursor) -> datetime | None:
    cur.execute("SELECT MAX(sent_at) FROM whatsapp_mensagens")
    row = cur.fetchone()
    return row[0] if row else None


class PgMessageLogRepository:
    def record_inbound(self, **kwargs) -> bool:
        with txn() as cur:
            return insert_inbound(cur, **kwargs)

    def mark_processed(
        self, *, message_id: str, actor_id: int | None, text: str | None
    ) -> None:
        with txn() as cur:
            update_processed(cur, message_id=message_id, actor_id=actor_id, text=text)

    def log_chat(
        self, *, chat_id: str, direction: str, text: str, author: str | None = None
    ) -> None:
        with txn() as cur:
            insert_chat_line(cur, chat_id=chat_id, direction=direction, text=text, author=author)

    def last_seen_at(self) -> datetime | None:
        with txn() as cur:
            return select_last_sent_at(cur)
