"""Suggestions and tasks repository - sugestoes_melhoria and tarefas."""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from lardigital.domain.records import SuggestionStatus
from lardigital.infra.db import txn


def insert_suggestion(
    cur: PgCursor,
    *,
    title: str,
    description: str,
    category: str | None,
    source_type: str,
    actor_id: int | None,
    sender_name: str | None,
    sender_phone: str | None,
) -> int:
    cur.execute(
        """
        INSERT INTO sugestoes_melhoria (
            titulo, descricao, categoria, fonte_tipo,
            funcionario_id, remetente_nome, remetente_telefone
        )
        VALUES (%s, %s, COALESCE(%s, 'outro'), %s, %s, %s, %s)
        RETURNING id
        """,
        (title, description, category, source_type, actor_id or None, sender_name, sender_phone),
    )
    return cur.fetchone()[0]


def update_suggestion_status(
    cur: PgCursor,
    *,
    suggestion_id: int,
    status: SuggestionStatus,
    task_id: int | None = None,
) -> bool:
    """Guarded transition out of 'pendente'; False when already handled."""
    cur.execute(
        """
        UPDATE sugestoes_melhoria
        SET status = %s,
            convertida_tarefa_id = COALESCE(%s, convertida_tarefa_id),
            updated_at = now()
        WHERE id = %s AND status = 'pendente'
        """,
        (status, task_id, suggestion_id),
    )
    return cur.rowcount == 1


def insert_task(
    cur: PgCursor,
    *,
    title: str,
    description: str | None,
    priority: str,
    source: str,
) -> int:
    cur.execute(
        """
        INSERT INTO tarefas (titulo, descricao, prioridade, fonte)
        VALUES (%s, %s, %s, %s)
        RETURNING id
        """,
        (title, description, priority, source),
    )
    return cur.fetchone()[0]


class PgSuggestionRepository:
    def create(self, **kwargs) -> int:
        with txn() as cur:
            return insert_suggestion(cur, **kwargs)

    def set_status(
        self, suggestion_id: int, status: SuggestionStatus, task_id: int | None = None
    ) -> bool:
        with txn() as cur:
            return update_suggestion_status(
                cur, suggestion_id=suggestion_id, status=status, task_id=task_id
            )


class PgTaskRepository:
    def create(
        self, *, title: str, description: str | None, priority: str, source: str
    ) -> int:
        with txn() as cur:
            return insert_task(
                cur, title=title, description=description, priority=priority, source=source
            )
