"""Expenses repository - despesas, price history and shopping list reconciliation.

Uses raw SQL with psycopg2 (no ORM). A nota fiscal is written in one
transaction: the expense, its price history and the shopping list items it
marks bought.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Sequence

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from lardigital.domain.records import InvoiceLine
from lardigital.domain.text import normalize_name
from lardigital.infra.db import txn


def insert_expense(
    cur: PgCursor,
    *,
    actor_id: int | None,
    description: str,
    amount: Decimal,
    category: str,
    merchant: str | None,
    spent_on: date,
    receipt_path: str | None,
    extracted: dict[str, Any],
    status: str,
) -> int:
    cur.execute(
        """
        INSERT INTO despesas (
            funcionario_id, descricao, valor, categoria, estabelecimento,
            data_despesa, comprovante_path, dados_extraidos, fonte, status
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, 'whatsapp', %s)
        RETURNING id
        """,
        (
            actor_id,
            description,
            amount,
            category,
            merchant,
            spent_on,
            receipt_path,
            Json(extracted),
            status,
        ),
    )
    return cur.fetchone()[0]


def insert_price(
    cur: PgCursor,
    *,
    item_name: str,
    normalized_name: str,
    price: Decimal,
    merchant: str | None,
    spent_on: date,
    expense_id: int,
) -> None:
    cur.execute(
        """
        INSERT INTO historico_precos (
            nome_item, nome_normalizado, preco, estabelecimento, despesa_id, data_compra
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (item_name, normalized_name, price, merchant, expense_id, spent_on),
    )


def mark_list_items_bought(
    cur: PgCursor, *, normalized_name: str, price: Decimal | None
) -> int:
    """Mark unbought items named like `normalized_name` on open lists.

    Rows are locked while matching so two invoices for the same item
    cannot both claim it.

    Returns:
        Number of items marked.
    """
    cur.execute(
        """
        SELECT i.id, i.nome_item
        FROM lista_compras_itens i
        JOIN listas_compras l ON l.id = i.lista_id
        WHERE l.status = 'aberta' AND i.comprado = FALSE
        ORDER BY i.id
        FOR UPDATE OF i
        """
    )
    matched = [row[0] for row in cur.fetchall() if normalize_name(row[1]) == normalized_name]
    for item_id in matched:
        cur.execute(
            """
            UPDATE lista_compras_itens
            SET comprado = TRUE, preco_pago = %s, data_compra = CURRENT_DATE
            WHERE id = %s
            """,
            (price, item_id),
        )
    return len(matched)


class PgExpenseRepository:
    def create(self, **kwargs: Any) -> int:
        with txn() as cur:
            return insert_expense(cur, **kwargs)

    def record_invoice(
        self,
        *,
        lines: Sequence[InvoiceLine],
        merchant: str | None,
        spent_on: date,
        **expense: Any,
    ) -> tuple[int, int]:
        with txn() as cur:
            expense_id = insert_expense(
                cur, merchant=merchant, spent_on=spent_on, status="pendente", **expense
            )
            bought = 0
            for line in lines:
                if line.price is not None:
                    insert_price(
                        cur,
                        item_name=line.name,
                        normalized_name=line.normalized_name,
                        price=line.price,
                        merchant=merchant,
                        spent_on=spent_on,
                        expense_id=expense_id,
                    )
                bought += mark_list_items_bought(
                    cur, normalized_name=line.normalized_name, price=line.price
                )
        return expense_id, bought
