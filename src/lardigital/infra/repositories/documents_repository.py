"""Documents repository - documentos plus the vehicles and people they attach to.

Uses raw SQL with psycopg2 (no ORM).
Identifier columns (placa, renavam, chassi) are compared after stripping
punctuation and upper-casing, the same cleaning the resolver applies.
People matched by a document are funcionarios rows; people created from
a document are stored 'inativo' so they never become message senders.
The owner lookup, any new owner row and the document itself share one
transaction.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from lardigital.domain.records import DocumentOwner, SavedDocument
from lardigital.domain.text import normalize_name
from lardigital.infra.db import txn

VEHICLE_COLUMNS = ("placa", "renavam", "chassi", "marca", "modelo", "ano", "cor")


def select_vehicle(
    cur: PgCursor,
    *,
    placa: str | None = None,
    renavam: str | None = None,
    chassi: str | None = None,
) -> int | None:
    conditions: list[str] = []
    params: list[str] = []
    for column, value in (("placa", placa), ("renavam", renavam), ("chassi", chassi)):
        if value:
            conditions.append(f"UPPER(regexp_replace({column}, '[^A-Za-z0-9]', '', 'g')) = %s")
            params.append(value.upper())
    if not conditions:
        return None

    cur.execute(
        f"SELECT id FROM veiculos WHERE {' OR '.join(conditions)} ORDER BY id LIMIT 1",
        params,
    )
    row = cur.fetchone()
    return row[0] if row else None


def insert_vehicle(cur: PgCursor, *, fields: dict[str, Any]) -> int:
    columns = [column for column in VEHICLE_COLUMNS if fields.get(column) is not None]
    if not columns:
        raise ValueError("Vehicle needs at least one known field")
    placeholders = ", ".join(["%s"] * len(columns))
    cur.execute(
        f"INSERT INTO veiculos ({', '.join(columns)}) VALUES ({placeholders}) RETURNING id",
        [str(fields[column]) for column in columns],
    )
    return cur.fetchone()[0]


def select_person_by_cpf(cur: PgCursor, cpf: str) -> int | None:
    cur.execute(
        """
        SELECT id FROM funcionarios
        WHERE regexp_replace(cpf, '\\D', '', 'g') = %s
        ORDER BY id
        LIMIT 1
        """,
        (cpf,),
    )
    row = cur.fetchone()
    return row[0] if row else None


def select_person_by_name(cur: PgCursor, normalized_name: str) -> int | None:
    """Match on the accent/case-insensitive name, compared in Python."""
    cur.execute("SELECT id, nome FROM funcionarios ORDER BY id")
    for person_id, name in cur.fetchall():
        if normalize_name(name) == normalized_name:
            return person_id
    return None


def insert_person(cur: PgCursor, *, name: str, cpf: str | None) -> int:
    cur.execute(
        """
        INSERT INTO funcionarios (nome, cpf, status, criado_via)
        VALUES (%s, %s, 'inativo', 'whatsapp')
        RETURNING id
        """,
        (name, cpf),
    )
    return cur.fetchone()[0]


def insert_document(
    cur: PgCursor,
    *,
    doc_type: str,
    description: str | None,
    entity_type: str | None,
    entity_id: int | None,
    file_path: str | None,
    extracted: dict[str, Any],
    message_id: str | None,
) -> int:
    cur.execute(
        """
        INSERT INTO documentos (
            tipo, descricao, entidade_tipo, entidade_id, arquivo_path,
            dados_extraidos, enviado_por_whatsapp, whatsapp_message_id
        )
        VALUES (%s, %s, %s, %s, %s, %s, TRUE, %s)
        RETURNING id
        """,
        (doc_type, description, entity_type, entity_id, file_path, Json(extracted), message_id),
    )
    return cur.fetchone()[0]


def find_or_create_owner(cur: PgCursor, owner: DocumentOwner) -> tuple[int, bool]:
    """Returns (entity id, created)."""
    if owner.entity_type == "veiculo":
        vehicle_id = select_vehicle(cur, **owner.vehicle_keys)
        if vehicle_id is not None:
            return vehicle_id, False
        return insert_vehicle(cur, fields=owner.vehicle_fields), True

    person_id = select_person_by_cpf(cur, owner.cpf) if owner.cpf else None
    if person_id is None and owner.name:
        person_id = select_person_by_name(cur, normalize_name(owner.name))
    if person_id is not None:
        return person_id, False
    name = owner.name or f"Titular CPF {owner.cpf}"
    return insert_person(cur, name=name, cpf=owner.cpf), True


class PgDocumentRepository:
    def save(self, *, owner: DocumentOwner | None, **document: Any) -> SavedDocument:
        with txn() as cur:
            entity_id, created = None, False
            if owner is not None:
                entity_id, created = find_or_create_owner(cur, owner)
            document_id = insert_document(
                cur,
                entity_type=owner.entity_type if owner else None,
                entity_id=entity_id,
                **document,
            )
        return SavedDocument(document_id=document_id, entity_id=entity_id, created=created)
