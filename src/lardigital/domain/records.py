"""Domain record writer contracts.

The pipeline never talks SQL. It writes through these narrow protocols;
`lardigital.infra.repositories` provides the Postgres implementations and
tests use in-memory fakes. Every write that can be repeated (attendance
punches, inbound message log) reports whether it actually changed state,
so callers can answer "já registrado" instead of writing twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Protocol, Sequence

# registros.evento values
AttendanceEvent = Literal["jornada", "saida_almoco", "retorno_almoco"]

# Result of a saida punch: closed the open entrada, wrote a flagged
# saida-only row, or found the day already closed.
SaidaResult = Literal["closed", "unmatched", "duplicate"]

SuggestionStatus = Literal["pendente", "em_analise", "convertida", "ignorada"]

UNMATCHED_SAIDA_NOTE = "sem entrada correspondente"


@dataclass(frozen=True)
class Actor:
    """A household member (funcionarios row)."""

    id: int
    name: str
    phone: str | None = None


class ActorRepository(Protocol):
    def list_active(self) -> list[Actor]: ...

    def create(self, *, name: str, phone: str | None) -> Actor: ...


class AttendanceRepository(Protocol):
    def record_entrada(
        self, *, actor_id: int, day: date, hhmm: str, source: str
    ) -> bool:
        """Insert the day's entrada; False if one already exists."""
        ...

    def record_saida(
        self, *, actor_id: int, day: date, hhmm: str, source: str
    ) -> SaidaResult: ...

    def record_event(
        self,
        *,
        actor_id: int,
        day: date,
        hhmm: str,
        event: AttendanceEvent,
        source: str,
    ) -> bool:
        """Insert a tagged punch (lunch out/back); False if already present."""
        ...


class MessageLogRepository(Protocol):
    def record_inbound(
        self,
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
        """Log an inbound message; False if the id was already seen."""
        ...

    def mark_processed(
        self, *, message_id: str, actor_id: int | None, text: str | None
    ) -> None: ...

    def log_chat(
        self, *, chat_id: str, direction: str, text: str, author: str | None = None
    ) -> None: ...

    def last_seen_at(self) -> datetime | None:
        """Send time of the newest logged message, for replay after outages."""
        ...


@dataclass(frozen=True)
class DocumentOwner:
    """The vehicle or person a document belongs to, as read off the document.

    Vehicles match on any of `vehicle_keys` (cleaned placa, renavam, chassi).
    People match on CPF first, then on the accent-insensitive name. When
    nothing matches a new row is created from `vehicle_fields` or name/CPF.
    """

    entity_type: Literal["veiculo", "funcionario"]
    label: str
    vehicle_keys: dict[str, str | None] = field(default_factory=dict)
    vehicle_fields: dict[str, Any] = field(default_factory=dict)
    cpf: str | None = None
    name: str = ""


@dataclass(frozen=True)
class SavedDocument:
    document_id: int
    entity_id: int | None = None
    created: bool = False


class DocumentRepository(Protocol):
    def save(
        self,
        *,
        owner: DocumentOwner | None,
        doc_type: str,
        description: str | None,
        file_path: str | None,
        extracted: dict[str, Any],
        message_id: str | None,
    ) -> SavedDocument:
        """Find or create the owner and insert the document, in one transaction."""
        ...


class DeliveryRepository(Protocol):
    def create(
        self,
        *,
        actor_id: int | None,
        received_at: datetime,
        image_path: str | None,
        recipient: str | None,
        sender: str | None,
        carrier: str | None,
        description: str | None,
        message_id: str | None,
    ) -> int: ...


@dataclass(frozen=True)
class InvoiceLine:
    """One priced line of a nota fiscal."""

    name: str
    normalized_name: str
    price: Decimal | None


class ExpenseRepository(Protocol):
    def create(
        self,
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
    ) -> int: ...

    def record_invoice(
        self,
        *,
        actor_id: int | None,
        description: str,
        amount: Decimal,
        category: str,
        merchant: str | None,
        spent_on: date,
        receipt_path: str | None,
        extracted: dict[str, Any],
        lines: Sequence[InvoiceLine],
    ) -> tuple[int, int]:
        """Insert the expense, its price history and shopping list updates.

        All of it commits together or not at all.

        Returns:
            (expense id, number of shopping list items marked bought)
        """
        ...


class SuggestionRepository(Protocol):
    def create(
        self,
        *,
        title: str,
        description: str,
        category: str | None,
        source_type: str,
        actor_id: int | None,
        sender_name: str | None,
        sender_phone: str | None,
    ) -> int: ...

    def set_status(
        self, suggestion_id: int, status: SuggestionStatus, task_id: int | None = None
    ) -> bool:
        """Move a pending suggestion to `status`; False if it was not pending."""
        ...


class TaskRepository(Protocol):
    def create(
        self,
        *,
        title: str,
        description: str | None,
        priority: str,
        source: str,
    ) -> int: ...


@dataclass
class Records:
    """Bundle of writers handed to the resolver and router."""

    actors: ActorRepository
    attendance: AttendanceRepository
    messages: MessageLogRepository
    documents: DocumentRepository
    deliveries: DeliveryRepository
    expenses: ExpenseRepository
    suggestions: SuggestionRepository
    tasks: TaskRepository
