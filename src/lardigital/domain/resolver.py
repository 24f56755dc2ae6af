"""Action resolver: turns decided or confirmed intents into domain records.

Every branch returns exactly one Outcome, which the router renders as the
single reply for the message. Effects are idempotent:

- attendance writes check the actor's day first ("já registrado" instead of
  a second entrada);
- a pending confirmation is applied only by the caller that wins its
  pending -> confirmed transition, so a duplicate "sim" is a no-op;
- documents, deliveries and expenses are only ever written once per
  confirmation or per inbound message id.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from lardigital.domain.confirmations import ConfirmationStore, PendingConfirmation
from lardigital.domain.confirmation_parser import ReplyDecision
from lardigital.domain.records import DocumentOwner, InvoiceLine, Records
from lardigital.domain.text import normalize_name, parse_amount, parse_date
from lardigital.infra.time import utc_now
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context
from lardigital.whatsapp.templates import EVENT_LABELS

logger = get_logger(__name__)

SOURCE = "whatsapp"

DOCUMENT_TYPES = frozenset(
    {
        "crlv",
        "rg",
        "cpf",
        "cnh",
        "comprovante_endereco",
        "apolice_seguro",
        "contrato",
        "holerite",
        "outro",
    }
)

VEHICLE_KEYS = ("placa", "renavam", "chassi")
VEHICLE_FIELDS = ("placa", "renavam", "chassi", "marca", "modelo", "ano", "cor")

SUGGESTION_TITLE_MAX = 80

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class Outcome:
    """Result of one resolver branch.

    Attributes:
        reply: Template key of the acknowledgment to send.
        params: Template params.
        applied: True when a domain record was written.
        record_id: Id of the main record written, when there is one.
    """

    reply: str
    params: dict[str, Any] = field(default_factory=dict)
    applied: bool = False
    record_id: int | None = None


@dataclass(frozen=True)
class ActionRequest:
    """Everything needed to apply (or ask about) one effect.

    Attributes:
        payload: Extracted data plus message context (`extracted`,
            `media_path`, `message_id`, `sent_at`, `text`, `summary`).
            Stored verbatim on pending confirmations, so it must stay
            JSON-serializable.
    """

    actor_id: int
    actor_name: str
    kind: str
    day: date
    hhmm: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


def _first_name(name: str) -> str:
    return name.split(" ", 1)[0] if name else ""


def _money(amount: Decimal | None) -> str:
    if amount is None:
        return ""
    return f"R$ {amount:.2f}".replace(".", ",")


def _clean_id(value: Any) -> str | None:
    if not value:
        return None
    cleaned = _NON_ALNUM.sub("", str(value)).upper()
    return cleaned or None


def _clean_cpf(value: Any) -> str | None:
    if not value:
        return None
    digits = _NON_DIGITS.sub("", str(value))
    return digits if len(digits) == 11 else None


def document_type(value: Any) -> str:
    candidate = normalize_name(str(value or "")).replace(" ", "_")
    return candidate if candidate in DOCUMENT_TYPES else "outro"


def _document_owner(data: dict[str, Any]) -> DocumentOwner | None:
    """Read who a document belongs to: a vehicle first, else a person."""
    keys = {key: _clean_id(data.get(key)) for key in VEHICLE_KEYS}
    if any(keys.values()):
        fields = {key: data.get(key) for key in VEHICLE_FIELDS if data.get(key)}
        fields.update({key: value for key, value in keys.items() if value})
        return DocumentOwner(
            entity_type="veiculo",
            label=keys["placa"] or data.get("modelo") or "veículo",
            vehicle_keys=keys,
            vehicle_fields=fields,
        )

    cpf = _clean_cpf(data.get("cpf"))
    name = (data.get("nome") or "").strip()
    if not cpf and not name:
        return None
    return DocumentOwner(
        entity_type="funcionario", label=name or "titular", cpf=cpf, name=name
    )


def suggestion_title(text: str | None, summary: str | None = None) -> str:
    title = (summary or text or "").strip().split("\n", 1)[0]
    if len(title) > SUGGESTION_TITLE_MAX:
        title = title[: SUGGESTION_TITLE_MAX - 1].rstrip() + "…"
    return title or "Sugestão via WhatsApp"


class ActionResolver:
    """Applies effects against the domain record writers."""

    def __init__(self, records: Records, confirmations: ConfirmationStore) -> None:
        self._records = records
        self._confirmations = confirmations

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def apply(self, request: ActionRequest) -> Outcome:
        """Write the effect for an auto-applied or confirmed intent."""
        kind = request.kind
        if kind == "entrada":
            outcome = self._apply_entrada(request)
        elif kind == "saida":
            outcome = self._apply_saida(request)
        elif kind in ("saida_almoco", "retorno_almoco"):
            outcome = self._apply_lunch(request)
        elif kind == "document":
            outcome = self._apply_document(request)
        elif kind == "delivery":
            outcome = self._apply_delivery(request)
        elif kind == "invoice":
            outcome = self._apply_invoice(request)
        elif kind == "receipt":
            outcome = self._apply_receipt(request)
        elif kind == "suggestion":
            outcome = self._convert_suggestion(request)
        else:
            raise ValueError(f"Cannot apply intent kind {kind!r}")

        logger.info(
            "effect applied" if outcome.applied else "effect skipped",
            extra={
                "extra_fields": safe_log_context(
                    actor_id=request.actor_id,
                    kind=kind,
                    reply=outcome.reply,
                    record_id=outcome.record_id,
                )
            },
        )
        return outcome

    def request_confirmation(self, request: ActionRequest, *, chat_id: str | None) -> Outcome:
        """Open a pending confirmation and return the question to ask."""
        self._confirmations.create(
            actor_id=request.actor_id,
            kind=request.kind,
            subject_date=request.day,
            subject_time=request.hhmm,
            payload=request.payload,
            chat_id=chat_id,
        )
        return self._question(request)

    def record_suggestion(
        self,
        *,
        actor_id: int,
        actor_name: str | None,
        sender_phone: str | None,
        text: str,
        summary: str | None,
        source_type: str,
        day: date,
        ask: bool,
        chat_id: str | None,
        category: str | None = None,
    ) -> Outcome:
        """Store a suggestion; optionally ask whether to turn it into a task."""
        title = suggestion_title(text, summary)
        suggestion_id = self._records.suggestions.create(
            title=title,
            description=text,
            category=category,
            source_type=source_type,
            actor_id=actor_id or None,
            sender_name=actor_name,
            sender_phone=sender_phone,
        )
        logger.info(
            "suggestion recorded",
            extra={
                "extra_fields": safe_log_context(
                    actor_id=actor_id, suggestion_id=suggestion_id, ask=ask
                )
            },
        )
        if not ask:
            return Outcome("sugestao_registrada", applied=True, record_id=suggestion_id)

        self._confirmations.create(
            actor_id=actor_id,
            kind="suggestion",
            subject_date=day,
            payload={
                "suggestion_id": suggestion_id,
                "title": title,
                "text": text,
                "actor_name": actor_name,
            },
            chat_id=chat_id,
        )
        return Outcome("sugestao_pergunta", applied=True, record_id=suggestion_id)

    def answer(
        self,
        entry: PendingConfirmation,
        decision: ReplyDecision,
        *,
        actor_name: str,
    ) -> Outcome | None:
        """Resolve a pending confirmation and apply it when confirmed.

        Returns:
            The outcome to acknowledge, or None when another caller already
            resolved the entry (or it went stale) and nothing may be applied.

        Raises:
            Whatever the writer raised. The entry is reopened first, so the
            next "sim" retries the effect.
        """
        if decision == "none":
            raise ValueError("A 'none' reply does not answer a confirmation")

        resolved = self._confirmations.resolve(entry.id, decision)
        if resolved is None:
            return None

        if decision == "denied":
            return self._deny(resolved)

        request = ActionRequest(
            actor_id=resolved.actor_id,
            actor_name=actor_name,
            kind=resolved.kind,
            day=resolved.subject_date,
            hhmm=resolved.subject_time,
            payload=resolved.payload,
        )
        try:
            return self.apply(request)
        except Exception:
            self._confirmations.reopen(resolved)
            raise

    # ------------------------------------------------------------------
    # Questions and denials
    # ------------------------------------------------------------------

    def _question(self, request: ActionRequest) -> Outcome:
        kind = request.kind
        data = request.payload.get("extracted") or {}

        if kind in EVENT_LABELS:
            return Outcome(
                "confirmar_ponto",
                {"evento": EVENT_LABELS[kind].lower(), "hora": request.hhmm},
            )
        if kind == "document":
            return Outcome("confirmar_documento", {"tipo": document_type(data.get("tipo"))})
        if kind == "delivery":
            recipient = data.get("destinatario")
            return Outcome(
                "confirmar_entrega", {"detalhe": f" para {recipient}" if recipient else ""}
            )
        if kind in ("invoice", "receipt"):
            merchant = data.get("estabelecimento")
            amount = parse_amount(data.get("valor_total") or data.get("valor"))
            detalhe = ""
            if merchant:
                detalhe += f" de {merchant}"
            if amount is not None:
                detalhe += f" ({_money(amount)})"
            key = "confirmar_nota" if kind == "invoice" else "confirmar_comprovante"
            return Outcome(key, {"detalhe": detalhe})
        raise ValueError(f"No confirmation question for intent kind {kind!r}")

    def _deny(self, entry: PendingConfirmation) -> Outcome:
        # Denied suggestions are archived; every other denial only acknowledges.
        if entry.kind == "suggestion":
            suggestion_id = entry.payload.get("suggestion_id")
            if suggestion_id:
                self._records.suggestions.set_status(int(suggestion_id), "ignorada")
            return Outcome("sugestao_arquivada", record_id=suggestion_id)
        logger.info(
            "confirmation denied",
            extra={
                "extra_fields": safe_log_context(
                    confirmation_id=entry.id, actor_id=entry.actor_id, kind=entry.kind
                )
            },
        )
        return Outcome("cancelado")

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------

    def _apply_entrada(self, request: ActionRequest) -> Outcome:
        created = self._records.attendance.record_entrada(
            actor_id=request.actor_id, day=request.day, hhmm=request.hhmm, source=SOURCE
        )
        if not created:
            return Outcome("ponto_ja_registrado", {"evento": EVENT_LABELS["entrada"]})
        return Outcome(
            "entrada_registrada",
            {"hora": request.hhmm, "nome": _first_name(request.actor_name)},
            applied=True,
        )

    def _apply_saida(self, request: ActionRequest) -> Outcome:
        result = self._records.attendance.record_saida(
            actor_id=request.actor_id, day=request.day, hhmm=request.hhmm, source=SOURCE
        )
        if result == "duplicate":
            return Outcome("ponto_ja_registrado", {"evento": EVENT_LABELS["saida"]})
        if result == "unmatched":
            logger.warning(
                "saida without entrada",
                extra={"extra_fields": safe_log_context(actor_id=request.actor_id)},
            )
            return Outcome("saida_sem_entrada", {"hora": request.hhmm}, applied=True)
        return Outcome(
            "saida_registrada",
            {"hora": request.hhmm, "nome": _first_name(request.actor_name)},
            applied=True,
        )

    def _apply_lunch(self, request: ActionRequest) -> Outcome:
        created = self._records.attendance.record_event(
            actor_id=request.actor_id,
            day=request.day,
            hhmm=request.hhmm,
            event=request.kind,
            source=SOURCE,
        )
        if not created:
            return Outcome("ponto_ja_registrado", {"evento": EVENT_LABELS[request.kind]})
        key = (
            "saida_almoco_registrada"
            if request.kind == "saida_almoco"
            else "retorno_almoco_registrado"
        )
        return Outcome(key, {"hora": request.hhmm}, applied=True)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _apply_document(self, request: ActionRequest) -> Outcome:
        data = request.payload.get("extracted") or {}
        doc_type = document_type(data.get("tipo"))
        owner = _document_owner(data)

        saved = self._records.documents.save(
            owner=owner,
            doc_type=doc_type,
            description=data.get("descricao") or request.payload.get("summary"),
            file_path=request.payload.get("media_path"),
            extracted=data,
            message_id=request.payload.get("message_id"),
        )

        vinculo = ""
        if owner is not None:
            vinculo = f" no cadastro de {owner.label}"
            if saved.created:
                vinculo += " (cadastro novo)"
        return Outcome(
            "documento_salvo",
            {"tipo": doc_type, "vinculo": vinculo},
            applied=True,
            record_id=saved.document_id,
        )

    # ------------------------------------------------------------------
    # Deliveries and expenses
    # ------------------------------------------------------------------

    def _apply_delivery(self, request: ActionRequest) -> Outcome:
        data = request.payload.get("extracted") or {}
        delivery_id = self._records.deliveries.create(
            actor_id=request.actor_id or None,
            received_at=self._sent_at(request),
            image_path=request.payload.get("media_path"),
            recipient=data.get("destinatario"),
            sender=data.get("remetente"),
            carrier=data.get("transportadora"),
            description=data.get("descricao") or request.payload.get("summary"),
            message_id=request.payload.get("message_id"),
        )
        return Outcome("entrega_registrada", applied=True, record_id=delivery_id)

    def _apply_invoice(self, request: ActionRequest) -> Outcome:
        data = request.payload.get("extracted") or {}
        merchant = data.get("estabelecimento")

        items = [item for item in data.get("itens") or [] if isinstance(item, dict)]
        prices = [parse_amount(item.get("preco") or item.get("valor")) for item in items]
        total = parse_amount(data.get("valor_total") or data.get("valor"))
        if total is None:
            total = sum((p for p in prices if p is not None), Decimal("0"))

        lines = []
        for item, price in zip(items, prices):
            name = (item.get("nome") or "").strip()
            normalized = normalize_name(name)
            if normalized:
                lines.append(InvoiceLine(name=name, normalized_name=normalized, price=price))

        expense_id, bought = self._records.expenses.record_invoice(
            actor_id=request.actor_id or None,
            description=f"Nota fiscal {merchant}" if merchant else "Nota fiscal via WhatsApp",
            amount=total,
            category=data.get("categoria") or "mercado",
            merchant=merchant,
            spent_on=parse_date(data.get("data")) or request.day,
            receipt_path=request.payload.get("media_path"),
            extracted=data,
            lines=lines,
        )

        return Outcome(
            "nota_registrada",
            {"itens": len(items), "comprados": bought},
            applied=True,
            record_id=expense_id,
        )

    def _apply_receipt(self, request: ActionRequest) -> Outcome:
        data = request.payload.get("extracted") or {}
        merchant = data.get("estabelecimento")
        amount = parse_amount(data.get("valor") or data.get("valor_total"))
        expense_id = self._records.expenses.create(
            actor_id=request.actor_id or None,
            description=(
                data.get("descricao")
                or (f"Comprovante {merchant}" if merchant else "Comprovante via WhatsApp")
            ),
            amount=amount if amount is not None else Decimal("0"),
            category=data.get("categoria") or "outros",
            merchant=merchant,
            spent_on=parse_date(data.get("data")) or request.day,
            receipt_path=request.payload.get("media_path"),
            extracted=data,
            status="pendente",
        )
        return Outcome("comprovante_registrado", applied=True, record_id=expense_id)

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def _convert_suggestion(self, request: ActionRequest) -> Outcome:
        payload = request.payload
        title = payload.get("title") or suggestion_title(payload.get("text"))
        author = payload.get("actor_name") or request.actor_name
        description = payload.get("text") or ""
        if author:
            description = f"{description}\n\nSugestão de {author} via WhatsApp".strip()

        task_id = self._records.tasks.create(
            title=title,
            description=description,
            priority="media",
            source=SOURCE,
        )
        suggestion_id = payload.get("suggestion_id")
        if suggestion_id:
            self._records.suggestions.set_status(
                int(suggestion_id), "convertida", task_id=task_id
            )
        return Outcome("tarefa_criada", {"titulo": title}, applied=True, record_id=task_id)

    @staticmethod
    def _sent_at(request: ActionRequest) -> datetime:
        raw = request.payload.get("sent_at")
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            try:
                return datetime.fromisoformat(raw)
            except ValueError:
                pass
        return utc_now()
