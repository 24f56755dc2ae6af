"""In-memory stand-ins for the record writers, the channel and the classifier.

They implement the same protocols as the Postgres repositories and the
Evolution client, so router and resolver tests run without a database or
network.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

from lardigital.domain.actors import ActorDirectory
from lardigital.domain.confirmations import ConfirmationStore, PendingConfirmation
from lardigital.domain.intents import ClassifiedIntent
from lardigital.domain.memory import ConversationMemory
from lardigital.domain.records import (
    UNMATCHED_SAIDA_NOTE,
    Actor,
    DocumentOwner,
    InvoiceLine,
    Records,
    SavedDocument,
)
from lardigital.domain.resolver import ActionResolver
from lardigital.domain.text import normalize_name
from lardigital.infra.locks import KeyedLocks
from lardigital.infra.quota import HourlyQuota
from lardigital.infra.settings import EvolutionConfig, Settings
from lardigital.whatsapp.channel import EVENT_QR, EVENT_READY, ChannelError, ListenerRegistry
from lardigital.whatsapp.models import InboundMessage
from lardigital.whatsapp.router import MessageRouter
from lardigital.whatsapp.runtime import Runtime, build_runtime

# 08:30 in America/Sao_Paulo
DEFAULT_NOW = datetime(2026, 3, 10, 11, 30, tzinfo=timezone.utc)

GROUP_JID = "120363000000000000@g.us"


class FakeClock:
    def __init__(self, now: datetime = DEFAULT_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


# ----------------------------------------------------------------------
# Record writers
# ----------------------------------------------------------------------


class FakeActorRepository:
    def __init__(self, actors: list[Actor] | None = None) -> None:
        self.rows: list[Actor] = list(actors or [])
        self.list_calls = 0

    def list_active(self) -> list[Actor]:
        self.list_calls += 1
        return list(self.rows)

    def create(self, *, name: str, phone: str | None) -> Actor:
        actor = Actor(id=max((a.id for a in self.rows), default=0) + 1, name=name, phone=phone)
        self.rows.append(actor)
        return actor


class FakeAttendanceRepository:
    def __init__(self) -> None:
        self.rows: dict[tuple[int, date, str], dict[str, Any]] = {}

    def record_entrada(self, *, actor_id: int, day: date, hhmm: str, source: str) -> bool:
        row = self.rows.get((actor_id, day, "jornada"))
        if row is None:
            self.rows[(actor_id, day, "jornada")] = {
                "entrada": hhmm, "saida": None, "tipo": source, "observacao": None
            }
            return True
        if row["entrada"] is None:
            row.update(entrada=hhmm, observacao=None)
            return True
        return False

    def record_saida(self, *, actor_id: int, day: date, hhmm: str, source: str) -> str:
        row = self.rows.get((actor_id, day, "jornada"))
        if row is not None and row["entrada"] is not None and row["saida"] is None:
            row["saida"] = hhmm
            return "closed"
        if row is not None:
            return "duplicate"
        self.rows[(actor_id, day, "jornada")] = {
            "entrada": None, "saida": hhmm, "tipo": source, "observacao": UNMATCHED_SAIDA_NOTE
        }
        return "unmatched"

    def record_event(
        self, *, actor_id: int, day: date, hhmm: str, event: str, source: str
    ) -> bool:
        key = (actor_id, day, event)
        if key in self.rows:
            return False
        self.rows[key] = {"hora": hhmm, "tipo": source}
        return True

    def jornada(self, actor_id: int, day: date) -> dict[str, Any] | None:
        return self.rows.get((actor_id, day, "jornada"))


class FakeMessageLogRepository:
    def __init__(self) -> None:
        self.inbound: dict[str, dict[str, Any]] = {}
        self.chats: list[dict[str, Any]] = []

    def record_inbound(self, *, message_id: str, **fields: Any) -> bool:
        if message_id in self.inbound:
            return False
        self.inbound[message_id] = {**fields, "processed": False}
        return True

    def mark_processed(
        self, *, message_id: str, actor_id: int | None, text: str | None
    ) -> None:
        row = self.inbound[message_id]
        row.update(processed=True, actor_id=actor_id)
        if text is not None:
            row["text"] = text

    def log_chat(
        self, *, chat_id: str, direction: str, text: str, author: str | None = None
    ) -> None:
        self.chats.append(
            {"chat_id": chat_id, "direction": direction, "text": text, "author": author}
        )

    def last_seen_at(self) -> datetime | None:
        times = [row["sent_at"] for row in self.inbound.values()]
        return max(times) if times else None


class FakeDocumentRepository:
    def __init__(self) -> None:
        self.vehicles: dict[int, dict[str, Any]] = {}
        self.people: dict[int, dict[str, Any]] = {}
        self.documents: list[dict[str, Any]] = []

    def find_vehicle(
        self,
        *,
        placa: str | None = None,
        renavam: str | None = None,
        chassi: str | None = None,
    ) -> int | None:
        wanted = {"placa": placa, "renavam": renavam, "chassi": chassi}
        for vehicle_id, fields in self.vehicles.items():
            if any(value and fields.get(key) == value for key, value in wanted.items()):
                return vehicle_id
        return None

    def create_vehicle(self, *, fields: dict[str, Any]) -> int:
        vehicle_id = len(self.vehicles) + 1
        self.vehicles[vehicle_id] = dict(fields)
        return vehicle_id

    def find_person_by_cpf(self, cpf: str) -> int | None:
        for person_id, person in self.people.items():
            if person.get("cpf") == cpf:
                return person_id
        return None

    def find_person_by_name(self, normalized_name: str) -> int | None:
        for person_id, person in self.people.items():
            if normalize_name(person["name"]) == normalized_name:
                return person_id
        return None

    def create_person(self, *, name: str, cpf: str | None) -> int:
        person_id = 100 + len(self.people)
        self.people[person_id] = {"name": name, "cpf": cpf}
        return person_id

    def save(self, *, owner: DocumentOwner | None, **fields: Any) -> SavedDocument:
        entity_id, created = None, False
        if owner is not None:
            entity_id, created = self._find_or_create(owner)
        self.documents.append(
            {**fields, "entity_type": owner.entity_type if owner else None, "entity_id": entity_id}
        )
        return SavedDocument(len(self.documents), entity_id, created)

    def _find_or_create(self, owner: DocumentOwner) -> tuple[int, bool]:
        if owner.entity_type == "veiculo":
            vehicle_id = self.find_vehicle(**owner.vehicle_keys)
            if vehicle_id is not None:
                return vehicle_id, False
            return self.create_vehicle(fields=owner.vehicle_fields), True
        person_id = self.find_person_by_cpf(owner.cpf) if owner.cpf else None
        if person_id is None and owner.name:
            person_id = self.find_person_by_name(normalize_name(owner.name))
        if person_id is not None:
            return person_id, False
        name = owner.name or f"Titular CPF {owner.cpf}"
        return self.create_person(name=name, cpf=owner.cpf), True


class FakeDeliveryRepository:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    def create(self, **fields: Any) -> int:
        self.rows.append(fields)
        return len(self.rows)


class FakeExpenseRepository:
    def __init__(self, shopping_items: list[str] | None = None) -> None:
        self.expenses: list[dict[str, Any]] = []
        self.prices: list[dict[str, Any]] = []
        self.items: list[dict[str, Any]] = [
            {"name": name, "bought": False, "price": None} for name in shopping_items or []
        ]

    def create(self, **fields: Any) -> int:
        self.expenses.append(fields)
        return len(self.expenses)

    def record_invoice(self, *, lines: list[InvoiceLine], **fields: Any) -> tuple[int, int]:
        expense_id = self.create(status="pendente", **fields)
        bought = 0
        for line in lines:
            if line.price is not None:
                self.prices.append(
                    {
                        "item_name": line.name,
                        "normalized_name": line.normalized_name,
                        "price": line.price,
                        "merchant": fields["merchant"],
                        "spent_on": fields["spent_on"],
                        "expense_id": expense_id,
                    }
                )
            bought += self._mark_bought(line.normalized_name, line.price)
        return expense_id, bought

    def _mark_bought(self, normalized_name: str, price: Decimal | None) -> int:
        count = 0
        for item in self.items:
            if not item["bought"] and normalize_name(item["name"]) == normalized_name:
                item.update(bought=True, price=price)
                count += 1
        return count


class FakeSuggestionRepository:
    def __init__(self) -> None:
        self.rows: dict[int, dict[str, Any]] = {}

    def create(self, **fields: Any) -> int:
        suggestion_id = len(self.rows) + 1
        self.rows[suggestion_id] = {**fields, "status": "pendente", "task_id": None}
        return suggestion_id

    def set_status(self, suggestion_id: int, status: str, task_id: int | None = None) -> bool:
        row = self.rows.get(suggestion_id)
        if row is None or row["status"] != "pendente":
            return False
        row["status"] = status
        if task_id is not None:
            row["task_id"] = task_id
        return True


class FakeTaskRepository:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    def create(self, **fields: Any) -> int:
        self.rows.append(fields)
        return len(self.rows)


def make_records(
    actors: list[Actor] | None = None, shopping_items: list[str] | None = None
) -> Records:
    return Records(
        actors=FakeActorRepository(actors),
        attendance=FakeAttendanceRepository(),
        messages=FakeMessageLogRepository(),
        documents=FakeDocumentRepository(),
        deliveries=FakeDeliveryRepository(),
        expenses=FakeExpenseRepository(shopping_items),
        suggestions=FakeSuggestionRepository(),
        tasks=FakeTaskRepository(),
    )


class FakeConfirmationRepository:
    def __init__(self) -> None:
        self.rows: dict[int, PendingConfirmation] = {}
        self.sweeps = 0

    def replace_pending(
        self,
        *,
        actor_id: int,
        kind: str,
        subject_date: date,
        subject_time: str | None,
        payload: dict[str, Any],
        chat_id: str | None,
        created_at: datetime,
    ) -> int:
        for entry in list(self.rows.values()):
            if entry.actor_id == actor_id and entry.status == "pending":
                self.rows[entry.id] = replace(entry, status="expired", resolved_at=created_at)
        confirmation_id = len(self.rows) + 1
        self.rows[confirmation_id] = PendingConfirmation(
            id=confirmation_id,
            actor_id=actor_id,
            kind=kind,
            subject_date=subject_date,
            subject_time=subject_time,
            payload=dict(payload),
            created_at=created_at,
            chat_id=chat_id,
        )
        return confirmation_id

    def find_pending(self, actor_id: int) -> PendingConfirmation | None:
        for entry in self.rows.values():
            if entry.actor_id == actor_id and entry.status == "pending":
                return entry
        return None

    def expire(self, confirmation_id: int, *, resolved_at: datetime) -> bool:
        entry = self.rows.get(confirmation_id)
        if entry is None or entry.status != "pending":
            return False
        self.rows[confirmation_id] = replace(entry, status="expired", resolved_at=resolved_at)
        return True

    def expire_stale(self, *, cutoff: datetime, resolved_at: datetime) -> int:
        self.sweeps += 1
        count = 0
        for entry in list(self.rows.values()):
            if entry.status == "pending" and entry.created_at < cutoff:
                self.rows[entry.id] = replace(entry, status="expired", resolved_at=resolved_at)
                count += 1
        return count

    def transition(
        self,
        confirmation_id: int,
        status: str,
        *,
        resolved_at: datetime,
        fresh_after: datetime,
    ) -> PendingConfirmation | None:
        entry = self.rows.get(confirmation_id)
        if entry is None or entry.status != "pending" or entry.created_at < fresh_after:
            return None
        updated = replace(entry, status=status, resolved_at=resolved_at)
        self.rows[confirmation_id] = updated
        return updated

    def reopen(self, confirmation_id: int) -> bool:
        entry = self.rows.get(confirmation_id)
        if entry is None or entry.status != "confirmed":
            return False
        if any(
            other.actor_id == entry.actor_id and other.status == "pending"
            for other in self.rows.values()
        ):
            return False
        self.rows[confirmation_id] = replace(entry, status="pending", resolved_at=None)
        return True

    def pending(self) -> list[PendingConfirmation]:
        return [entry for entry in self.rows.values() if entry.status == "pending"]


# ----------------------------------------------------------------------
# Channel and classifier
# ----------------------------------------------------------------------


class FakeChannelClient(ListenerRegistry):
    """Scriptable channel client.

    Args:
        auto_ready: Emit "ready" during initialize (an already paired session).
        init_error: Raised from initialize when set.
    """

    def __init__(self, *, auto_ready: bool = True, init_error: Exception | None = None) -> None:
        super().__init__()
        self.auto_ready = auto_ready
        self.init_error = init_error
        self.sent: list[tuple[str, str]] = []
        self.media: dict[str, bytes] = {}
        self.history: list[InboundMessage] = []
        self.initialized = 0
        self.destroyed = False
        self.logged_out = False
        self.fail_sends = False

    async def initialize(self) -> None:
        self.initialized += 1
        if self.init_error is not None:
            raise self.init_error
        if self.auto_ready:
            await self.emit(EVENT_READY)
        else:
            await self.emit(EVENT_QR, "qr-code")

    async def destroy(self) -> None:
        self.destroyed = True

    async def logout(self) -> None:
        self.logged_out = True

    async def send_message(self, target: str, text: str) -> None:
        if self.fail_sends:
            raise ChannelError("send failed")
        self.sent.append((target, text))

    async def get_chats(self) -> list[dict[str, Any]]:
        return []

    async def fetch_messages_since(self, since: datetime) -> list[InboundMessage]:
        return [m for m in self.history if m.sent_at >= since]

    async def download_media(self, message: InboundMessage) -> bytes | None:
        return self.media.get(message.message_id)


class FakeClassifier:
    """Returns scripted intents keyed by message text.

    Tracks how many classify calls overlap so tests can assert per-actor
    serialization.
    """

    def __init__(
        self,
        intents: dict[str, ClassifiedIntent] | None = None,
        *,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.intents = dict(intents or {})
        self.delay = delay
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.active = 0
        self.max_active = 0

    async def classify(
        self,
        text: str | None,
        media_kind: str | None,
        sender_context: str | None,
        known_actor_names: Any,
        conversation_context: str | None,
        image: bytes | None = None,
        image_mime: str | None = None,
    ) -> ClassifiedIntent:
        self.calls.append(
            {
                "text": text,
                "media_kind": media_kind,
                "sender": sender_context,
                "context": conversation_context,
                "image": image,
            }
        )
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return self.intents.get(text or "", ClassifiedIntent.empty())
        finally:
            self.active -= 1


class FakeTranscriber:
    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls = 0

    async def transcribe(self, audio: bytes, mime_type: str | None = None) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


class FakeAlerts:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def notify(self, alert_type: str, subject: str, body: str = "") -> bool:
        self.sent.append((alert_type, subject))
        return True

    def types(self) -> list[str]:
        return [alert_type for alert_type, _ in self.sent]


# ----------------------------------------------------------------------
# Builders
# ----------------------------------------------------------------------


def intent(kind: str, confidence: int, **fields: Any) -> ClassifiedIntent:
    return ClassifiedIntent(kind=kind, confidence=confidence, parse_mode="structured", **fields)


_counter = {"value": 0}


def message(
    text: str | None,
    *,
    phone: str = "5511987654321",
    name: str | None = "Maria Silva",
    message_id: str | None = None,
    sent_at: datetime = DEFAULT_NOW,
    chat_id: str = GROUP_JID,
    **fields: Any,
) -> InboundMessage:
    if message_id is None:
        _counter["value"] += 1
        message_id = f"MSG{_counter['value']:06d}"
    return InboundMessage(
        message_id=message_id,
        chat_id=chat_id,
        sender_jid=f"{phone}@s.whatsapp.net",
        sender_phone=phone,
        sender_name=name,
        text=text,
        sent_at=sent_at,
        **fields,
    )


MARIA = Actor(id=1, name="Maria Silva", phone="11987654321")
JOAO = Actor(id=2, name="João Souza", phone="11912345678")


@dataclass
class Harness:
    records: Records
    confirmations_repo: FakeConfirmationRepository
    confirmations: ConfirmationStore
    resolver: ActionResolver
    classifier: FakeClassifier
    channel: FakeChannelClient
    clock: FakeClock
    router: MessageRouter
    directory: ActorDirectory
    memory: ConversationMemory
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def replies(self) -> list[str]:
        return [text for _, text in self.channel.sent]


def build_harness(
    intents: dict[str, ClassifiedIntent] | None = None,
    *,
    actors: list[Actor] | None = None,
    classifier: FakeClassifier | None = None,
    channel: FakeChannelClient | None = None,
    speech_limit: int = 20,
    vision_limit: int = 30,
    transcriber: Any = None,
    classifier_timeout: float = 5.0,
    shopping_items: list[str] | None = None,
    connected: bool = True,
    now: datetime = DEFAULT_NOW,
) -> Harness:
    records = make_records([MARIA, JOAO] if actors is None else actors, shopping_items)
    clock = FakeClock(now)
    repo = FakeConfirmationRepository()
    store = ConfirmationStore(repo, clock=clock)
    resolver = ActionResolver(records, store)
    classifier = classifier or FakeClassifier(intents)
    channel = channel or FakeChannelClient()
    directory = ActorDirectory(records.actors)
    memory = ConversationMemory(clock=clock)
    channel_getter: Callable[[], FakeChannelClient | None] = (
        (lambda: channel) if connected else (lambda: None)
    )
    router = MessageRouter(
        records=records,
        confirmations=store,
        resolver=resolver,
        classifier=classifier,
        directory=directory,
        memory=memory,
        locks=KeyedLocks(),
        channel=channel_getter,
        speech_quota=HourlyQuota("speech", speech_limit),
        vision_quota=HourlyQuota("vision", vision_limit),
        transcriber=transcriber,
        classifier_timeout=classifier_timeout,
        clock=clock,
    )
    return Harness(
        records=records,
        confirmations_repo=repo,
        confirmations=store,
        resolver=resolver,
        classifier=classifier,
        channel=channel,
        clock=clock,
        router=router,
        directory=directory,
        memory=memory,
    )


# ----------------------------------------------------------------------
# Runtime (API and wiring tests)
# ----------------------------------------------------------------------

WEBHOOK_SECRET = "s3cret"


def evolution_config(secret: str = WEBHOOK_SECRET) -> EvolutionConfig:
    return EvolutionConfig(
        base_url="http://evolution.test",
        instance="casa",
        api_key="test-api-key",
        webhook_secret=secret,
    )


def build_test_runtime(
    intents: dict[str, ClassifiedIntent] | None = None,
    *,
    enabled: bool = True,
    secret: str = WEBHOOK_SECRET,
    group_id: str = GROUP_JID,
    client_factory: Callable[[], Any] | None = None,
    actors: list[Actor] | None = None,
) -> tuple[Runtime, Records, FakeAlerts]:
    records = make_records([MARIA, JOAO] if actors is None else actors)
    alerts = FakeAlerts()
    settings = Settings(
        whatsapp_enabled=enabled,
        group_id=group_id,
        evolution=evolution_config(secret),
    )
    runtime = build_runtime(
        settings,
        records=records,
        confirmation_repository=FakeConfirmationRepository(),
        classifier=FakeClassifier(intents),
        client_factory=client_factory or FakeChannelClient,
        alerts=alerts,
    )
    return runtime, records, alerts
