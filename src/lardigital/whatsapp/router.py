"""Message router: the inbound pipeline for one chat message.

    dedupe -> resolve actor -> [per-actor lock:
        media (download, quota, transcription)
        -> pending confirmation answer?  -> resolve + apply
        -> classify (bounded)            -> decide -> apply | ask | suggest
    ] -> exactly one reply -> conversation memory -> mark processed

`handle` never raises: every failure is logged with actor, message id and
kind, so one bad message cannot affect the next one. Store and writer calls
are blocking psycopg2 work and run in worker threads via `asyncio.to_thread`
so a slow database never stalls other actors on the event loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Literal, Protocol, Sequence

from lardigital.ai.classifier import ClassifierError
from lardigital.ai.speech import SpeechTranscriber, TranscriptionError
from lardigital.domain.actors import ActorDirectory
from lardigital.domain.confirmation_parser import parse_confirmation_reply
from lardigital.domain.confirmations import ConfirmationStore
from lardigital.domain.intents import ClassifiedIntent
from lardigital.domain.memory import ConversationMemory
from lardigital.domain.policy import Decision, decide
from lardigital.domain.records import Actor, Records
from lardigital.domain.resolver import ActionRequest, ActionResolver, Outcome
from lardigital.infra.locks import KeyedLocks
from lardigital.infra.media import store_media
from lardigital.infra.quota import HourlyQuota, QuotaExceededError
from lardigital.infra.time import local_date, local_hhmm, utc_now
from lardigital.observability.correlation import correlation_scope
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import id_prefix, safe_log_context

from .channel import ChannelClient, ChannelError
from .models import InboundMessage
from .templates import SUBJECT_LABELS, render

logger = get_logger(__name__)

# Replay never looks further back than this, even after a long outage
REPLAY_MAX_LOOKBACK = timedelta(hours=24)

RouteStatus = Literal["processed", "duplicate", "skipped", "failed"]

_SOURCE_TYPES = {"audio": "audio", "image": "imagem", "document": "documento"}


class Classifier(Protocol):
    async def classify(
        self,
        text: str | None,
        media_kind: str | None,
        sender_context: str | None,
        known_actor_names: Sequence[str],
        conversation_context: str | None,
        image: bytes | None = None,
        image_mime: str | None = None,
    ) -> ClassifiedIntent: ...


@dataclass(frozen=True)
class RouteResult:
    status: RouteStatus
    reply: str | None = None
    kind: str | None = None


@dataclass
class _Turn:
    """Mutable state of one message while it moves through the pipeline."""

    message: InboundMessage
    actor: Actor | None
    text: str | None = None
    media: bytes | None = None
    kind: str | None = None

    @property
    def actor_id(self) -> int:
        return self.actor.id if self.actor else 0

    @property
    def actor_name(self) -> str:
        if self.actor:
            return self.actor.name
        return self.message.sender_name or ""


class MessageRouter:
    """Wires classifier, confirmation store and resolver for each message.

    Args:
        channel: Returns the live channel client (None while disconnected).
        classifier_timeout: Upper bound for one classifier call, seconds.
        media_dir: Where downloaded media is stored; None disables storage.
        clock: Injected for tests.
    """

    def __init__(
        self,
        *,
        records: Records,
        confirmations: ConfirmationStore,
        resolver: ActionResolver,
        classifier: Classifier,
        directory: ActorDirectory,
        memory: ConversationMemory,
        locks: KeyedLocks,
        channel: Callable[[], ChannelClient | None],
        speech_quota: HourlyQuota,
        vision_quota: HourlyQuota,
        transcriber: SpeechTranscriber | None = None,
        classifier_timeout: float = 20.0,
        media_dir: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._records = records
        self._confirmations = confirmations
        self._resolver = resolver
        self._classifier = classifier
        self._directory = directory
        self._memory = memory
        self._locks = locks
        self._channel = channel
        self._speech_quota = speech_quota
        self._vision_quota = vision_quota
        self._transcriber = transcriber
        self._classifier_timeout = classifier_timeout
        self._media_dir = media_dir
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def handle(self, message: InboundMessage) -> RouteResult:
        """Process one inbound message. Never raises."""
        with correlation_scope():
            turn: _Turn | None = None
            try:
                if message.from_me:
                    return RouteResult("skipped")
                if not await asyncio.to_thread(self._log_inbound, message):
                    logger.info(
                        "duplicate message ignored",
                        extra={"extra_fields": self._log_ctx(message)},
                    )
                    return RouteResult("duplicate")

                actor = await asyncio.to_thread(
                    self._directory.resolve,
                    phone=message.sender_phone,
                    name=message.sender_name,
                )
                turn = _Turn(message=message, actor=actor, text=message.text)
                lock_key = f"actor:{actor.id}" if actor else f"sender:{message.sender_jid}"

                async with self._locks.hold(lock_key):
                    reply = await self._process(turn)

                await asyncio.to_thread(
                    self._records.messages.mark_processed,
                    message_id=message.message_id,
                    actor_id=turn.actor.id if turn.actor else None,
                    text=turn.text,
                )
                return RouteResult("processed", reply=reply, kind=turn.kind)
            except Exception:
                logger.exception(
                    "message pipeline failed",
                    extra={
                        "extra_fields": self._log_ctx(
                            message,
                            actor_id=turn.actor_id if turn else None,
                            kind=turn.kind if turn else None,
                        )
                    },
                )
                return RouteResult("failed", kind=turn.kind if turn else None)

    async def replay_missed(self) -> int:
        """Silently process messages that arrived while disconnected.

        Returns:
            Number of messages processed. Failures are logged per message and
            never abort the batch.
        """
        client = self._channel()
        if client is None:
            return 0

        now = self._clock()
        last_seen = await asyncio.to_thread(self._records.messages.last_seen_at)
        since = last_seen or now - REPLAY_MAX_LOOKBACK
        since = max(since, now - REPLAY_MAX_LOOKBACK)
        try:
            messages = await client.fetch_messages_since(since)
        except ChannelError:
            logger.exception("replay fetch failed")
            return 0

        processed = 0
        for message in messages:
            result = await self.handle(message.as_silent())
            if result.status == "processed":
                processed += 1
        logger.info(
            "missed messages replayed",
            extra={
                "extra_fields": safe_log_context(fetched=len(messages), processed=processed)
            },
        )
        return processed

    async def send_text(self, chat_id: str, text: str) -> bool:
        """Send one outbound message; failures are logged, never raised."""
        client = self._channel()
        if client is None:
            logger.warning(
                "reply dropped: channel not connected",
                extra={"extra_fields": safe_log_context(chat=id_prefix(chat_id, 6))},
            )
            return False
        try:
            await client.send_message(chat_id, text)
        except ChannelError:
            logger.exception(
                "reply send failed",
                extra={"extra_fields": safe_log_context(chat=id_prefix(chat_id, 6))},
            )
            return False
        await asyncio.to_thread(
            self._records.messages.log_chat, chat_id=chat_id, direction="out", text=text
        )
        return True

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _process(self, turn: _Turn) -> str | None:
        message = turn.message
        context = self._memory.render(message.chat_id)

        try:
            outcome = await self._prepare_media(turn)
            if outcome is None:
                outcome = await asyncio.to_thread(self._answer_pending, turn)
            if outcome is None:
                outcome = await self._classify_and_act(turn, context)
        except Exception:
            # Still one reply per message, so the sender knows to try again
            if not message.silent:
                await self.send_text(message.chat_id, render("erro_registro", {}))
            raise

        reply = None
        if outcome is not None and not message.silent:
            reply = render(outcome.reply, outcome.params)
            await self.send_text(message.chat_id, reply)

        if turn.text:
            self._memory.append(message.chat_id, "user", turn.text, author=turn.actor_name)
        if reply:
            self._memory.append(message.chat_id, "bot", reply)
        return reply

    async def _prepare_media(self, turn: _Turn) -> Outcome | None:
        """Download media, enforce quotas, transcribe audio.

        Returns an Outcome only when processing must stop here (quota
        exhausted, unintelligible audio).
        """
        message = turn.message
        if message.media_kind is None:
            return None

        try:
            if message.media_kind == "audio":
                self._speech_quota.acquire()
            elif message.media_kind == "image":
                self._vision_quota.acquire()
        except QuotaExceededError as e:
            turn.kind = "quota"
            logger.warning(
                "media quota exhausted",
                extra={"extra_fields": self._log_ctx(message, quota=e.name)},
            )
            if message.media_kind == "audio":
                return Outcome("limite_audio")
            return Outcome("limite_imagem")

        turn.media = await self._download(message)
        if turn.media is not None and self._media_dir:
            path = await asyncio.to_thread(
                store_media, self._media_dir, message.message_id, turn.media, message.media_mime
            )
            turn.message = message = message.with_media_path(path)

        if message.media_kind == "audio":
            if turn.media is None or self._transcriber is None:
                turn.kind = "audio"
                return Outcome("audio_nao_entendido")
            try:
                transcript = await self._transcriber.transcribe(turn.media, message.media_mime)
            except TranscriptionError:
                logger.warning(
                    "audio transcription failed",
                    extra={"extra_fields": self._log_ctx(message)},
                )
                turn.kind = "audio"
                return Outcome("audio_nao_entendido")
            turn.text = transcript
        return None

    async def _download(self, message: InboundMessage) -> bytes | None:
        client = self._channel()
        if client is None:
            return None
        try:
            return await client.download_media(message)
        except ChannelError:
            logger.warning(
                "media download failed",
                extra={"extra_fields": self._log_ctx(message)},
            )
            return None

    def _answer_pending(self, turn: _Turn) -> Outcome | None:
        if turn.message.silent or turn.actor is None or not turn.text:
            return None
        entry = self._confirmations.get_pending(turn.actor.id)
        if entry is None:
            return None
        answer = parse_confirmation_reply(turn.text)
        if answer == "none":
            return None

        turn.kind = entry.kind
        outcome = self._resolver.answer(entry, answer, actor_name=turn.actor.name)
        if outcome is None:
            logger.info(
                "confirmation already resolved",
                extra={
                    "extra_fields": self._log_ctx(
                        turn.message, actor_id=turn.actor.id, confirmation_id=entry.id
                    )
                },
            )
        return outcome

    async def _classify(self, turn: _Turn, context: str) -> ClassifiedIntent:
        message = turn.message
        image = turn.media if message.media_kind == "image" else None
        if not turn.text and image is None:
            return ClassifiedIntent.empty()

        if turn.actor:
            sender = turn.actor.name
        else:
            sender = f"{message.sender_name or 'desconhecido'} (não cadastrado)"
        known_names = await asyncio.to_thread(self._directory.known_names)
        try:
            return await asyncio.wait_for(
                self._classifier.classify(
                    turn.text,
                    message.media_kind,
                    sender,
                    known_names,
                    context or None,
                    image=image,
                    image_mime=message.media_mime if image else None,
                ),
                timeout=self._classifier_timeout,
            )
        except (ClassifierError, asyncio.TimeoutError) as e:
            logger.warning(
                "classification degraded to none",
                extra={
                    "extra_fields": self._log_ctx(
                        message, actor_id=turn.actor_id, error_type=type(e).__name__
                    )
                },
            )
            return ClassifiedIntent.empty()

    async def _classify_and_act(self, turn: _Turn, context: str) -> Outcome | None:
        message = turn.message
        intent = await self._classify(turn, context)

        moment = message.sent_at if message.silent else self._clock()
        decision = decide(
            intent, turn.text, default_time=local_hhmm(moment), silent=message.silent
        )
        turn.kind = decision.kind
        logger.info(
            "intent decided",
            extra={
                "extra_fields": self._log_ctx(
                    message,
                    actor_id=turn.actor_id,
                    kind=intent.kind,
                    confidence=intent.confidence,
                    parse_mode=intent.parse_mode,
                    action=decision.action,
                    fallback=decision.fallback,
                )
            },
        )

        if decision.action == "ignore":
            return None
        if decision.action == "suggest":
            return await asyncio.to_thread(
                self._suggest, turn, intent, decision, local_date(moment)
            )
        return await asyncio.to_thread(self._act, turn, intent, decision, local_date(moment))

    def _act(
        self, turn: _Turn, intent: ClassifiedIntent, decision: Decision, day: date
    ) -> Outcome | None:
        message = turn.message

        if turn.actor is None:
            if intent.is_attendance():
                turn.actor = self._directory.ensure(
                    phone=message.sender_phone, name=message.sender_name
                )
            elif decision.action == "confirm":
                return Outcome(
                    "remetente_desconhecido",
                    {"assunto": SUBJECT_LABELS.get(decision.kind, "isso")},
                )

        request = ActionRequest(
            actor_id=turn.actor_id,
            actor_name=turn.actor_name,
            kind=decision.kind,
            day=day,
            hhmm=decision.hhmm,
            payload={
                "extracted": dict(intent.extracted_data),
                "media_path": message.media_path,
                "message_id": message.message_id,
                "sent_at": message.sent_at.isoformat(),
                "text": turn.text,
                "summary": intent.summary,
            },
        )
        if decision.action == "apply":
            return self._resolver.apply(request)
        return self._resolver.request_confirmation(request, chat_id=message.chat_id)

    def _suggest(
        self, turn: _Turn, intent: ClassifiedIntent, decision: Decision, day: date
    ) -> Outcome:
        message = turn.message
        return self._resolver.record_suggestion(
            actor_id=turn.actor_id,
            actor_name=turn.actor_name or None,
            sender_phone=message.sender_phone,
            text=turn.text or intent.summary or "",
            summary=intent.summary if not decision.fallback else None,
            source_type=_SOURCE_TYPES.get(message.media_kind or "", "texto"),
            day=day,
            ask=decision.ask and turn.actor is not None,
            chat_id=message.chat_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log_inbound(self, message: InboundMessage) -> bool:
        return self._records.messages.record_inbound(
            message_id=message.message_id,
            chat_id=message.chat_id,
            sender_phone=message.sender_phone,
            sender_name=message.sender_name,
            text=message.text,
            message_type=message.message_type,
            media_path=message.media_path,
            sent_at=message.sent_at,
        )

    @staticmethod
    def _log_ctx(message: InboundMessage, **fields: Any) -> dict[str, str]:
        return safe_log_context(
            message_id=id_prefix(message.message_id),
            media_kind=message.media_kind,
            silent=message.silent,
            **fields,
        )
