"""Process-wide wiring of the WhatsApp pipeline.

One Runtime per process: the supervisor owns the channel session, the
router consumes its message events and replays history on reconnect.
Components that tests replace (record writers, classifier, channel
client) can be injected; everything else is built from Settings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from lardigital.ai.classifier import IntentClassifier
from lardigital.ai.speech import SpeechTranscriber
from lardigital.domain.actors import ActorDirectory
from lardigital.domain.confirmations import ConfirmationRepository, ConfirmationStore
from lardigital.domain.memory import ConversationMemory
from lardigital.domain.records import Records
from lardigital.domain.resolver import ActionResolver
from lardigital.infra.alerts import OperatorAlerts
from lardigital.infra.locks import KeyedLocks
from lardigital.infra.quota import HourlyQuota
from lardigital.infra.settings import Settings, load_settings
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context

from .channel import ChannelClient
from .evolution_client import EvolutionChannelClient
from .router import Classifier, MessageRouter
from .session import SessionSupervisor

logger = get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    alerts: OperatorAlerts
    supervisor: SessionSupervisor
    router: MessageRouter

    async def start(self) -> None:
        if not self.settings.whatsapp_enabled:
            logger.info("whatsapp disabled, pipeline idle")
            return
        await self.supervisor.start()
        self.supervisor.start_health_checks(self.settings.health_check_interval)

    async def stop(self) -> None:
        await self.supervisor.stop()
        await self.supervisor.drain()


def build_runtime(
    settings: Settings | None = None,
    *,
    records: Records | None = None,
    confirmation_repository: ConfirmationRepository | None = None,
    classifier: Classifier | None = None,
    client_factory: Callable[[], ChannelClient] | None = None,
    alerts: OperatorAlerts | None = None,
) -> Runtime:
    """Build the pipeline, defaulting to Postgres writers and live services."""
    settings = settings or load_settings()

    if records is None:
        from lardigital.infra.records import build_postgres_records

        records = build_postgres_records()
    if confirmation_repository is None:
        from lardigital.infra.repositories.confirmations_repository import (
            PgConfirmationRepository,
        )

        confirmation_repository = PgConfirmationRepository()

    alerts = alerts or OperatorAlerts(settings.smtp)
    confirmations = ConfirmationStore(confirmation_repository)
    resolver = ActionResolver(records, confirmations)
    factory = client_factory or (lambda: EvolutionChannelClient(settings.evolution))
    supervisor = SessionSupervisor(factory, alerts, enabled=settings.whatsapp_enabled)

    router = MessageRouter(
        records=records,
        confirmations=confirmations,
        resolver=resolver,
        classifier=classifier or IntentClassifier(settings.classifier),
        directory=ActorDirectory(records.actors),
        memory=ConversationMemory(),
        locks=KeyedLocks(),
        channel=lambda: supervisor.client,
        speech_quota=HourlyQuota("speech", settings.speech.max_per_hour),
        vision_quota=HourlyQuota("vision", settings.vision_max_per_hour),
        transcriber=SpeechTranscriber(settings.speech),
        classifier_timeout=settings.classifier.timeout_seconds,
        media_dir=settings.media_dir,
    )
    supervisor.on_message(router.handle)
    supervisor.on_connected(router.replay_missed)

    logger.info(
        "whatsapp runtime built",
        extra={
            "extra_fields": safe_log_context(
                enabled=settings.whatsapp_enabled,
                gateway_configured=settings.evolution.configured,
                alerts_configured=settings.smtp.configured,
            )
        },
    )
    return Runtime(settings=settings, alerts=alerts, supervisor=supervisor, router=router)
