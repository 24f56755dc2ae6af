"""Postgres wiring for the domain record writers."""

from lardigital.domain.records import Records
from lardigital.infra.repositories.actors_repository import PgActorRepository
from lardigital.infra.repositories.attendance_repository import PgAttendanceRepository
from lardigital.infra.repositories.deliveries_repository import PgDeliveryRepository
from lardigital.infra.repositories.documents_repository import PgDocumentRepository
from lardigital.infra.repositories.expenses_repository import PgExpenseRepository
from lardigital.infra.repositories.messages_repository import PgMessageLogRepository
from lardigital.infra.repositories.suggestions_repository import (
    PgSuggestionRepository,
    PgTaskRepository,
)


def build_postgres_records() -> Records:
    return Records(
        actors=PgActorRepository(),
        attendance=PgAttendanceRepository(),
        messages=PgMessageLogRepository(),
        documents=PgDocumentRepository(),
        deliveries=PgDeliveryRepository(),
        expenses=PgExpenseRepository(),
        suggestions=PgSuggestionRepository(),
        tasks=PgTaskRepository(),
    )
