"""Classified intent models.

A ClassifiedIntent is transient: produced once per inbound message by the
classifier and consumed by the decision policy.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

IntentKind = Literal[
    "entrada",
    "saida",
    "saida_almoco",
    "retorno_almoco",
    "document",
    "delivery",
    "invoice",
    "receipt",
    "suggestion",
    "none",
]

INTENT_KINDS: frozenset[str] = frozenset(
    {
        "entrada",
        "saida",
        "saida_almoco",
        "retorno_almoco",
        "document",
        "delivery",
        "invoice",
        "receipt",
        "suggestion",
        "none",
    }
)

ATTENDANCE_KINDS: frozenset[str] = frozenset(
    {"entrada", "saida", "saida_almoco", "retorno_almoco"}
)

RECORD_KINDS: frozenset[str] = frozenset({"document", "delivery", "invoice", "receipt"})

# How the classifier response was turned into an intent
ParseMode = Literal["structured", "fallback", "empty"]


@dataclass(frozen=True)
class ClassifiedIntent:
    """Result of classifying one inbound message.

    Attributes:
        kind: Intent kind; "none" when nothing actionable was found.
        confidence: Classifier confidence in [0, 100].
        explicit_time: HH:MM when the message names a time ("cheguei às 8:30").
        extracted_data: Structured fields pulled from documents/invoices.
        parse_mode: "structured" when the response validated as JSON,
            "fallback" when kind/confidence were scraped from near-miss text,
            "empty" when nothing could be recovered.
        summary: Short classifier-written description, used for titles.
    """

    kind: IntentKind = "none"
    confidence: int = 0
    explicit_time: str | None = None
    extracted_data: dict[str, Any] = field(default_factory=dict)
    parse_mode: ParseMode = "empty"
    summary: str | None = None

    @classmethod
    def empty(cls) -> "ClassifiedIntent":
        return cls()

    def is_attendance(self) -> bool:
        return self.kind in ATTENDANCE_KINDS

    def is_record(self) -> bool:
        return self.kind in RECORD_KINDS
