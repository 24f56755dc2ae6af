"""Decision policy: what to do with a classified intent.

Pure function of the intent, the message text and the replay mode. The
router executes the decision; the resolver applies effects.

Live messages:

    attendance, explicit time   >= 90  apply at the explicit time
                                50-89  ask to confirm the explicit time
    attendance, no time         >= 80  apply at the current time
                                50-79  ask to confirm the current time
    document/delivery/invoice/receipt  >= 50  ask to confirm
    suggestion                  >= 50  record, ask "turn into a task?"
    anything else                      suggestion fallback if the text has
                                       enough substance, else ignore

Silent replay never asks: attendance >= 50 applies at the explicit or
original send time, other records apply at >= 80, suggestions are recorded
without a question.
"""

import re
from dataclasses import dataclass
from typing import Literal

from lardigital.domain.intents import ClassifiedIntent
from lardigital.domain.text import normalize_name

MIN_CONFIDENCE = 50
ATTENDANCE_EXPLICIT_AUTO_APPLY = 90
ATTENDANCE_IMPLICIT_AUTO_APPLY = 80
SILENT_RECORD_AUTO_APPLY = 80
MIN_MEANINGFUL_CHARS = 5

Action = Literal["apply", "confirm", "suggest", "ignore"]

_TRIVIAL = re.compile(
    r"\b(?:"
    r"bom dia|boa tarde|boa noite|oi+|ola|opa|e ai|tudo bem|tudo bom|"
    r"ok+|okay|blz|beleza|show|"
    r"obrigad[oa]s?|brigad[oa]|obg|valeu|vlw|tchau|"
    r"k{2,}|(?:ha){2,}h?|(?:he){2,}|(?:rs)+"
    r")\b"
)


@dataclass(frozen=True)
class Decision:
    """What the router should do with one message.

    Attributes:
        action: apply now, ask for confirmation, record a suggestion, or
            ignore the message.
        kind: Intent kind the action is about ("suggestion" for fallbacks).
        hhmm: Punch time for attendance kinds.
        fallback: True when a low-confidence message was kept as a
            suggestion so meaningful input is never dropped.
        ask: For suggestions, whether to ask the sender to turn it into a
            task.
    """

    action: Action
    kind: str
    hhmm: str | None = None
    fallback: bool = False
    ask: bool = False


def meaningful_length(text: str | None) -> int:
    """Count alphanumerics left after removing greetings, thanks and laughter."""
    stripped = _TRIVIAL.sub(" ", normalize_name(text))
    return sum(1 for ch in stripped if ch.isalnum())


def has_meaningful_content(text: str | None) -> bool:
    return meaningful_length(text) >= MIN_MEANINGFUL_CHARS


def decide(
    intent: ClassifiedIntent,
    text: str | None,
    *,
    default_time: str,
    silent: bool = False,
) -> Decision:
    """Map a classified intent to an action.

    Args:
        intent: Classifier output.
        text: Message text (or transcription) used for the fallback check.
        default_time: HH:MM to use when the message names no time; the
            current local time live, the original send time on replay.
        silent: True while replaying missed messages.
    """
    confidence = intent.confidence

    if intent.is_attendance() and confidence >= MIN_CONFIDENCE:
        explicit = intent.explicit_time
        hhmm = explicit or default_time
        if silent:
            return Decision("apply", intent.kind, hhmm=hhmm)
        threshold = (
            ATTENDANCE_EXPLICIT_AUTO_APPLY if explicit else ATTENDANCE_IMPLICIT_AUTO_APPLY
        )
        action: Action = "apply" if confidence >= threshold else "confirm"
        return Decision(action, intent.kind, hhmm=hhmm)

    if intent.is_record() and confidence >= MIN_CONFIDENCE:
        if not silent:
            return Decision("confirm", intent.kind)
        if confidence >= SILENT_RECORD_AUTO_APPLY:
            return Decision("apply", intent.kind)

    if intent.kind == "suggestion" and confidence >= MIN_CONFIDENCE:
        return Decision("suggest", "suggestion", ask=not silent)

    if has_meaningful_content(text):
        return Decision("suggest", "suggestion", fallback=True, ask=not silent)
    return Decision("ignore", intent.kind)
