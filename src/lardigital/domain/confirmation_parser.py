"""Detect yes/no answers to a pending confirmation question.

NO LLM. A fixed vocabulary, matched per word, case- and
diacritic-insensitive. A reply is an answer only when every word in it is
a vocabulary word or filler ("sim, pode", "não, obrigada", "👍"). Anything
else is "none" and goes on to normal intent classification, so a new
message that merely starts with "não" is never taken as a denial.
"""

import re
from typing import Literal

from lardigital.domain.text import normalize_name

ReplyDecision = Literal["confirmed", "denied", "none"]

AFFIRMATIVE_WORDS = frozenset(
    {
        "sim",
        "s",
        "ss",
        "simm",
        "isso",
        "confirmo",
        "confirma",
        "confirmar",
        "confirmado",
        "correto",
        "certo",
        "ok",
        "pode",
        "yes",
    }
)

NEGATIVE_WORDS = frozenset(
    {
        "nao",
        "n",
        "cancela",
        "cancelar",
        "cancelado",
        "errado",
        "no",
    }
)

# Words that may surround an answer without changing it
FILLER_WORDS = frozenset(
    {
        "e",
        "eh",
        "ta",
        "esta",
        "mesmo",
        "certinho",
        "tudo",
        "beleza",
        "blz",
        "obrigado",
        "obrigada",
        "valeu",
        "por",
        "favor",
        "pf",
        "pfv",
        "registra",
        "registrar",
    }
)

AFFIRMATIVE_EMOJIS: tuple[str, ...] = ("\U0001f44d", "✅")
NEGATIVE_EMOJIS: tuple[str, ...] = ("\U0001f44e", "❌")

_WORD = re.compile(r"[a-z0-9]+")


def parse_confirmation_reply(text: str | None) -> ReplyDecision:
    """Classify free text as a confirmation answer.

    Args:
        text: Raw message text.

    Returns:
        "confirmed", "denied", or "none" when the text is not a clear answer
        (empty, carrying other content, or matching both vocabularies).
    """
    if not text or not text.strip():
        return "none"

    words = _WORD.findall(normalize_name(text))
    if any(
        w not in AFFIRMATIVE_WORDS and w not in NEGATIVE_WORDS and w not in FILLER_WORDS
        for w in words
    ):
        return "none"

    is_yes = any(e in text for e in AFFIRMATIVE_EMOJIS) or any(
        w in AFFIRMATIVE_WORDS for w in words
    )
    is_no = any(e in text for e in NEGATIVE_EMOJIS) or any(w in NEGATIVE_WORDS for w in words)

    if is_yes and not is_no:
        return "confirmed"
    if is_no and not is_yes:
        return "denied"
    return "none"
