"""Text normalization shared by name matching, shopping reconciliation and
reply parsing."""

import re
import unicodedata
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

_WHITESPACE = re.compile(r"\s+")
_TIME = re.compile(r"^([01]?\d|2[0-3])[:hH]?([0-5]\d)?$")


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(value: str | None) -> str:
    """Lowercase, accent-free, single-spaced form of a name."""
    return _WHITESPACE.sub(" ", strip_accents(value or "").lower()).strip()


def normalize_hhmm(value: str | None) -> str | None:
    """Coerce "8:30", "08h30", "8h" or "0830" into "08:30"; None if invalid."""
    if not value:
        return None
    match = _TIME.match(value.strip())
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    return f"{hour:02d}:{minute:02d}"


_AMOUNT_CHARS = re.compile(r"[^\d,.\-]")
_DATE_BR = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2,4})$")


def parse_amount(value: Any) -> Decimal | None:
    """Parse "R$ 1.234,56", "12.5" or a number into a Decimal."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    raw = _AMOUNT_CHARS.sub("", str(value))
    if not raw:
        return None
    if "," in raw:
        # Brazilian format: dot for thousands, comma for cents
        raw = raw.replace(".", "").replace(",", ".")
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def parse_date(value: Any) -> date | None:
    """Parse ISO (2024-03-01) or Brazilian (01/03/2024) dates."""
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    match = _DATE_BR.match(text)
    try:
        if match:
            day, month, year = (int(g) for g in match.groups())
            if year < 100:
                year += 2000
            return date(year, month, day)
        return date.fromisoformat(text[:10])
    except ValueError:
        return None
