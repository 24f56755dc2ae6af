"""Actor resolution from chat sender identity.

Senders are matched against active household members by phone number
first, then by display name. The member list is cached for a short TTL;
the cache is owned by whoever builds the directory (the router runtime),
never a module global.
"""

from __future__ import annotations

import re
import threading
import time
from typing import Callable

from lardigital.domain.records import Actor, ActorRepository
from lardigital.domain.text import normalize_name
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context

logger = get_logger(__name__)

UNKNOWN_ACTOR_ID = 0
ACTOR_CACHE_TTL_SECONDS = 300

# Phones are compared on their last 8 digits so "11 98765-4321" matches
# "11 8765-4321" (mobile 9th digit added later).
PHONE_MATCH_DIGITS = 8

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(value: str | None) -> str:
    """Digits only, WhatsApp jid suffix and Brazilian country code removed."""
    if not value:
        return ""
    local = value.split("@", 1)[0].split(":", 1)[0]
    digits = _NON_DIGITS.sub("", local)
    if digits.startswith("55") and len(digits) > 11:
        digits = digits[2:]
    return digits


def phones_match(a: str | None, b: str | None) -> bool:
    left, right = normalize_phone(a), normalize_phone(b)
    if len(left) < PHONE_MATCH_DIGITS or len(right) < PHONE_MATCH_DIGITS:
        return False
    return left[-PHONE_MATCH_DIGITS:] == right[-PHONE_MATCH_DIGITS:]


class ActorDirectory:
    """TTL-cached view of active household members."""

    def __init__(
        self,
        repository: ActorRepository,
        *,
        ttl_seconds: float = ACTOR_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repo = repository
        self._ttl = ttl_seconds
        self._clock = clock
        self._cached: list[Actor] = []
        self._loaded_at: float | None = None
        self._lock = threading.Lock()

    def actors(self) -> list[Actor]:
        with self._lock:
            now = self._clock()
            if self._loaded_at is None or now - self._loaded_at >= self._ttl:
                self._cached = list(self._repo.list_active())
                self._loaded_at = now
            return list(self._cached)

    def invalidate(self) -> None:
        with self._lock:
            self._loaded_at = None

    def known_names(self) -> list[str]:
        return [actor.name for actor in self.actors()]

    def resolve(self, *, phone: str | None, name: str | None) -> Actor | None:
        """Find the member behind a sender, or None for unknown senders."""
        actors = self.actors()

        if phone:
            for actor in actors:
                if phones_match(actor.phone, phone):
                    return actor

        wanted = normalize_name(name)
        if not wanted:
            return None
        for actor in actors:
            if normalize_name(actor.name) == wanted:
                return actor

        first = wanted.split(" ", 1)[0]
        candidates = [
            actor for actor in actors if normalize_name(actor.name).split(" ", 1)[0] == first
        ]
        if len(candidates) == 1:
            return candidates[0]
        return None

    def ensure(self, *, phone: str | None, name: str | None) -> Actor:
        """Resolve the sender, creating a member record if none matches."""
        actor = self.resolve(phone=phone, name=name)
        if actor is not None:
            return actor

        digits = normalize_phone(phone)
        display = (name or "").strip() or f"Contato {digits[-4:] or 'WhatsApp'}"
        actor = self._repo.create(name=display, phone=digits or None)
        self.invalidate()
        logger.info(
            "actor auto-created",
            extra={"extra_fields": safe_log_context(actor_id=actor.id)},
        )
        return actor
