"""Short per-chat conversation memory for classifier prompts.

Not an audit record. Lives in process memory only and is safe to lose on
restart. Each chat keeps at most MAX_ENTRIES entries no older than MAX_AGE;
idle chats are evicted by a sweep that runs at most once per
SWEEP_INTERVAL.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Literal

from lardigital.infra.time import utc_now

MAX_ENTRIES = 10
MAX_AGE = timedelta(minutes=10)
SWEEP_INTERVAL = timedelta(minutes=5)

Speaker = Literal["user", "bot"]


@dataclass(frozen=True)
class MemoryEntry:
    speaker: Speaker
    text: str
    at: datetime
    author: str | None = None


class ConversationMemory:
    """Bounded append-only log per chat id."""

    def __init__(
        self,
        *,
        max_entries: int = MAX_ENTRIES,
        max_age: timedelta = MAX_AGE,
        sweep_interval: timedelta = SWEEP_INTERVAL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._max_entries = max_entries
        self._max_age = max_age
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._chats: dict[str, deque[MemoryEntry]] = {}
        self._last_sweep = clock()

    def append(
        self,
        chat_id: str,
        speaker: Speaker,
        text: str,
        author: str | None = None,
    ) -> None:
        if not text:
            return
        now = self._clock()
        entries = self._chats.setdefault(chat_id, deque())
        entries.append(MemoryEntry(speaker=speaker, text=text, at=now, author=author))
        self._trim(entries, now)
        self._maybe_sweep(now)

    def recent(self, chat_id: str) -> list[MemoryEntry]:
        """Entries still inside the window, oldest first."""
        entries = self._chats.get(chat_id)
        if not entries:
            return []
        self._trim(entries, self._clock())
        return list(entries)

    def render(self, chat_id: str) -> str:
        """Plain-text transcript for prompt context."""
        lines = []
        for entry in self.recent(chat_id):
            who = "Assistente" if entry.speaker == "bot" else (entry.author or "Usuário")
            lines.append(f"{who}: {entry.text}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._chats)

    def _trim(self, entries: deque[MemoryEntry], now: datetime) -> None:
        while len(entries) > self._max_entries:
            entries.popleft()
        cutoff = now - self._max_age
        while entries and entries[0].at < cutoff:
            entries.popleft()

    def _maybe_sweep(self, now: datetime) -> None:
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        cutoff = now - self._max_age
        stale = [
            chat_id
            for chat_id, entries in self._chats.items()
            if not entries or entries[-1].at < cutoff
        ]
        for chat_id in stale:
            del self._chats[chat_id]
