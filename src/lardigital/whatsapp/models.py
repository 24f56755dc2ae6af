"""WhatsApp message models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

MediaKind = Literal["image", "audio", "document"]


@dataclass(frozen=True)
class InboundMessage:
    """One normalized inbound chat message.

    Contains PII (sender phone/jid, text): keep it in memory, log only ids,
    lengths and redacted context.

    Attributes:
        message_id: Channel message id, the de-duplication key.
        chat_id: Chat the message arrived in (private chat or group jid).
        sender_jid: Author jid (participant in groups).
        sender_phone: Author phone derived from the jid, digits only.
        sender_name: WhatsApp display name (pushName).
        text: Text body or media caption; transcription for audio.
        media_kind: Attached media kind, if any.
        media_mime: Media mime type as reported by the channel.
        media_path: Local path once the media has been downloaded.
        sent_at: Original send time. Differs from processing time on replay.
        silent: Replayed after an outage; never ask, never reply.
        raw: Channel-specific message object needed to download media.
    """

    message_id: str
    chat_id: str
    sender_jid: str
    sent_at: datetime
    sender_phone: str | None = None
    sender_name: str | None = None
    text: str | None = None
    media_kind: MediaKind | None = None
    media_mime: str | None = None
    media_path: str | None = None
    silent: bool = False
    from_me: bool = False
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith("@g.us")

    @property
    def message_type(self) -> str:
        return self.media_kind or "text"

    def with_media_path(self, path: str | None) -> "InboundMessage":
        return replace(self, media_path=path)

    def as_silent(self) -> "InboundMessage":
        return replace(self, silent=True)


@dataclass(frozen=True)
class ConnectionUpdate:
    """Normalized connection.update event."""

    state: str
    status_reason: int | None = None
