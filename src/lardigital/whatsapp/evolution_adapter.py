"""Evolution API adapter - validate and normalize webhook payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from lardigital.domain.actors import normalize_phone

from .models import ConnectionUpdate, InboundMessage, MediaKind

# Evolution event names, normalized ("MESSAGES_UPSERT" -> "messages.upsert")
EVENT_MESSAGES_UPSERT = "messages.upsert"
EVENT_CONNECTION_UPDATE = "connection.update"
EVENT_QRCODE_UPDATED = "qrcode.updated"

_MEDIA_TYPES: dict[str, MediaKind] = {
    "imageMessage": "image",
    "audioMessage": "audio",
    "documentMessage": "document",
    "documentWithCaptionMessage": "document",
}


class InvalidPayloadError(Exception):
    """Raised when Evolution payload has invalid shape."""


def event_name(payload: dict[str, Any]) -> str:
    raw = str(payload.get("event") or "")
    return raw.strip().lower().replace("_", ".")


def _timestamp(value: Any) -> datetime:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _media_node(message: dict[str, Any], message_type: str) -> dict[str, Any]:
    node = message.get(message_type) or {}
    if message_type == "documentWithCaptionMessage":
        # Wrapped: {"message": {"documentMessage": {...}}}
        node = (node.get("message") or {}).get("documentMessage") or {}
    return node


def normalize_message(data: dict[str, Any]) -> InboundMessage:
    """Normalize one Evolution message record (webhook `data` or findMessages item).

    Raises:
        InvalidPayloadError: If required fields are missing or invalid.
    """
    key = data.get("key") or {}

    message_id = key.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid message_id")

    chat_id = key.get("remoteJid", "")
    if not chat_id:
        raise InvalidPayloadError("missing remoteJid")

    # In groups the author is the participant; in private chats, the chat itself
    sender_jid = key.get("participant") or data.get("participant") or chat_id

    message_type = data.get("messageType", "unknown")
    message = data.get("message") or {}

    text = None
    media_kind = _MEDIA_TYPES.get(message_type)
    media_mime = None
    if message_type == "conversation":
        text = message.get("conversation")
    elif message_type == "extendedTextMessage":
        text = (message.get("extendedTextMessage") or {}).get("text")
    elif media_kind:
        node = _media_node(message, message_type)
        text = node.get("caption")
        media_mime = node.get("mimetype")

    return InboundMessage(
        message_id=message_id,
        chat_id=chat_id,
        sender_jid=sender_jid,
        sender_phone=normalize_phone(sender_jid) or None,
        sender_name=data.get("pushName") or None,
        text=text,
        media_kind=media_kind,
        media_mime=media_mime,
        sent_at=_timestamp(data.get("messageTimestamp")),
        from_me=bool(key.get("fromMe")),
        raw=data,
    )


def normalize(payload: dict[str, Any]) -> InboundMessage:
    """Normalize a messages.upsert webhook payload.

    Raises:
        InvalidPayloadError: If required fields are missing or invalid.
    """
    data = payload.get("data")
    if isinstance(data, list):
        # Some Evolution versions batch upserts; the webhook sends one at a time
        data = data[0] if data else {}
    if not isinstance(data, dict):
        raise InvalidPayloadError("missing data")
    return normalize_message(data)


def normalize_connection(payload: dict[str, Any]) -> ConnectionUpdate:
    """Normalize a connection.update payload.

    Raises:
        InvalidPayloadError: If the state is missing.
    """
    data = payload.get("data") or {}
    state = data.get("state") or data.get("connection")
    if not state:
        raise InvalidPayloadError("missing connection state")
    reason = data.get("statusReason")
    return ConnectionUpdate(
        state=str(state),
        status_reason=int(reason) if isinstance(reason, (int, str)) and str(reason).isdigit() else None,
    )
