"""WhatsApp webhook route - Evolution API events.

The gateway posts every event (messages, connection state, QR codes)
here. The route authenticates, hands the payload to the current channel
client and ACKs. Message processing runs in background tasks owned by
the session supervisor, so a slow classifier never delays the ACK.

Logs contain NO message text or phone numbers.
"""

import hmac
from typing import Any

from fastapi import APIRouter, Depends, Header, Request, Response

from lardigital.api.deps import get_runtime
from lardigital.observability.correlation import get_correlation_id
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context
from lardigital.whatsapp.evolution_adapter import InvalidPayloadError
from lardigital.whatsapp.runtime import Runtime

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/evolution")
async def evolution_webhook(
    request: Request,
    runtime: Runtime = Depends(get_runtime),
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> Response:
    """Receive an Evolution API webhook.

    Returns:
        200 OK when dispatched, or ignored because no session is active.
        400 Bad Request if the body is not JSON or the payload is malformed.
        401 Unauthorized if the shared secret is missing or wrong.
        500 Internal Server Error if dispatch fails unexpectedly.
    """
    correlation_id = get_correlation_id()

    # Webhook secret validation (fail-closed)
    expected_secret = runtime.settings.evolution.webhook_secret
    if not expected_secret:
        logger.error(
            "EVOLUTION_WEBHOOK_SECRET not configured - rejecting webhook (fail-closed)",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=401, content="unauthorized")
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected_secret):
        logger.warning(
            "evolution webhook secret mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=401, content="unauthorized")

    try:
        payload: dict[str, Any] = await request.json()
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")
    if not isinstance(payload, dict):
        return Response(status_code=400, content="invalid payload")

    client = runtime.supervisor.client
    handle_webhook = getattr(client, "handle_webhook", None)
    if handle_webhook is None:
        logger.info(
            "webhook ignored: no active session",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ignored")

    try:
        event = await handle_webhook(payload)
    except InvalidPayloadError as e:
        logger.warning(
            "invalid evolution payload",
            extra={
                "extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))
            },
        )
        return Response(status_code=400, content="invalid payload")
    except Exception:
        logger.exception(
            "evolution webhook dispatch failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="internal error")

    logger.info(
        "evolution webhook dispatched",
        extra={"extra_fields": safe_log_context(correlationId=correlation_id, event=event)},
    )
    return Response(status_code=200, content="ok")
