"""WhatsApp operator routes: session status, manual reconnect, test message."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict

from lardigital.api.deps import get_runtime
from lardigital.observability.logging import get_logger
from lardigital.whatsapp.runtime import Runtime
from lardigital.whatsapp.templates import render

router = APIRouter(prefix="/api/whatsapp", tags=["whatsapp"])

logger = get_logger(__name__)


class TestMessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str | None = None


@router.get("/status")
def whatsapp_status(runtime: Runtime = Depends(get_runtime)) -> dict:
    status = runtime.supervisor.status()
    status["group_configured"] = bool(runtime.settings.group_id)
    return status


@router.post("/reconnect", status_code=202)
async def whatsapp_reconnect(runtime: Runtime = Depends(get_runtime)) -> dict:
    """Manual reconnect. 409 while the session is connected or initializing."""
    if not runtime.settings.whatsapp_enabled:
        raise HTTPException(status_code=409, detail="whatsapp disabled")
    result = await runtime.supervisor.reconnect()
    if not result.accepted:
        raise HTTPException(status_code=409, detail=result.reason)
    return {"status": result.reason}


@router.post("/test")
async def whatsapp_test(
    body: TestMessageRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    """Send the fixed test message to `to` or to the household group."""
    target = (body.to if body else None) or runtime.settings.group_id
    if not target:
        raise HTTPException(status_code=400, detail="no target: set WHATSAPP_GROUP_ID or 'to'")
    if not runtime.supervisor.is_connected:
        raise HTTPException(status_code=503, detail="whatsapp not connected")

    sent = await runtime.router.send_text(target, render("mensagem_teste", {}))
    if not sent:
        raise HTTPException(status_code=502, detail="send failed")
    return {"status": "sent"}
