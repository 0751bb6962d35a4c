"""Health check and the observer (frontend) websocket."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket

from api.dependencies import get_registry
from api.schemas import HealthResponse
from bridge.registry import CallSessionRegistry

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()


@router.websocket("/transcription-stream/{call_sid}")
async def transcription_stream(
    websocket: WebSocket,
    call_sid: str,
    registry: CallSessionRegistry = Depends(get_registry),
) -> None:
    # Registered before accept so the entry exists as soon as the client sees the handshake.
    await registry.register(call_sid, websocket)
    LOGGER.info("Frontend client connected for callSid: %s", call_sid)
    try:
        await websocket.accept()
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except Exception as exc:
        LOGGER.error("WebSocket error for callSid %s: %s", call_sid, exc)
    finally:
        await registry.unregister(call_sid, websocket)
        LOGGER.info("Frontend client disconnected for callSid: %s", call_sid)
