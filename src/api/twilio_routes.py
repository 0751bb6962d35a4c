"""Twilio Voice integration.

This module provides:
- Outbound call endpoint that asks Twilio to dial a number.
- TwiML webhook that connects the answered call to our media stream.
- The media stream websocket, bridged to an ElevenLabs agent per call.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket
from pydantic import ValidationError as PydanticValidationError

from api.dependencies import get_ai_connector, get_registry, get_session_fetcher
from api.schemas import ErrorResponse, OutboundCallRequest, OutboundCallResponse
from bridge.errors import ValidationError
from bridge.media_bridge import AIConnector, MediaBridge, SessionFetcher
from bridge.registry import CallSessionRegistry
from config.settings import get_settings
from integrations.twilio_client import OutboundCallInitiator, build_twilio_client, get_twilio_config

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

_ATTR_ENTITIES = {'"': "&quot;"}


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _public_base_url(request: Request) -> str:
    configured = get_twilio_config().public_base_url
    if configured:
        return configured
    return f"https://{request.headers['host']}"


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _twiml_stream(*, stream_url: str, parameters: dict[str, str]) -> str:
    stream = escape(stream_url, _ATTR_ENTITIES)
    params = "".join(
        f"<Parameter name=\"{escape(name, _ATTR_ENTITIES)}\" value=\"{escape(value, _ATTR_ENTITIES)}\" />"
        for name, value in parameters.items()
    )
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{stream}\">"
        f"{params}"
        "</Stream>"
        "</Connect>"
        "</Response>"
    )


@lru_cache(maxsize=1)
def get_twilio_client():
    return build_twilio_client()


def get_call_initiator(twilio_client=Depends(get_twilio_client)) -> OutboundCallInitiator:
    return OutboundCallInitiator(twilio_client, get_twilio_config().from_number)


_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def read_outbound_call_request(request: Request) -> OutboundCallRequest:
    """Accept the outbound call body as JSON or as a form post."""

    content_type = request.headers.get("content-type", "")
    if content_type.startswith(_FORM_TYPES):
        form = await request.form()
        data = {key: value for key, value in form.items() if isinstance(value, str)}
    else:
        body = await request.body()
        try:
            data = json.loads(body) if body.strip() else {}
        except ValueError as exc:
            raise ValidationError("Request body must be JSON or form-encoded") from exc

    # A missing number is reported by the initiator.
    if not isinstance(data, dict):
        data = {}
    try:
        return OutboundCallRequest.model_validate(data)
    except PydanticValidationError as exc:
        LOGGER.warning("Rejected outbound call request: %s", exc.errors())
        raise ValidationError("Invalid outbound call request") from exc


@router.post(
    "/outbound-call",
    response_model=OutboundCallResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def outbound_call(
    request: Request,
    payload: OutboundCallRequest = Depends(read_outbound_call_request),
    initiator: OutboundCallInitiator = Depends(get_call_initiator),
) -> OutboundCallResponse:
    call_sid = await initiator.place_call(
        payload.number,
        prompt=payload.prompt,
        first_message=payload.first_message,
        callback_base_url=_public_base_url(request),
    )
    return OutboundCallResponse(call_sid=call_sid)


@router.api_route("/outbound-call-twiml", methods=["GET", "POST"])
async def outbound_call_twiml(request: Request) -> Response:
    stream_url = _to_ws_url(_public_base_url(request)) + "/outbound-media-stream"
    parameters = {
        "prompt": request.query_params.get("prompt", ""),
        "first_message": request.query_params.get("first_message", ""),
    }
    return _twiml_response(_twiml_stream(stream_url=stream_url, parameters=parameters))


@router.websocket("/outbound-media-stream")
async def outbound_media_stream(
    websocket: WebSocket,
    registry: CallSessionRegistry = Depends(get_registry),
    fetcher: SessionFetcher = Depends(get_session_fetcher),
    connector: AIConnector = Depends(get_ai_connector),
) -> None:
    await websocket.accept()
    settings = get_settings()
    bridge = MediaBridge(
        websocket,
        registry,
        fetcher,
        connector,
        setup_timeout=settings.ai_setup_timeout_seconds,
        default_prompt=settings.default_prompt,
        default_first_message=settings.default_first_message,
    )
    await bridge.run()
