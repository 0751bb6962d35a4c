"""Wire formats for the Twilio media stream, the ElevenLabs conversation and observers.

Decoders raise ProtocolDecodeError; builders return plain dicts ready for
``json.dumps``. Audio payloads are passed through as base64 without transcoding.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Literal

from bridge.errors import ProtocolDecodeError

Speaker = Literal["Agent", "User"]

# ElevenLabs message types handled by the bridge; anything else is ignored.
AGENT_RESPONSE = "agent_response"
USER_TRANSCRIPT = "user_transcript"
AUDIO = "audio"
INTERRUPTION = "interruption"


@dataclass(frozen=True, slots=True)
class StreamStart:
    stream_sid: str
    call_sid: str
    parameters: dict[str, str] = field(default_factory=dict)


def decode_frame(raw: str | bytes) -> dict[str, Any]:
    """Parse a JSON websocket frame into a dict."""

    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolDecodeError(f"Frame is not valid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise ProtocolDecodeError("Frame is not a JSON object")
    return message


def parse_stream_start(message: dict[str, Any]) -> StreamStart:
    start = message.get("start")
    if not isinstance(start, dict):
        raise ProtocolDecodeError("start event without start body")

    stream_sid = start.get("streamSid")
    call_sid = start.get("callSid")
    if not isinstance(stream_sid, str) or not stream_sid:
        raise ProtocolDecodeError("start event without streamSid")
    if not isinstance(call_sid, str) or not call_sid:
        raise ProtocolDecodeError("start event without callSid")

    custom = start.get("customParameters") or {}
    if not isinstance(custom, dict):
        raise ProtocolDecodeError("customParameters is not an object")
    parameters = {str(key): str(value) for key, value in custom.items() if value is not None}

    return StreamStart(stream_sid=stream_sid, call_sid=call_sid, parameters=parameters)


def media_payload(message: dict[str, Any]) -> str:
    media = message.get("media")
    payload = media.get("payload") if isinstance(media, dict) else None
    if not isinstance(payload, str):
        raise ProtocolDecodeError("media event without payload")
    return payload


def user_audio_chunk(payload_b64: str) -> dict[str, str]:
    """Build the AI-bound audio message from a Twilio media payload."""

    try:
        audio = base64.b64decode(payload_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolDecodeError("media payload is not valid base64") from exc
    return {"user_audio_chunk": base64.b64encode(audio).decode("ascii")}


def conversation_initiation(prompt: str, first_message: str) -> dict[str, Any]:
    return {
        "type": "conversation_initiation_client_data",
        "conversation_config_override": {
            "agent": {
                "prompt": {"prompt": prompt},
                "first_message": first_message,
            },
        },
    }


def agent_response_text(message: dict[str, Any]) -> str | None:
    event = message.get("agent_response_event") or {}
    return event.get("agent_response") if isinstance(event, dict) else None


def user_transcript_text(message: dict[str, Any]) -> str | None:
    event = message.get("user_transcription_event") or {}
    return event.get("user_transcript") if isinstance(event, dict) else None


def audio_chunk_payload(message: dict[str, Any]) -> str | None:
    """Return the base64 audio of an AI audio message.

    The upstream protocol has used both ``audio.chunk`` and
    ``audio_event.audio_base_64`` for the same data.
    """

    audio = message.get("audio")
    if isinstance(audio, dict) and audio.get("chunk"):
        return str(audio["chunk"])
    audio_event = message.get("audio_event")
    if isinstance(audio_event, dict) and audio_event.get("audio_base_64"):
        return str(audio_event["audio_base_64"])
    return None


def telephony_media_frame(stream_sid: str, payload_b64: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload_b64}}


def telephony_clear_frame(stream_sid: str) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_sid}


def transcript_event(speaker: Speaker, text: str | None) -> dict[str, Any]:
    return {"event": "transcript", "speaker": speaker, "text": text}
