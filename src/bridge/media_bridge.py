"""Per-call bridge between a Twilio media stream and an ElevenLabs conversation.

One MediaBridge is created for every accepted Twilio websocket. It owns the
AI websocket it opens, translates frames in both directions and mirrors
transcripts and audio to the observer registered for the call, if any.

Either peer closing tears the whole session down; a single bad frame never does.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol

import websockets
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from bridge import protocol
from bridge.errors import BridgeError, ConnectionClosedError, ProtocolDecodeError, UpstreamUnavailableError
from bridge.registry import CallSessionRegistry

LOGGER = logging.getLogger(__name__)


class BridgeState(str, Enum):
    AWAITING_START = "awaiting_start"
    AI_CONNECTING = "ai_connecting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


_FINISHED = (BridgeState.CLOSING, BridgeState.CLOSED)


@dataclass(frozen=True)
class CallSession:
    """Identifiers captured from the Twilio start event."""

    call_sid: str | None = None
    stream_sid: str | None = None
    parameters: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


class SessionFetcher(Protocol):
    async def fetch_signed_url(self) -> str:  # pragma: no cover - protocol stub
        ...


AIConnector = Callable[[str], Awaitable[Any]]


class MediaBridge:
    def __init__(
        self,
        telephony: WebSocket,
        registry: CallSessionRegistry,
        fetcher: SessionFetcher,
        connector: AIConnector,
        *,
        setup_timeout: float = 10.0,
        default_prompt: str = "you are gary from the phone store",
        default_first_message: str = "Hey, how can I help you today?",
    ) -> None:
        self._telephony = telephony
        self._registry = registry
        self._fetcher = fetcher
        self._connector = connector
        self._setup_timeout = setup_timeout
        self._default_prompt = default_prompt
        self._default_first_message = default_first_message

        self.session = CallSession()
        self._state = BridgeState.AWAITING_START
        self._ai: Any | None = None
        self._ai_task: asyncio.Task | None = None
        self._done = asyncio.Event()

    @property
    def state(self) -> BridgeState:
        return self._state

    async def run(self) -> None:
        """Serve the call until either peer goes away."""

        LOGGER.info("[Server] Twilio connected to outbound media stream")
        receiver = asyncio.create_task(self._receive_telephony())
        try:
            await self._done.wait()
        finally:
            await self.shutdown("bridge stopped")
            tasks = [task for task in (receiver, self._ai_task) if task is not None]
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            # The AI leg may have connected while being cancelled.
            await self._close_ai()
            self._state = BridgeState.CLOSED
            LOGGER.info("Twilio stream closed for callSid: %s", self.session.call_sid)

    async def shutdown(self, reason: str) -> None:
        if self._state in _FINISHED:
            return
        self._state = BridgeState.CLOSING
        LOGGER.info("Closing bridge for callSid %s: %s", self.session.call_sid, reason)
        await self._close_ai()
        await self._close_telephony()
        self._done.set()

    # Telephony -> AI

    async def _receive_telephony(self) -> None:
        reason = "telephony connection closed"
        try:
            while self._state not in _FINISHED:
                try:
                    raw = await self._telephony.receive_text()
                except WebSocketDisconnect:
                    break
                except KeyError:
                    # starlette raises KeyError for binary frames
                    LOGGER.warning("Ignoring non-text frame from Twilio")
                    continue
                if not await self._dispatch_telephony(raw):
                    reason = "stop event received"
                    break
        except ConnectionClosedError as exc:
            reason = exc.detail
        except Exception:
            LOGGER.exception("Twilio receive loop failed")
            reason = "telephony receive loop failed"
        finally:
            await self.shutdown(reason)

    async def _dispatch_telephony(self, raw: str) -> bool:
        """Handle one Twilio frame; returns False once the stream has stopped."""

        try:
            message = protocol.decode_frame(raw)
            event = message.get("event")
            if event == "stop":
                LOGGER.info("Received stop event for callSid: %s", self.session.call_sid)
                return False
            if event == "start":
                self._on_start(message)
            elif event == "media":
                await self._forward_media(message)
            else:
                LOGGER.debug("Ignoring Twilio event %r", event)
        except ConnectionClosedError:
            raise
        except ProtocolDecodeError as exc:
            LOGGER.warning("Error processing message from Twilio: %s", exc.detail)
        except Exception:
            LOGGER.exception("Error processing message from Twilio")
        return True

    def _on_start(self, message: dict[str, Any]) -> None:
        if self._state is not BridgeState.AWAITING_START:
            LOGGER.warning("Ignoring repeated start event for callSid: %s", self.session.call_sid)
            return

        start = protocol.parse_stream_start(message)
        self.session = CallSession(
            call_sid=start.call_sid,
            stream_sid=start.stream_sid,
            parameters=MappingProxyType(dict(start.parameters)),
        )
        self._state = BridgeState.AI_CONNECTING
        LOGGER.info("Stream started for callSid: %s", start.call_sid)
        self._ai_task = asyncio.create_task(self._run_ai_leg())

    async def _forward_media(self, message: dict[str, Any]) -> None:
        # Audio that arrives before the AI leg is ready is stale by the time it could be sent.
        if self._state is not BridgeState.ACTIVE or self._ai is None:
            return
        payload = protocol.media_payload(message)
        await self._send_ai(protocol.user_audio_chunk(payload))

    async def _send_ai(self, message: dict[str, Any]) -> None:
        if self._ai is None:
            raise ConnectionClosedError("ElevenLabs connection closed")
        try:
            await self._ai.send(json.dumps(message))
        except websockets.exceptions.ConnectionClosed as exc:
            raise ConnectionClosedError("ElevenLabs connection closed") from exc

    # AI -> telephony / observer

    async def _run_ai_leg(self) -> None:
        reason = "ElevenLabs connection closed"
        try:
            try:
                await asyncio.wait_for(self._open_ai_leg(), timeout=self._setup_timeout)
            except asyncio.TimeoutError as exc:
                raise UpstreamUnavailableError(
                    f"AI session setup exceeded {self._setup_timeout:g}s"
                ) from exc
            await self._receive_ai()
        except ConnectionClosedError as exc:
            reason = exc.detail
        except BridgeError as exc:
            LOGGER.error("Error setting up ElevenLabs WebSocket: %s", exc.detail)
            reason = exc.detail
        except websockets.exceptions.ConnectionClosed as exc:
            reason = f"ElevenLabs connection lost: {exc}"
        except Exception:
            LOGGER.exception("ElevenLabs receive loop failed")
            reason = "ElevenLabs receive loop failed"
        finally:
            await self.shutdown(reason)

    async def _open_ai_leg(self) -> None:
        signed_url = await self._fetcher.fetch_signed_url()
        self._ai = await self._connector(signed_url)

        parameters = self.session.parameters
        await self._send_ai(
            protocol.conversation_initiation(
                prompt=parameters.get("prompt") or self._default_prompt,
                first_message=parameters.get("first_message") or self._default_first_message,
            )
        )
        if self._state is BridgeState.AI_CONNECTING:
            self._state = BridgeState.ACTIVE
        LOGGER.info("[ElevenLabs] Connected to Conversational AI for callSid: %s", self.session.call_sid)

    async def _receive_ai(self) -> None:
        connection = self._ai
        if connection is None:
            return
        async for raw in connection:
            if self._state in _FINISHED:
                break
            await self._dispatch_ai(raw)

    async def _dispatch_ai(self, raw: str | bytes) -> None:
        try:
            await self._handle_ai_message(protocol.decode_frame(raw))
        except ConnectionClosedError:
            raise
        except ProtocolDecodeError as exc:
            LOGGER.warning("Error processing message from ElevenLabs: %s", exc.detail)
        except Exception:
            LOGGER.exception("Error processing message from ElevenLabs")

    async def _handle_ai_message(self, message: dict[str, Any]) -> None:
        message_type = message.get("type")
        stream_sid = self.session.stream_sid

        if message_type == protocol.AGENT_RESPONSE:
            await self._notify_observer(protocol.transcript_event("Agent", protocol.agent_response_text(message)))
        elif message_type == protocol.USER_TRANSCRIPT:
            await self._notify_observer(protocol.transcript_event("User", protocol.user_transcript_text(message)))
        elif message_type == protocol.AUDIO:
            if stream_sid is None:
                LOGGER.info("[ElevenLabs] Received audio but no StreamSid yet")
                return
            payload = protocol.audio_chunk_payload(message)
            if payload is None:
                LOGGER.debug("[ElevenLabs] Audio message without payload")
                return
            await self._send_telephony(protocol.telephony_media_frame(stream_sid, payload))
        elif message_type == protocol.INTERRUPTION:
            if stream_sid is not None:
                await self._send_telephony(protocol.telephony_clear_frame(stream_sid))
        else:
            LOGGER.info("[ElevenLabs] Unhandled message type: %s", message_type)

    async def _send_telephony(self, frame: dict[str, Any]) -> None:
        if self._telephony.application_state != WebSocketState.CONNECTED:
            raise ConnectionClosedError("Twilio connection closed")
        try:
            await self._telephony.send_json(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise ConnectionClosedError("Twilio connection closed") from exc
        await self._notify_observer(frame)

    async def _notify_observer(self, event: dict[str, Any]) -> None:
        if self.session.call_sid is None:
            return
        await self._registry.send(self.session.call_sid, event)

    # Teardown

    async def _close_ai(self) -> None:
        connection, self._ai = self._ai, None
        if connection is None:
            return
        await connection.close()
        LOGGER.info("[ElevenLabs] Disconnected")

    async def _close_telephony(self) -> None:
        if (
            self._telephony.application_state != WebSocketState.CONNECTED
            or self._telephony.client_state != WebSocketState.CONNECTED
        ):
            return
        try:
            await self._telephony.close()
        except (RuntimeError, OSError) as exc:
            LOGGER.debug("Twilio websocket already closed: %s", exc)
