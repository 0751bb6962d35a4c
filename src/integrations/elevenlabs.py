"""ElevenLabs conversational-AI session setup."""

from __future__ import annotations

import logging

import httpx
import websockets

from bridge.errors import MalformedResponseError, UpstreamAuthError, UpstreamUnavailableError
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

SIGNED_URL_PATH = "/v1/convai/conversation/get_signed_url"


class SignedSessionFetcher:
    """Fetches a short-lived signed websocket URL for one agent conversation."""

    def __init__(
        self,
        *,
        api_key: str,
        agent_id: str,
        base_url: str = "https://api.elevenlabs.io",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._agent_id = agent_id
        self._endpoint = base_url.rstrip("/") + SIGNED_URL_PATH
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SignedSessionFetcher:
        settings = settings or get_settings()
        return cls(
            api_key=settings.elevenlabs_api_key,
            agent_id=settings.elevenlabs_agent_id,
            base_url=settings.elevenlabs_api_url,
            timeout=settings.ai_setup_timeout_seconds,
        )

    async def fetch_signed_url(self) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(
                    self._endpoint,
                    params={"agent_id": self._agent_id},
                    headers={"xi-api-key": self._api_key},
                )
        except httpx.TransportError as exc:
            LOGGER.error("Signed URL request failed: %s", exc)
            raise UpstreamUnavailableError(f"Failed to reach ElevenLabs: {exc}") from exc

        if not response.is_success:
            LOGGER.error("Signed URL request rejected: %s %s", response.status_code, response.reason_phrase)
            raise UpstreamAuthError(f"Failed to get signed URL: {response.status_code} {response.reason_phrase}")

        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Signed URL response is not JSON") from exc

        signed_url = data.get("signed_url") if isinstance(data, dict) else None
        if not isinstance(signed_url, str) or not signed_url:
            raise MalformedResponseError("Signed URL response has no signed_url field")
        return signed_url


async def connect_conversation(signed_url: str):
    """Open the conversation websocket for a signed URL."""

    try:
        return await websockets.connect(signed_url, ping_interval=20, ping_timeout=20)
    except (OSError, websockets.exceptions.WebSocketException) as exc:
        LOGGER.error("Failed to open ElevenLabs websocket: %s", exc)
        raise UpstreamUnavailableError(f"Failed to open ElevenLabs websocket: {exc}") from exc
