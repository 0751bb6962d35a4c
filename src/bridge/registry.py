from __future__ import annotations

import asyncio
import logging
from typing import Any

from starlette.websockets import WebSocket, WebSocketState

LOGGER = logging.getLogger(__name__)


class CallSessionRegistry:
    """In-memory map of call sid to the observer websocket watching that call.

    Note: This is a single-process registry. For multi-worker deployments,
    observers must connect to the worker that owns the media stream.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._observers: dict[str, WebSocket] = {}

    def __contains__(self, call_sid: object) -> bool:
        return call_sid in self._observers

    def __len__(self) -> int:
        return len(self._observers)

    async def register(self, call_sid: str, connection: WebSocket) -> None:
        async with self._lock:
            previous = self._observers.get(call_sid)
            self._observers[call_sid] = connection
        if previous is not None and previous is not connection:
            LOGGER.info("Replaced observer for callSid %s", call_sid)

    async def unregister(self, call_sid: str, connection: WebSocket | None = None) -> None:
        """Remove the observer for ``call_sid``.

        When ``connection`` is given, the entry is only removed if it still
        points at that connection.
        """

        async with self._lock:
            current = self._observers.get(call_sid)
            if current is None:
                return
            if connection is not None and current is not connection:
                return
            del self._observers[call_sid]

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._observers)
            self._observers.clear()
        return count

    async def lookup(self, call_sid: str) -> WebSocket | None:
        async with self._lock:
            return self._observers.get(call_sid)

    async def send(self, call_sid: str, event: dict[str, Any]) -> bool:
        """Push ``event`` to the observer of ``call_sid``; returns True if delivered."""

        connection = await self.lookup(call_sid)
        if connection is None or not _is_writable(connection):
            LOGGER.warning("No frontend client found for callSid %s", call_sid)
            return False

        try:
            await connection.send_json(event)
        except Exception as exc:
            LOGGER.warning("Dropping observer for callSid %s after send failure: %s", call_sid, exc)
            await self.unregister(call_sid, connection)
            return False
        return True


def _is_writable(connection: WebSocket) -> bool:
    return (
        connection.application_state == WebSocketState.CONNECTED
        and connection.client_state == WebSocketState.CONNECTED
    )
