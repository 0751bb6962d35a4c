"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from fastapi import WebSocket

from bridge.media_bridge import AIConnector
from bridge.registry import CallSessionRegistry
from integrations.elevenlabs import SignedSessionFetcher, connect_conversation


def get_registry(websocket: WebSocket) -> CallSessionRegistry:
    # Created by the application lifespan.
    return websocket.app.state.registry


def get_session_fetcher() -> SignedSessionFetcher:
    return SignedSessionFetcher.from_settings()


def get_ai_connector() -> AIConnector:
    return connect_conversation
