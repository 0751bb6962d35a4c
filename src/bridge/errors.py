"""Domain-specific exceptions for the call bridge.

These exceptions are safe to import from API layers; each carries the HTTP
status used when it reaches a route boundary.
"""

from __future__ import annotations


class BridgeError(Exception):
    status_code: int = 500
    default_detail: str = "Bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ValidationError(BridgeError):
    status_code = 400
    default_detail = "Invalid request."


class TelephonyProviderError(BridgeError):
    status_code = 500
    default_detail = "Failed to initiate call"


class UpstreamAuthError(BridgeError):
    status_code = 502
    default_detail = "AI provider rejected the session request."


class UpstreamUnavailableError(BridgeError):
    status_code = 503
    default_detail = "AI provider is unreachable."


class MalformedResponseError(BridgeError):
    status_code = 502
    default_detail = "AI provider returned an unexpected response."


class ProtocolDecodeError(BridgeError):
    status_code = 400
    default_detail = "Malformed websocket frame."


class ConnectionClosedError(BridgeError):
    """A peer connection is gone; only ever used to drive session teardown."""

    default_detail = "Peer connection closed."
