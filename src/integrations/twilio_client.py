from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import quote, urlencode

from bridge.errors import TelephonyProviderError, ValidationError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    from_number: str
    public_base_url: str | None = None


def get_twilio_config() -> TwilioConfig:
    settings = get_settings()
    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_phone_number,
        public_base_url=settings.public_base_url.rstrip("/") if settings.public_base_url else None,
    )


def build_twilio_client():
    from twilio.rest import Client

    cfg = get_twilio_config()
    return Client(cfg.account_sid, cfg.auth_token)


def twiml_callback_url(base_url: str, *, prompt: str | None, first_message: str | None) -> str:
    query = urlencode(
        {"prompt": prompt or "", "first_message": first_message or ""},
        quote_via=quote,
    )
    return f"{base_url.rstrip('/')}/outbound-call-twiml?{query}"


class OutboundCallInitiator:
    """Places outbound calls whose media stream is routed back into this service."""

    def __init__(self, client, from_number: str) -> None:
        self._client = client
        self._from_number = from_number

    async def place_call(
        self,
        destination: str | None,
        *,
        prompt: str | None,
        first_message: str | None,
        callback_base_url: str,
    ) -> str:
        """Ask Twilio to dial ``destination``; returns the new call sid."""

        if not destination or not destination.strip():
            raise ValidationError("Phone number is required")

        url = twiml_callback_url(callback_base_url, prompt=prompt, first_message=first_message)
        try:
            # The Twilio SDK is blocking.
            call = await asyncio.to_thread(
                self._client.calls.create,
                from_=self._from_number,
                to=destination.strip(),
                url=url,
            )
        except Exception as exc:
            LOGGER.exception("Error initiating outbound call: %s", exc)
            raise TelephonyProviderError() from exc

        LOGGER.info("Outbound call %s initiated", call.sid)
        return str(call.sid)
