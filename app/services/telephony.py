"""Outbound confirmation calls through Twilio"""

import asyncio
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode
from uuid import UUID

from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient
import structlog

from app.config import settings
from app.core.errors import TELEPHONY_NOT_CONFIGURED

logger = structlog.get_logger()

VOICE_WEBHOOK_PATH = "/webhooks/twilio/reservation"
STATUS_WEBHOOK_PATH = "/webhooks/twilio/call-status"


class CallPlacementError(Exception):
    """Twilio refused or could not be reached"""


@dataclass
class PlacedCall:
    call_sid: Optional[str]
    status: Optional[str]
    to: str


def webhook_url(path: str, reservation_id: UUID, **params: str) -> str:
    """Absolute webhook URL carrying the shared token and the reservation id"""
    query = {
        "token": settings.twilio_webhook_token,
        "reservation_id": str(reservation_id),
        **params,
    }
    return f"{settings.public_base_url.rstrip('/')}{path}?{urlencode(query)}"


class CallPlacer:
    """Places the outbound call that walks the restaurant through the voice menu"""

    def __init__(self, client: Optional[TwilioClient] = None):
        self._client = client

    @property
    def client(self) -> TwilioClient:
        if self._client is None:
            self._client = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)
        return self._client

    async def place(self, reservation_id: UUID, to: str) -> PlacedCall:
        if self._client is None and not settings.twilio_configured:
            logger.error("Twilio credentials missing", reservation_id=str(reservation_id))
            raise CallPlacementError(TELEPHONY_NOT_CONFIGURED)

        voice_url = webhook_url(VOICE_WEBHOOK_PATH, reservation_id)
        status_url = webhook_url(STATUS_WEBHOOK_PATH, reservation_id)

        try:
            call = await asyncio.to_thread(
                self.client.calls.create,
                to=to,
                from_=settings.twilio_from_number,
                url=voice_url,
                method="POST",
                status_callback=status_url,
                status_callback_method="POST",
                status_callback_event=["completed"],
            )
        except (TwilioException, OSError) as e:
            logger.error(
                "Outbound call failed",
                reservation_id=str(reservation_id),
                to=to,
                error=str(e),
            )
            raise CallPlacementError(str(e)) from e

        logger.info(
            "Outbound call placed",
            reservation_id=str(reservation_id),
            call_sid=call.sid,
            status=call.status,
        )
        return PlacedCall(call_sid=call.sid, status=call.status, to=to)


def get_call_placer() -> CallPlacer:
    """FastAPI dependency; tests override it with a fake"""
    return CallPlacer()
