"""
Reservation error taxonomy.
Services raise these; a single exception handler in app.main turns them into
JSON responses, so routes stay thin and every failure carries a machine-readable code.
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

MISSING_FIELDS = "missing_fields"
INVALID_SEATS = "invalid_seats"
INVALID_ETA = "eta_minutes_must_be_1_to_20"
RESTAURANT_NOT_FOUND = "restaurant_not_found"
MISSING_RESTAURANT_PHONE = "missing_restaurant_phone"
TABLE_NOT_AVAILABLE = "table_not_available"
TABLE_NOT_IN_RESTAURANT = "table_not_in_restaurant"
ACTIVE_RESERVATION_EXISTS = "active_reservation_exists"
RESERVATION_NOT_FOUND = "not_found"
RESERVATION_NOT_PENDING = "reservation_not_pending"
FORBIDDEN = "forbidden"
INSERT_FAILED = "reservation_insert_failed"
CALL_FAILED = "twilio_call_failed"
TELEPHONY_NOT_CONFIGURED = "telephony_not_configured"


class ReservationError(Exception):
    """Base class; `code` is what API clients switch on"""

    status_code = 500

    def __init__(self, code: str, **extra: Any):
        super().__init__(code)
        self.code = code
        self.extra = extra

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.code, **self.extra}


class InvalidRequest(ReservationError):
    status_code = 400


class Forbidden(ReservationError):
    status_code = 403


class NotFound(ReservationError):
    status_code = 404


class Conflict(ReservationError):
    status_code = 409


class InternalFailure(ReservationError):
    status_code = 500


class UpstreamFailure(ReservationError):
    """Telephony provider rejected the request; safe to retry"""
    status_code = 502


async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
