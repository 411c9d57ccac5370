"""Call-outcome reconciler for Twilio status callbacks"""

import enum
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.models.reservation import ReservationStatus
from app.models.restaurant import TableStatus
from app.services import ledger, records

logger = structlog.get_logger()


class CallStatus(str, enum.Enum):
    """Twilio call lifecycle, closed over the values we act on"""
    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    FAILED = "failed"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "CallStatus":
        value = (raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


# The call never reached anyone who could answer
UNREACHED = {CallStatus.BUSY, CallStatus.FAILED, CallStatus.NO_ANSWER, CallStatus.CANCELED}


def outcome_for(status: CallStatus) -> Optional[ReservationStatus]:
    """Reservation outcome implied by a call status, None when there is nothing to do"""
    if status in UNREACHED:
        return ReservationStatus.FAILED
    if status == CallStatus.COMPLETED:
        # Digits are handled by the voice menu as they arrive; a completed
        # call that reaches us unanswered never produced a valid one.
        return ReservationStatus.NO_RESPONSE
    return None


async def reconcile_call_status(
    db: AsyncSession,
    reservation_id: UUID,
    call_sid: Optional[str],
    raw_status: Optional[str],
) -> Optional[ReservationStatus]:
    """
    Apply a call-status callback to its reservation.

    Call metadata is always stored first. The reservation only moves when it
    is still unanswered, via the responded-at guard, so duplicate or late
    callbacks are no-ops. Returns the status applied, if any.
    """
    status = CallStatus.parse(raw_status)
    reservation = await records.get_reservation(db, reservation_id)
    if reservation is None:
        logger.warning("Call status for unknown reservation", reservation_id=str(reservation_id))
        return None

    await records.record_call(db, reservation_id, call_sid or None, raw_status or None)
    await records.record_event(
        db,
        reservation_id,
        "call_status_received",
        actor_type="provider",
        actor_id=call_sid,
        data={"call_status": raw_status, "parsed": status.value},
    )

    if reservation.is_answered:
        logger.info(
            "Call status after response, ignoring",
            reservation_id=str(reservation_id),
            call_status=status.value,
            reservation_status=reservation.status,
        )
        return None

    outcome = outcome_for(status)
    if outcome is None:
        logger.info("Non-terminal call status", reservation_id=str(reservation_id), call_status=raw_status)
        return None

    won = await records.transition_if_unanswered(
        db,
        reservation_id,
        outcome,
        actor_type="provider",
        actor_id=call_sid,
    )
    if not won:
        return None

    await ledger.release_table(db, reservation.table_id, TableStatus.FREE)
    return outcome
