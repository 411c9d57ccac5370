"""
Voice confirmation menu.

Every leg of the call is served from scratch: the stage marker in the action
URL plus the reservation id are all that is needed to continue, so any API
instance can answer any leg.

    (no stage) -> announce, gather  -> stage=start
    start      -> 1/2 decide, else re-prompt -> stage=retry
    retry      -> 1/2 decide, else last prompt -> stage=final
    final      -> 1/2 decide, else no_response
"""

import enum
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from twilio.twiml.voice_response import VoiceResponse, Gather
import structlog

from app.config import settings
from app.models.reservation import Reservation, ReservationStatus
from app.models.restaurant import TableStatus
from app.services import ledger, records
from app.services.telephony import VOICE_WEBHOOK_PATH, webhook_url

logger = structlog.get_logger()

BRAND = "Free Tables"

DIGIT_OUTCOMES = {
    "1": ReservationStatus.ACCEPTED,
    "2": ReservationStatus.DECLINED,
}

TABLE_AFTER = {
    ReservationStatus.ACCEPTED: TableStatus.RESERVED,
    ReservationStatus.DECLINED: TableStatus.FREE,
    ReservationStatus.NO_RESPONSE: TableStatus.FREE,
}

CLOSING_LINES = {
    ReservationStatus.ACCEPTED: "Thank you. The reservation is confirmed.",
    ReservationStatus.DECLINED: "All right. The reservation has been declined.",
    ReservationStatus.NO_RESPONSE: "No valid input received. The request is closed.",
}


class Stage(str, enum.Enum):
    """Which prompt the digits in this leg answer"""
    START = "start"
    RETRY = "retry"
    FINAL = "final"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["Stage"]:
        value = (raw or "").strip().lower()
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            # Unknown markers are treated as the last chance so a call can never loop
            return cls.FINAL


NEXT_PROMPT = {
    Stage.START: Stage.RETRY,
    Stage.RETRY: Stage.FINAL,
}


def _say(target, text: str) -> None:
    target.say(text, language=settings.voice_language, voice=settings.voice_name)


def prompt_lines(stage: Stage, reservation: Reservation) -> List[str]:
    """Prompt text for a stage, built from the stored reservation"""
    reserved_for = reservation.reserved_for or "A guest"
    seats = str(reservation.seats) if reservation.seats else "several"
    eta = str(reservation.eta_minutes) if reservation.eta_minutes else "a few"

    if stage == Stage.START:
        return [
            f"Hello, this is {BRAND}.",
            f"{reserved_for} would like to reserve a table for {seats} people.",
            f"The expected arrival is in about {eta} minutes.",
            "Press 1 to confirm.",
            "Or press 2 to decline.",
        ]
    if stage == Stage.RETRY:
        return [
            "Sorry, we did not get that.",
            "Please press only 1 or 2.",
            "1 means yes.",
            "2 means no.",
        ]
    return [
        "Last chance.",
        f"Press 1 to confirm the table for {reserved_for}, or 2 to decline.",
    ]


def menu(stage: Stage, reservation: Reservation) -> str:
    """Gather one digit; its answer comes back to the same URL marked with `stage`"""
    action = webhook_url(VOICE_WEBHOOK_PATH, reservation.id, stage=stage.value)

    response = VoiceResponse()
    response.pause(length=1)
    gather = Gather(
        input="dtmf",
        num_digits=1,
        timeout=settings.gather_timeout_seconds,
        action=action,
        method="POST",
        action_on_empty_result=True,
    )
    for i, line in enumerate(prompt_lines(stage, reservation)):
        if i:
            gather.pause(length=1)
        _say(gather, line)
    response.append(gather)
    _say(response, "No input received. Goodbye.")
    response.hangup()
    return str(response)


def announcement(text: str) -> str:
    response = VoiceResponse()
    _say(response, text)
    response.hangup()
    return str(response)


def already_processed() -> str:
    return announcement("This request has already been processed. Thank you.")


def technical_error() -> str:
    return announcement("A technical error occurred. Please try again later.")


def hangup() -> str:
    response = VoiceResponse()
    response.hangup()
    return str(response)


async def _decide(db: AsyncSession, reservation: Reservation, outcome: ReservationStatus) -> str:
    won = await records.transition_if_unanswered(
        db,
        reservation.id,
        outcome,
        actor_type="provider",
        actor_id=reservation.call_sid,
    )
    if not won:
        # Lost the race against another leg or the status callback
        return already_processed()

    await ledger.release_table(db, reservation.table_id, TABLE_AFTER[outcome])
    return announcement(CLOSING_LINES[outcome])


async def serve_leg(
    db: AsyncSession,
    reservation_id: UUID,
    stage: Optional[Stage],
    digits: Optional[str],
) -> str:
    """Serve one leg of the confirmation call and return its TwiML"""
    reservation = await records.get_reservation(db, reservation_id)
    if reservation is None:
        logger.warning("Voice leg for unknown reservation", reservation_id=str(reservation_id))
        return technical_error()

    if reservation.is_answered:
        logger.info(
            "Voice leg after response",
            reservation_id=str(reservation_id),
            stage=stage.value if stage else None,
            status=reservation.status,
        )
        return already_processed()

    if stage is None:
        return menu(Stage.START, reservation)

    digit = (digits or "").strip()
    logger.info(
        "Voice menu input",
        reservation_id=str(reservation_id),
        stage=stage.value,
        digits=digit or None,
    )

    outcome = DIGIT_OUTCOMES.get(digit)
    if outcome is not None:
        return await _decide(db, reservation, outcome)

    if stage in NEXT_PROMPT:
        return menu(NEXT_PROMPT[stage], reservation)

    return await _decide(db, reservation, ReservationStatus.NO_RESPONSE)
