"""Twilio webhook handlers"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Form, Query, Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.request_validator import RequestValidator
import structlog

from app.config import settings
from app.database import get_db
from app.services import reconciler, records, voice

router = APIRouter()
logger = structlog.get_logger()


def twiml(content: str) -> Response:
    return Response(
        content=content,
        media_type="application/xml",
        headers={"Cache-Control": "no-store"},
    )


async def _authorized(request: Request, token: str) -> bool:
    """Shared token from the URL we handed Twilio, plus its signature when enabled"""
    if not settings.twilio_webhook_token or token != settings.twilio_webhook_token:
        return False

    if settings.twilio_validate_signature:
        form = await request.form()
        url = f"{settings.public_base_url.rstrip('/')}{request.url.path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"
        validator = RequestValidator(settings.twilio_auth_token)
        signature = request.headers.get("X-Twilio-Signature", "")
        return validator.validate(url, dict(form), signature)

    return True


def _parse_id(raw: str) -> Optional[UUID]:
    try:
        return UUID(raw.strip())
    except (AttributeError, ValueError):
        return None


async def _record_failure(db: AsyncSession, reservation_id: UUID, source: str, error: Exception) -> None:
    """Leave a trace for operators; the provider always gets a normal answer"""
    try:
        await db.rollback()
        await records.record_event(
            db,
            reservation_id,
            "webhook_error",
            actor_type="provider",
            data={"source": source, "error": str(error)},
        )
    except SQLAlchemyError:
        logger.exception("Could not record webhook failure", reservation_id=str(reservation_id))


@router.post("/reservation")
async def handle_reservation_voice(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token: str = Query(default=""),
    reservation_id: str = Query(default=""),
    stage: Optional[str] = Query(default=None),
    Digits: Optional[str] = Form(default=None),
    CallSid: Optional[str] = Form(default=None),
):
    """
    Serve one leg of the confirmation call.
    Returns TwiML; the stage marker in the URL says which prompt was answered.
    """
    if not await _authorized(request, token):
        logger.warning("Rejected voice webhook", reservation_id=reservation_id)
        return twiml(voice.hangup())

    rid = _parse_id(reservation_id)
    if rid is None:
        return twiml(voice.hangup())

    digits = Digits or request.query_params.get("Digits") or request.query_params.get("digits")

    logger.info(
        "Voice webhook",
        reservation_id=str(rid),
        call_sid=CallSid,
        stage=stage,
        digits=digits,
    )

    try:
        content = await voice.serve_leg(db, rid, voice.Stage.parse(stage), digits)
    except Exception as e:
        logger.exception("Voice webhook failed", reservation_id=str(rid), stage=stage)
        await _record_failure(db, rid, "voice", e)
        content = voice.hangup()

    return twiml(content)


@router.post("/call-status")
async def handle_call_status(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token: str = Query(default=""),
    reservation_id: str = Query(default=""),
    CallSid: Optional[str] = Form(default=None),
    CallStatus: Optional[str] = Form(default=None),
    CallDuration: Optional[str] = Form(default=None),
):
    """Handle call status updates from Twilio; always acknowledged"""
    logger.info(
        "Call status update",
        reservation_id=reservation_id,
        call_sid=CallSid,
        status=CallStatus,
        duration=CallDuration,
    )

    if not await _authorized(request, token):
        logger.warning("Rejected call status webhook", reservation_id=reservation_id)
        return {"status": "ok"}

    rid = _parse_id(reservation_id)
    if rid is None:
        return {"status": "ok"}

    try:
        await reconciler.reconcile_call_status(db, rid, CallSid, CallStatus)
    except Exception as e:
        logger.exception("Call status handling failed", reservation_id=str(rid), call_status=CallStatus)
        await _record_failure(db, rid, "call-status", e)

    return {"status": "ok"}
