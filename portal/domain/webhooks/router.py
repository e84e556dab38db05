"""
Acuity Webhook Routes
Handles native Acuity callbacks and the automation callbacks that create bookings
"""

import json
import logging
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...errors import AppError, ValidationError
from ...rate_limiter import webhook_rate_limit
from ...webhook_security import verify_acuity_webhook
from .schemas import AppointmentCancellation, AppointmentReschedule, AppointmentWebhook
from .service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["acuity-webhooks"])


def get_webhook_service(db: Session = Depends(get_db)) -> WebhookService:
    """Dependency injection for WebhookService"""
    return WebhookService(db)


async def _verified_body(request: Request) -> bytes:
    _, body = await verify_acuity_webhook(request, config.ACUITY_WEBHOOK_SECRET, raise_on_failure=True)
    return body


def _parse_provider_payload(request: Request, body: bytes) -> dict:
    """Acuity posts form-encoded callbacks; JSON is accepted too"""
    content_type = request.headers.get("Content-Type", "")
    text = body.decode("utf-8") if body else ""
    if "application/json" in content_type:
        payload = json.loads(text or "{}")
        if not isinstance(payload, dict):
            raise ValidationError("Webhook payload must be an object")
        return payload
    return dict(parse_qsl(text, keep_blank_values=True))


def _parse_model(model: type[BaseModel], body: bytes):
    try:
        return model.model_validate_json(body or b"{}")
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid webhook payload",
            details=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
        ) from e


def _failure(error: Exception) -> JSONResponse:
    """Answer 200 so the sender does not retry a payload we cannot process"""
    return JSONResponse(status_code=200, content={"success": False, "error": str(error)})


@router.post("/acuity")
async def handle_acuity_webhook(
    request: Request,
    _: None = Depends(webhook_rate_limit),
    service: WebhookService = Depends(get_webhook_service),
):
    """
    Handle native Acuity webhook callbacks - Rate limited to 100 requests per minute
    Supported actions: scheduled, rescheduled, changed, canceled

    Security:
    - Signature verification using HMAC-SHA256 (X-Acuity-Signature)
    - Rate limiting to prevent abuse
    """
    body = await _verified_body(request)
    try:
        payload = _parse_provider_payload(request, body)
        logger.debug(f"📥 Received Acuity webhook: {payload.get('action')} {payload.get('id')}")
        event = await service.handle_acuity_event(payload)
        return {"success": True, "eventId": event.id, "processed": event.error is None}
    except Exception as e:
        logger.error(f"❌ Webhook processing error: {str(e)}")
        logger.exception("Full webhook error traceback:")
        return _failure(e)


@router.post("/appointment")
async def handle_appointment_webhook(
    request: Request,
    _: None = Depends(webhook_rate_limit),
    service: WebhookService = Depends(get_webhook_service),
):
    """Create a booking for a new Acuity appointment, or update an existing one's location"""
    body = await _verified_body(request)
    data = _parse_model(AppointmentWebhook, body)
    try:
        booking, created = service.upsert_appointment(data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"❌ Appointment webhook error: {str(e)}")
        logger.exception("Full webhook error traceback:")
        return _failure(e)

    if created:
        return JSONResponse(
            status_code=201,
            content={"success": True, "message": "Booking created successfully", "bookingId": booking.id},
        )
    return {"success": True, "message": "Booking location updated successfully", "bookingId": booking.id}


@router.delete("/appointment")
async def handle_appointment_cancellation(
    request: Request,
    _: None = Depends(webhook_rate_limit),
    service: WebhookService = Depends(get_webhook_service),
):
    body = await _verified_body(request)
    data = _parse_model(AppointmentCancellation, body)
    try:
        booking = service.cancel_appointment(data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"❌ Appointment cancellation webhook error: {str(e)}")
        return _failure(e)
    return {"success": True, "message": "Booking cancelled successfully", "bookingId": booking.id}


@router.put("/appointment")
async def handle_appointment_reschedule(
    request: Request,
    _: None = Depends(webhook_rate_limit),
    service: WebhookService = Depends(get_webhook_service),
):
    body = await _verified_body(request)
    data = _parse_model(AppointmentReschedule, body)
    try:
        booking = service.reschedule_appointment(data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"❌ Appointment reschedule webhook error: {str(e)}")
        return _failure(e)
    return {"success": True, "message": "Booking rescheduled successfully", "bookingId": booking.id}
