"""Webhook service - Keeps bookings in step with Acuity appointment changes"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...cache import invalidate_availability_cache
from ...errors import NotFoundError, ValidationError
from ...models import Booking, WebhookEvent, utc_now
from ...services.acuity_service import get_acuity_service
from ...shared.validators import parse_datetime, slugify
from ..bookings.intake import (
    build_examinee,
    extract_examinee_data,
    find_or_create_referrer,
    missing_examinee_fields,
)
from ..bookings.repository import BookingRepository
from ..specialists.repository import SpecialistRepository
from .schemas import AppointmentCancellation, AppointmentReschedule, AppointmentWebhook

logger = logging.getLogger(__name__)

RESCHEDULE_ACTIONS = ("rescheduled", "changed")
CANCEL_ACTIONS = ("canceled", "cancelled")


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class WebhookService:
    """Applies provider callbacks to local bookings"""

    def __init__(self, db: Session):
        self.db = db
        self.bookings = BookingRepository()
        self.specialists = SpecialistRepository()

    # ------------------------------------------------------------------
    # Shared state changes
    # ------------------------------------------------------------------

    def _current_progress(self, booking: Booking) -> str:
        latest = self.bookings.latest_progress(self.db, booking.id)
        return latest.to_status if latest else "scheduled"

    def _reschedule(self, booking: Booking, date_time, duration: Optional[int] = None) -> None:
        from_status = self._current_progress(booking)
        booking.date_time = date_time
        if duration:
            booking.duration = duration
        booking.updated_at = utc_now()
        self.bookings.add_progress(
            self.db, booking.id, "rescheduled", config.SYSTEM_USER_ID, from_status=from_status
        )

    def _close(self, booking: Booking) -> None:
        from_status = self._current_progress(booking)
        booking.status = "closed"
        booking.cancelled_at = utc_now()
        booking.updated_at = utc_now()
        if from_status != "cancelled":
            self.bookings.add_progress(
                self.db, booking.id, "cancelled", config.SYSTEM_USER_ID, from_status=from_status
            )

    # ------------------------------------------------------------------
    # Native Acuity callback
    # ------------------------------------------------------------------

    async def handle_acuity_event(self, payload: dict) -> WebhookEvent:
        """Record the callback, clear cached availability and apply the change"""
        action = str(payload.get("action") or "unknown").lower()
        appointment_id = _to_int(payload.get("id"))
        calendar_id = _to_int(payload.get("calendarID"))

        event = WebhookEvent(
            source="acuity",
            event_type=f"appointment.{action}",
            resource_id=str(appointment_id) if appointment_id is not None else None,
            payload=payload,
        )
        self.db.add(event)
        self.db.commit()

        invalidate_availability_cache(calendar_id)

        try:
            if action == "scheduled":
                logger.info(f"📅 Acuity appointment {appointment_id} scheduled; booking arrives via automation")
            elif action in RESCHEDULE_ACTIONS:
                await self._apply_provider_reschedule(appointment_id)
            elif action in CANCEL_ACTIONS:
                self._apply_provider_cancel(appointment_id)
            else:
                logger.debug(f"Unhandled Acuity action: {action}")
            event.processed_at = utc_now()
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to process Acuity {action} for appointment {appointment_id}: {e}")
            event.error = str(e)
            self.db.commit()

        return event

    async def _apply_provider_reschedule(self, appointment_id: Optional[int]) -> None:
        if appointment_id is None:
            raise ValueError("Missing appointment id")
        booking = self.bookings.get_by_acuity_id(self.db, appointment_id)
        if booking is None:
            logger.info(f"🔍 No booking for rescheduled Acuity appointment {appointment_id}")
            return
        appointment = await get_acuity_service().get_appointment(appointment_id)
        date_time = parse_datetime(appointment.get("datetime"))
        self._reschedule(booking, date_time, _to_int(appointment.get("duration")))
        logger.info(f"🔁 Booking {booking.id} moved to {date_time.isoformat()} from Acuity")

    def _apply_provider_cancel(self, appointment_id: Optional[int]) -> None:
        if appointment_id is None:
            raise ValueError("Missing appointment id")
        booking = self.bookings.get_by_acuity_id(self.db, appointment_id)
        if booking is None:
            logger.info(f"🔍 No booking for cancelled Acuity appointment {appointment_id}")
            return
        self._close(booking)
        logger.info(f"❌ Booking {booking.id} closed after Acuity cancellation")

    # ------------------------------------------------------------------
    # Automation callbacks
    # ------------------------------------------------------------------

    def upsert_appointment(self, data: AppointmentWebhook) -> tuple[Booking, bool]:
        """Create a booking from an automation payload; returns (booking, created)"""
        existing = self.bookings.get_by_acuity_id(self.db, data.acuityAppointmentId)
        if existing:
            existing.location = data.location
            existing.updated_at = utc_now()
            self.db.commit()
            logger.info(f"📍 Updated location for booking {existing.id}")
            return existing, False

        missing = [
            name
            for name, value in (
                ("datetime", data.datetime),
                ("duration", data.duration),
                ("acuityCalendarId", data.acuityCalendarId),
                ("acuityAppointmentTypeId", data.acuityAppointmentTypeId),
            )
            if value is None
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields for new booking: {', '.join(missing)}",
                details={"missing": missing},
            )

        try:
            date_time = parse_datetime(data.datetime)
        except ValueError as e:
            raise ValidationError("Invalid datetime format") from e

        specialist = self.specialists.get_by_calendar_id(self.db, data.acuityCalendarId)
        if not specialist:
            raise NotFoundError(f"Specialist for calendar {data.acuityCalendarId}")

        examinee_data = extract_examinee_data(
            self.db, data.acuityAppointmentTypeId, [f.model_dump() for f in data.fields]
        )
        missing = missing_examinee_fields(examinee_data)
        if missing:
            raise ValidationError(
                f"Missing required examinee fields: {', '.join(missing)}", details={"missing": missing}
            )

        organization_id = config.DEFAULT_ORGANIZATION_ID
        if data.organizationName:
            organization = self.bookings.get_organization_by_slug(self.db, slugify(data.organizationName))
            if organization:
                organization_id = organization.id
            else:
                logger.warning(f"⚠️ Organization '{data.organizationName}' not found, using default")
        team = self.bookings.get_first_team(self.db, organization_id)

        try:
            referrer = find_or_create_referrer(
                self.db,
                organization_id,
                data.referrerEmail,
                data.referrerFirstName,
                data.referrerLastName,
                data.referrerPhone,
            )
            examinee = build_examinee(referrer.id, examinee_data)
            self.db.add(examinee)
            self.db.flush()

            booking = Booking(
                organization_id=organization_id,
                team_id=team.id if team else None,
                created_by_id=config.SYSTEM_USER_ID,
                referrer_id=referrer.id,
                specialist_id=specialist.id,
                examinee_id=examinee.id,
                status="active",
                type="telehealth" if data.type and "telehealth" in data.type.lower() else "in-person",
                duration=data.duration,
                location=data.location,
                date_time=date_time,
                acuity_appointment_id=data.acuityAppointmentId,
                acuity_appointment_type_id=data.acuityAppointmentTypeId,
                acuity_calendar_id=data.acuityCalendarId,
            )
            self.db.add(booking)
            self.db.flush()
            self.bookings.add_progress(self.db, booking.id, "scheduled", config.SYSTEM_USER_ID)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"✅ Created booking {booking.id} from Acuity appointment {data.acuityAppointmentId}")
        return booking, True

    def cancel_appointment(self, data: AppointmentCancellation) -> Booking:
        booking = self.bookings.get_by_acuity_id(self.db, data.acuityAppointmentId)
        if not booking:
            raise NotFoundError("Booking")
        self._close(booking)
        self.db.commit()
        logger.info(f"❌ Booking {booking.id} cancelled from automation")
        return booking

    def reschedule_appointment(self, data: AppointmentReschedule) -> Booking:
        try:
            date_time = parse_datetime(data.datetime)
        except ValueError as e:
            raise ValidationError("Invalid datetime format") from e
        booking = self.bookings.get_by_acuity_id(self.db, data.acuityAppointmentId)
        if not booking:
            raise NotFoundError("Booking")
        self._reschedule(booking, date_time)
        self.db.commit()
        logger.info(f"🔁 Booking {booking.id} rescheduled from automation")
        return booking
