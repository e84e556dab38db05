"""Booking service - Business logic for booking operations"""

import logging
import math
from datetime import datetime, time
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import ORG_ADMIN_ROLES, UserContext
from ...email_service import (
    send_booking_cancelled,
    send_booking_confirmation,
    send_booking_rescheduled,
)
from ...errors import (
    ConflictError,
    ExternalServiceError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from ...models import Booking, Member, Specialist, utc_now
from ...services.acuity_service import AcuityAPIError, get_acuity_service
from ...services.audit_service import AuditService
from ...shared.validators import isoformat, parse_date, parse_datetime, validate_uuid
from .intake import (
    build_examinee,
    extract_examinee_data,
    get_or_create_user_referrer,
    missing_examinee_fields,
)
from .repository import BookingRepository
from .schemas import BookingCreate

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
CLOSING_PROGRESS = {"cancelled", "no-show"}
COMPLETING_PROGRESS = {"payment-received"}


# ============================================================================
# ACCESS
# ============================================================================


def is_org_admin_for(db: Session, user_id: str, organization_id: str) -> bool:
    return (
        db.query(Member)
        .filter(
            Member.user_id == user_id,
            Member.organization_id == organization_id,
            Member.role.in_(ORG_ADMIN_ROLES),
        )
        .first()
        is not None
    )


def can_access_booking(db: Session, ctx: UserContext, booking: Booking) -> bool:
    """Admin, the booking's referrer, the assigned specialist, or an org owner/manager"""
    if ctx.is_admin:
        return True
    if booking.referrer is not None and booking.referrer.user_id == ctx.user_id:
        return True
    if booking.specialist is not None and booking.specialist.user_id == ctx.user_id:
        return True
    return is_org_admin_for(db, ctx.user_id, booking.organization_id)


def can_change_progress(db: Session, ctx: UserContext, booking: Booking) -> bool:
    if ctx.is_admin:
        return True
    if booking.specialist is not None and booking.specialist.user_id == ctx.user_id:
        return True
    return is_org_admin_for(db, ctx.user_id, booking.organization_id)


# ============================================================================
# SERIALIZATION
# ============================================================================


def current_progress(booking: Booking) -> str:
    if booking.progress:
        return booking.progress[-1].to_status
    return "scheduled"


def serialize_booking(booking: Booking, include_progress: bool = False) -> dict:
    data = {
        "id": booking.id,
        "organizationId": booking.organization_id,
        "teamId": booking.team_id,
        "createdById": booking.created_by_id,
        "status": booking.status,
        "type": booking.type,
        "duration": booking.duration,
        "location": booking.location,
        "dateTime": isoformat(booking.date_time),
        "acuityAppointmentId": booking.acuity_appointment_id,
        "acuityAppointmentTypeId": booking.acuity_appointment_type_id,
        "acuityCalendarId": booking.acuity_calendar_id,
        "scheduledAt": isoformat(booking.scheduled_at),
        "completedAt": isoformat(booking.completed_at),
        "cancelledAt": isoformat(booking.cancelled_at),
        "createdAt": isoformat(booking.created_at),
        "updatedAt": isoformat(booking.updated_at),
        "currentProgress": current_progress(booking),
        "specialist": None,
        "examinee": None,
        "referrer": None,
    }
    if booking.specialist:
        s = booking.specialist
        data["specialist"] = {
            "id": s.id,
            "name": s.name,
            "slug": s.slug,
            "image": s.image,
            "specialty": s.specialty,
            "userId": s.user_id,
        }
    if booking.examinee:
        e = booking.examinee
        data["examinee"] = {
            "id": e.id,
            "firstName": e.first_name,
            "lastName": e.last_name,
            "dateOfBirth": e.date_of_birth,
            "address": e.address,
            "email": e.email,
            "phoneNumber": e.phone_number,
            "authorizedContact": e.authorized_contact,
            "condition": e.condition,
            "caseType": e.case_type,
        }
    if booking.referrer:
        r = booking.referrer
        data["referrer"] = {
            "id": r.id,
            "organizationId": r.organization_id,
            "userId": r.user_id,
            "firstName": r.first_name,
            "lastName": r.last_name,
            "email": r.email,
            "phone": r.phone,
            "jobTitle": r.job_title,
        }
    if include_progress:
        data["progress"] = [
            {
                "id": p.id,
                "fromStatus": p.from_status,
                "toStatus": p.to_status,
                "changedById": p.changed_by_id,
                "notes": p.notes,
                "createdAt": isoformat(p.created_at),
            }
            for p in booking.progress
        ]
    return data


def _matches_search(booking: Booking, term: str) -> bool:
    examinee = booking.examinee
    if examinee is None:
        return False
    haystack = (examinee.first_name, examinee.last_name, examinee.email)
    return any(term in (value or "").lower() for value in haystack)


def _full_name(first: Optional[str], last: Optional[str]) -> str:
    return f"{first or ''} {last or ''}".strip()


class BookingService:
    """Service layer for booking business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = BookingRepository()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_bookings(
        self,
        ctx: UserContext,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        specialist_id: Optional[str] = None,
        specialist_ids: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> dict:
        if status and status not in ("active", "closed", "archived"):
            raise ValidationError(f"Invalid status: {status}")
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)

        try:
            start = datetime.combine(parse_date(start_date), time.min) if start_date else None
            end = datetime.combine(parse_date(end_date), time.max) if end_date else None
        except ValueError as e:
            raise ValidationError("Dates must use YYYY-MM-DD") from e

        ids: list[str] = []
        if specialist_id:
            ids.append(specialist_id)
        if specialist_ids:
            ids.extend(s.strip() for s in specialist_ids.split(",") if s.strip())

        query = self.repo.base_query(self.db)
        if ctx.is_admin:
            pass
        elif ctx.is_org_admin:
            query = query.filter(Booking.organization_id == ctx.organization_id)
        elif ctx.specialist is not None:
            query = query.filter(Booking.specialist_id == ctx.specialist.id)
        else:
            referrer_ids = self.repo.referrer_ids_for_user(self.db, ctx.user_id)
            query = query.filter(Booking.referrer_id.in_(referrer_ids))

        query = self.repo.apply_filters(query, status, start, end, ids)
        query = query.order_by(Booking.date_time.desc(), Booking.created_at.desc())

        if search and search.strip():
            # Examinee details are encrypted, so matching happens after decryption
            term = search.strip().lower()
            matched = [b for b in query.all() if _matches_search(b, term)]
            total = len(matched)
            rows = matched[(page - 1) * limit : page * limit]
        else:
            total = query.count()
            rows = query.offset((page - 1) * limit).limit(limit).all()

        return {
            "bookings": [serialize_booking(b) for b in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit) if total else 0,
            },
        }

    def get_booking(self, booking_id: str, ctx: UserContext) -> Booking:
        if not validate_uuid(booking_id):
            raise ValidationError("Invalid booking ID format")
        booking = self.repo.get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking")
        if not can_access_booking(self.db, ctx, booking):
            logger.warning(f"🚫 User {ctx.user_id} denied access to booking {booking_id}")
            raise ForbiddenError("Access denied")
        return booking

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_booking(self, data: BookingCreate, ctx: UserContext, request=None) -> Booking:
        logger.info(f"📥 Creating booking for user {ctx.user_id}")

        organization = self.repo.get_organization_by_slug(self.db, data.organizationSlug)
        if not organization:
            raise NotFoundError("Organization")
        if not ctx.is_admin and not self.repo.get_membership(self.db, ctx.user_id, organization.id):
            raise ForbiddenError("You are not a member of this organization")

        specialist = self.repo.get_active_specialist(self.db, data.specialistId)
        if not specialist:
            raise NotFoundError("Specialist")

        try:
            date_time = parse_datetime(data.datetime)
        except ValueError as e:
            raise ValidationError("Invalid datetime") from e

        if self.repo.find_conflict(self.db, specialist.id, date_time):
            raise ConflictError("This time slot is already booked for the specialist")

        fields = [f.model_dump() for f in data.fields]
        examinee_data = extract_examinee_data(self.db, data.appointmentTypeId, fields)
        missing = missing_examinee_fields(examinee_data)
        if missing:
            raise ValidationError(
                f"Missing required examinee fields: {', '.join(missing)}",
                details={"missingFields": missing},
            )

        try:
            appointment = await get_acuity_service().create_appointment(
                datetime=data.datetime,
                appointment_type_id=data.appointmentTypeId,
                first_name=data.firstName,
                last_name=data.lastName,
                email=data.email,
                phone=data.phone,
                timezone=data.timezone,
                calendar_id=specialist.acuity_calendar_id,
                fields=fields,
            )
        except AcuityAPIError as e:
            logger.error(f"❌ Failed to create Acuity appointment: {e.message}")
            raise ExternalServiceError(
                "Failed to create appointment with scheduling provider",
                details={"code": e.code},
            ) from e

        referrer = get_or_create_user_referrer(
            self.db, organization.id, ctx.user, data.firstName, data.lastName, data.phone
        )
        examinee = build_examinee(referrer.id, examinee_data)
        self.db.add(examinee)
        self.db.flush()

        mapping = self.repo.get_specialist_type(self.db, specialist.id, data.appointmentTypeId)
        duration = _appointment_duration(appointment, mapping)
        booking_type = _appointment_mode(appointment, mapping)
        team = self.repo.get_first_team(self.db, organization.id)

        booking = Booking(
            organization_id=organization.id,
            team_id=team.id if team else None,
            created_by_id=ctx.user_id,
            referrer_id=referrer.id,
            specialist_id=specialist.id,
            examinee_id=examinee.id,
            status="active",
            type=booking_type,
            duration=duration,
            location=appointment.get("location") or None,
            date_time=date_time,
            acuity_appointment_id=appointment["id"],
            acuity_appointment_type_id=data.appointmentTypeId,
            acuity_calendar_id=appointment.get("calendarID") or specialist.acuity_calendar_id,
            metadata_={"timezone": data.timezone},
        )
        self.db.add(booking)
        self.db.flush()
        self.repo.add_progress(self.db, booking.id, "scheduled", ctx.user_id)
        self.db.commit()
        self.db.refresh(booking)
        logger.info(f"✅ Booking {booking.id} created (Acuity {appointment['id']})")

        self._audit(request, ctx, "booking.created", booking.id, {"specialistId": specialist.id})

        try:
            await send_booking_confirmation(
                to=referrer.email,
                referrer_name=_full_name(referrer.first_name, referrer.last_name),
                examinee_name=_full_name(examinee.first_name, examinee.last_name),
                specialist_name=specialist.name,
                appointment_time=booking.date_time,
                booking_id=booking.id,
                appointment_type=booking.type,
            )
        except Exception as e:
            logger.warning(f"⚠️ Booking confirmation email failed for {booking.id}: {e}")

        return booking

    def update_progress(
        self, booking_id: str, progress: str, ctx: UserContext, notes: Optional[str] = None, request=None
    ) -> Booking:
        booking = self.get_booking(booking_id, ctx)
        if not can_change_progress(self.db, ctx, booking):
            raise ForbiddenError("You do not have permission to update this booking's progress")

        previous = self.repo.latest_progress(self.db, booking.id)
        from_status = previous.to_status if previous else "scheduled"
        self.repo.add_progress(self.db, booking.id, progress, ctx.user_id, from_status, notes)

        if progress in CLOSING_PROGRESS:
            booking.status = "closed"
            booking.cancelled_at = utc_now()
        elif progress in COMPLETING_PROGRESS:
            booking.status = "closed"
            booking.completed_at = utc_now()

        self.db.commit()
        self.db.refresh(booking)
        logger.info(f"✅ Booking {booking.id} progress {from_status} -> {progress}")
        self._audit(
            request, ctx, "booking.progress_updated", booking.id, {"from": from_status, "to": progress}
        )
        return booking

    async def reschedule(
        self, booking_id: str, new_datetime: str, ctx: UserContext, timezone: Optional[str] = None, request=None
    ) -> Booking:
        booking = self.get_booking(booking_id, ctx)
        if booking.status != "active":
            raise ConflictError("Only active bookings can be rescheduled")

        try:
            date_time = parse_datetime(new_datetime)
        except ValueError as e:
            raise ValidationError("Invalid datetime") from e

        if booking.acuity_appointment_id:
            changes = {"datetime": new_datetime}
            if timezone:
                changes["timezone"] = timezone
            try:
                await get_acuity_service().update_appointment(booking.acuity_appointment_id, **changes)
            except AcuityAPIError as e:
                logger.error(f"❌ Failed to reschedule Acuity appointment {booking.acuity_appointment_id}: {e.message}")
                raise ExternalServiceError("Failed to reschedule appointment with scheduling provider") from e

        previous = self.repo.latest_progress(self.db, booking.id)
        old_time = booking.date_time
        booking.date_time = date_time
        self.repo.add_progress(
            self.db,
            booking.id,
            "rescheduled",
            ctx.user_id,
            previous.to_status if previous else "scheduled",
            f"Rescheduled from {isoformat(old_time)} to {isoformat(date_time)}",
        )
        self.db.commit()
        self.db.refresh(booking)
        logger.info(f"✅ Booking {booking.id} rescheduled to {date_time}")
        self._audit(request, ctx, "booking.rescheduled", booking.id, {"dateTime": isoformat(date_time)})

        await self._notify_referrer(booking, rescheduled=True)
        return booking

    async def cancel(self, booking_id: str, ctx: UserContext, no_show: bool = False, request=None) -> Booking:
        booking = self.get_booking(booking_id, ctx)
        if booking.status != "active":
            raise ConflictError("Only active bookings can be cancelled")

        if booking.acuity_appointment_id:
            try:
                await get_acuity_service().cancel_appointment(booking.acuity_appointment_id)
            except AcuityAPIError as e:
                logger.error(f"❌ Failed to cancel Acuity appointment {booking.acuity_appointment_id}: {e.message}")
                raise ExternalServiceError("Failed to cancel appointment with scheduling provider") from e

        previous = self.repo.latest_progress(self.db, booking.id)
        progress = "no-show" if no_show else "cancelled"
        booking.status = "closed"
        booking.cancelled_at = utc_now()
        self.repo.add_progress(
            self.db, booking.id, progress, ctx.user_id, previous.to_status if previous else "scheduled"
        )
        self.db.commit()
        self.db.refresh(booking)
        logger.info(f"✅ Booking {booking.id} closed ({progress})")
        self._audit(request, ctx, "booking.cancelled", booking.id, {"progress": progress})

        await self._notify_referrer(booking, no_show=no_show)
        return booking

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _notify_referrer(self, booking: Booking, rescheduled: bool = False, no_show: bool = False) -> None:
        referrer = booking.referrer
        if referrer is None or not referrer.email:
            return
        examinee = booking.examinee
        specialist: Optional[Specialist] = booking.specialist
        kwargs = {
            "to": referrer.email,
            "referrer_name": _full_name(referrer.first_name, referrer.last_name),
            "examinee_name": _full_name(examinee.first_name, examinee.last_name) if examinee else "",
            "specialist_name": specialist.name if specialist else "",
            "appointment_time": booking.date_time,
        }
        try:
            if rescheduled:
                await send_booking_rescheduled(booking_id=booking.id, **kwargs)
            else:
                await send_booking_cancelled(no_show=no_show, **kwargs)
        except Exception as e:
            logger.warning(f"⚠️ Booking notification email failed for {booking.id}: {e}")

    def _audit(self, request, ctx: UserContext, action: str, booking_id: str, metadata: dict) -> None:
        if request is not None:
            AuditService.log_request(self.db, request, ctx.user_id, action, "booking", booking_id, metadata)
        else:
            AuditService.log(self.db, ctx.user_id, action, "booking", booking_id, metadata)


def _appointment_duration(appointment: dict, mapping) -> Optional[int]:
    raw = appointment.get("duration")
    try:
        if raw is not None:
            return int(raw)
    except (TypeError, ValueError):
        pass
    if mapping is not None and mapping.appointment_type is not None:
        return mapping.appointment_type.duration
    return None


def _appointment_mode(appointment: dict, mapping) -> str:
    if mapping is not None and mapping.appointment_mode == "telehealth":
        return "telehealth"
    if "telehealth" in str(appointment.get("type", "")).lower():
        return "telehealth"
    return "in-person"
