"""Specialist service - Profiles, ordering and availability lookups"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import Session

from ...auth import UserContext
from ...errors import ConflictError, ExternalServiceError, NotFoundError, ValidationError
from ...models import SPECIALTIES, Specialist, SpecialistAppointmentType
from ...services.acuity_service import AcuityAPIError, get_acuity_service
from ...services.audit_service import AuditService
from ...shared.validators import isoformat, parse_date, parse_datetime, slugify, validate_month, validate_uuid
from .repository import SpecialistRepository
from .schemas import (
    PositionUpdate,
    SpecialistAppointmentTypeUpdate,
    SpecialistSyncRequest,
    SpecialistUpdate,
)

logger = logging.getLogger(__name__)

MAX_AVAILABILITY_DAYS = 30
DEFAULT_SLOT_DURATION = 30

SPECIALIST_FIELD_COLUMNS = {
    "name": "name",
    "slug": "slug",
    "image": "image",
    "specialty": "specialty",
    "location": "location",
    "acceptsInPerson": "accepts_in_person",
    "acceptsTelehealth": "accepts_telehealth",
    "isActive": "is_active",
}

TYPE_MAPPING_COLUMNS = {
    "enabled": "enabled",
    "appointmentMode": "appointment_mode",
    "customDisplayName": "custom_display_name",
    "customDescription": "custom_description",
    "customPrice": "custom_price",
    "notes": "notes",
}

SPECIALIST_REQUIRED_FIELDS = ("name", "specialty", "acceptsInPerson", "acceptsTelehealth", "isActive")
TYPE_MAPPING_REQUIRED_FIELDS = ("enabled", "appointmentMode")


def _reject_nulls(changes: dict, required: tuple) -> None:
    nulls = [name for name in required if name in changes and changes[name] is None]
    if nulls:
        raise ValidationError(f"Fields cannot be null: {', '.join(nulls)}", details={"fields": nulls})


def serialize_specialist(specialist: Specialist, ctx: Optional[UserContext] = None) -> dict:
    """Public profile; admins and the specialist themselves also see account details"""
    user = specialist.user
    data = {
        "id": specialist.id,
        "name": specialist.name,
        "slug": specialist.slug,
        "image": specialist.image,
        "specialty": specialist.specialty,
        "location": specialist.location,
        "acceptsInPerson": bool(specialist.accepts_in_person),
        "acceptsTelehealth": bool(specialist.accepts_telehealth),
        "position": specialist.position,
        "isActive": specialist.is_active,
        "user": {"id": user.id, "name": user.name} if user else None,
        "createdAt": isoformat(specialist.created_at),
        "updatedAt": isoformat(specialist.updated_at),
    }
    if ctx is None or ctx.is_admin or ctx.user_id == specialist.user_id:
        data["userId"] = specialist.user_id
        data["acuityCalendarId"] = specialist.acuity_calendar_id
        if user:
            data["user"]["email"] = user.email
    return data


def serialize_type_mapping(mapping: SpecialistAppointmentType) -> dict:
    appointment_type = mapping.appointment_type
    return {
        "id": f"{mapping.specialist_id}_{mapping.appointment_type_id}",
        "acuityAppointmentTypeId": mapping.appointment_type_id,
        "name": mapping.custom_display_name or (appointment_type.name if appointment_type else "Unknown"),
        "description": mapping.custom_description or (appointment_type.description if appointment_type else None) or None,
        "duration": (appointment_type.duration if appointment_type else None) or DEFAULT_SLOT_DURATION,
        "category": (appointment_type.category if appointment_type else None) or None,
        "appointmentMode": mapping.appointment_mode,
        "enabled": mapping.enabled,
        "customPrice": float(mapping.custom_price) if mapping.custom_price is not None else None,
        "source": {
            "name": "override" if mapping.custom_display_name else "acuity",
            "description": "override" if mapping.custom_description else "acuity",
        },
    }


def _matches_location(specialist: Specialist, city: Optional[str], state: Optional[str]) -> bool:
    location = specialist.location or {}
    if city and city.strip().lower() not in (location.get("city") or "").lower():
        return False
    if state and state.strip().lower() != (location.get("state") or "").lower():
        return False
    return True


def _slot_sort_key(slot: dict) -> datetime:
    try:
        return parse_datetime(slot["datetime"])
    except (ValueError, KeyError):
        return datetime.max


class SpecialistService:
    """Service layer for specialist business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SpecialistRepository()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def list_specialists(
        self,
        ctx: UserContext,
        include_inactive: bool = False,
        appointment_type: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> list[dict]:
        if appointment_type and appointment_type not in ("in_person", "telehealth", "both"):
            raise ValidationError(f"Invalid appointment type: {appointment_type}")

        specialists = self.repo.list_specialists(self.db, include_inactive, appointment_type)
        if city or state:
            specialists = [s for s in specialists if _matches_location(s, city, state)]
        return [serialize_specialist(s, ctx) for s in specialists]

    def get_specialist(self, specialist_id: str) -> Specialist:
        if not validate_uuid(specialist_id):
            raise ValidationError("Invalid specialist ID format")
        specialist = self.repo.get_specialist(self.db, specialist_id)
        if not specialist:
            raise NotFoundError("Specialist")
        return specialist

    def get_active_specialist(self, specialist_id: str) -> Specialist:
        specialist = self.get_specialist(specialist_id)
        if not specialist.is_active:
            raise ValidationError("Specialist is not active")
        return specialist

    def is_slug_available(self, slug: str) -> bool:
        return self.repo.get_by_slug(self.db, slug) is None

    def unique_slug(self, name: str) -> str:
        base = slugify(name) or "specialist"
        slug, counter = base, 1
        while not self.is_slug_available(slug):
            counter += 1
            slug = f"{base}-{counter}"
        return slug

    async def sync_specialist(self, data: SpecialistSyncRequest, admin_id: str, request: Request) -> Specialist:
        """Create a specialist profile from an Acuity calendar"""
        if self.repo.get_by_user_id(self.db, data.userId):
            raise ValidationError("User is already registered as a specialist")
        if self.repo.get_by_calendar_id(self.db, data.acuityCalendarId):
            raise ValidationError("This Acuity calendar is already linked to another specialist")

        try:
            calendar = await get_acuity_service().get_calendar_by_id(data.acuityCalendarId)
        except AcuityAPIError as e:
            logger.error(f"❌ Failed to load Acuity calendar {data.acuityCalendarId}: {e.message}")
            raise ExternalServiceError(f"Acuity error: {e.message}", details={"code": e.code}) from e
        if not calendar:
            raise ValidationError("Invalid Acuity calendar ID - calendar not found")

        name = calendar.get("name") or f"Calendar {data.acuityCalendarId}"
        specialist = self.repo.create_specialist(
            self.db,
            user_id=data.userId,
            acuity_calendar_id=data.acuityCalendarId,
            name=name,
            slug=self.unique_slug(name),
            location=None,
            is_active=True,
        )
        logger.info(f"✅ Specialist {specialist.id} synced with Acuity calendar {data.acuityCalendarId}")
        AuditService.log_request(
            self.db,
            request,
            admin_id,
            "specialist.synced",
            "specialist",
            specialist.id,
            {"targetUserId": data.userId, "acuityCalendarId": data.acuityCalendarId},
        )
        return specialist

    def update_positions(self, updates: list[PositionUpdate], admin_id: str, request: Request) -> int:
        if not updates:
            raise ValidationError("At least one position is required")
        positions = [u.position for u in updates]
        if len(set(positions)) != len(positions):
            raise ValidationError("Duplicate positions are not allowed")
        ids = [u.id for u in updates]
        if len(set(ids)) != len(ids):
            raise ValidationError("Duplicate specialist IDs are not allowed")

        updated = self.repo.update_positions(self.db, {u.id: u.position for u in updates})
        if updated != len(updates):
            logger.warning(f"⚠️ Position update matched {updated} of {len(updates)} specialists")
        AuditService.log_request(
            self.db, request, admin_id, "specialist.positions_updated", "specialist", "positions",
            {"count": updated},
        )
        return updated

    def update_specialist(
        self, specialist_id: str, data: SpecialistUpdate, admin_id: str, request: Request
    ) -> Specialist:
        specialist = self.get_specialist(specialist_id)
        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(changes, SPECIALIST_REQUIRED_FIELDS)

        if changes.get("specialty") is not None and changes["specialty"] not in SPECIALTIES:
            raise ValidationError(f"Invalid specialty: {changes['specialty']}")
        if changes.get("slug"):
            existing = self.repo.get_by_slug(self.db, changes["slug"])
            if existing and existing.id != specialist.id:
                raise ConflictError("Slug is already in use")
        updates = {SPECIALIST_FIELD_COLUMNS[k]: v for k, v in changes.items()}
        specialist = self.repo.update_specialist(self.db, specialist, **updates)
        logger.info(f"✏️ Specialist {specialist.id} updated: {', '.join(changes) or 'no changes'}")
        AuditService.log_request(
            self.db, request, admin_id, "specialist.updated", "specialist", specialist.id,
            {"updates": list(changes)},
        )
        return specialist

    def set_active(self, specialist_id: str, active: bool, admin_id: str, request: Request) -> Specialist:
        specialist = self.get_specialist(specialist_id)
        specialist = self.repo.update_specialist(self.db, specialist, is_active=active)
        action = "specialist.activated" if active else "specialist.deactivated"
        logger.info(f"🔁 {action} {specialist.id}")
        AuditService.log_request(self.db, request, admin_id, action, "specialist", specialist.id)
        return specialist

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def get_availability(
        self,
        specialist_id: str,
        ctx: UserContext,
        request: Request,
        start_date: str,
        end_date: str,
        appointment_type_id: Optional[int] = None,
        timezone: Optional[str] = None,
    ) -> dict:
        specialist = self.get_active_specialist(specialist_id)
        try:
            start = parse_date(start_date)
            end = parse_date(end_date)
        except ValueError as e:
            raise ValidationError("Dates must use YYYY-MM-DD") from e
        if end < start:
            raise ValidationError("End date must not be before start date")
        if (end - start).days > MAX_AVAILABILITY_DAYS:
            raise ValidationError(f"Date range cannot exceed {MAX_AVAILABILITY_DAYS} days")

        if appointment_type_id is not None:
            mapping = self.repo.get_type_mapping(self.db, specialist.id, appointment_type_id)
            duration = (
                mapping.appointment_type.duration
                if mapping and mapping.appointment_type
                else DEFAULT_SLOT_DURATION
            )
            type_durations = [(appointment_type_id, duration)]
        else:
            type_durations = [
                (m.appointment_type_id, m.appointment_type.duration or DEFAULT_SLOT_DURATION)
                for m in self.repo.enabled_types(self.db, specialist.id)
            ]

        acuity = get_acuity_service()
        slots: list[dict] = []
        day = start
        while day <= end:
            date_str = day.isoformat()
            for type_id, duration in type_durations:
                try:
                    times = await acuity.get_availability_times(
                        type_id, specialist.acuity_calendar_id, date_str, timezone
                    )
                except Exception as e:
                    logger.warning(f"⚠️ Availability lookup failed for {date_str} (type {type_id}): {e}")
                    continue
                for slot in times:
                    value = slot.get("time") if isinstance(slot, dict) else None
                    if not value:
                        continue
                    slots.append(
                        {
                            "date": date_str,
                            "time": value,
                            "datetime": value,
                            "duration": duration,
                            "appointmentTypeId": type_id,
                            "available": True,
                        }
                    )
            day += timedelta(days=1)

        slots.sort(key=_slot_sort_key)
        AuditService.log_request(
            self.db,
            request,
            ctx.user_id,
            "specialist.availability_viewed",
            "specialist",
            specialist.id,
            {
                "startDate": start_date,
                "endDate": end_date,
                "appointmentTypeId": appointment_type_id,
                "timezone": timezone,
                "slotsFound": len(slots),
            },
        )
        return {
            "specialistId": specialist.id,
            "calendarId": specialist.acuity_calendar_id,
            "timeSlots": slots,
        }

    async def get_available_dates(
        self, specialist_id: str, ctx: UserContext, request: Request, month: str, appointment_type_id: int
    ) -> dict:
        if not validate_month(month):
            raise ValidationError("Month must be in YYYY-MM format")
        specialist = self.get_active_specialist(specialist_id)
        try:
            dates = await get_acuity_service().get_availability_dates(
                month, appointment_type_id, specialist.acuity_calendar_id
            )
        except AcuityAPIError as e:
            raise ExternalServiceError(f"Acuity error: {e.message}", details={"code": e.code}) from e

        AuditService.log_request(
            self.db, request, ctx.user_id, "specialist.available_dates_viewed", "specialist", specialist.id,
            {"month": month, "appointmentTypeId": appointment_type_id, "datesFound": len(dates)},
        )
        return {"specialistId": specialist.id, "month": month, "dates": dates}

    async def get_time_slots(
        self,
        specialist_id: str,
        ctx: UserContext,
        request: Request,
        date: str,
        appointment_type_id: int,
        timezone: Optional[str] = None,
    ) -> dict:
        specialist = self.get_active_specialist(specialist_id)
        try:
            parse_date(date)
        except ValueError as e:
            raise ValidationError("Date must use YYYY-MM-DD") from e
        try:
            times = await get_acuity_service().get_availability_times(
                appointment_type_id, specialist.acuity_calendar_id, date, timezone
            )
        except AcuityAPIError as e:
            raise ExternalServiceError(f"Acuity error: {e.message}", details={"code": e.code}) from e

        slots = [
            {"datetime": slot["time"], "appointmentTypeId": appointment_type_id}
            for slot in times
            if isinstance(slot, dict) and slot.get("time")
        ]
        AuditService.log_request(
            self.db, request, ctx.user_id, "specialist.time_slots_viewed", "specialist", specialist.id,
            {"date": date, "appointmentTypeId": appointment_type_id, "slotsFound": len(slots)},
        )
        return {"specialistId": specialist.id, "date": date, "timeSlots": slots}

    # ------------------------------------------------------------------
    # Appointment types and forms
    # ------------------------------------------------------------------

    def get_appointment_types(self, specialist_id: str) -> list[dict]:
        specialist = self.get_active_specialist(specialist_id)
        return [serialize_type_mapping(m) for m in self.repo.enabled_types(self.db, specialist.id)]

    def get_appointment_type_form(self, specialist_id: str, appointment_type_id: int) -> Optional[dict]:
        """Active intake form for an enabled appointment type, or None when none is configured"""
        mapping = self.repo.get_type_mapping(self.db, specialist_id, appointment_type_id, enabled_only=True)
        if not mapping:
            raise NotFoundError("Appointment type for this specialist")

        form_id = self.repo.linked_form_id(self.db, appointment_type_id)
        if form_id is None:
            return None
        app_form = self.repo.get_active_app_form(self.db, form_id)
        if app_form is None:
            return None

        acuity_fields = self.repo.get_acuity_fields(self.db, form_id)
        acuity_form = self.repo.get_acuity_form(self.db, form_id)
        fields = []
        for field in sorted(app_form.fields, key=lambda f: f.display_order):
            acuity_field = acuity_fields.get(field.acuity_field_id)
            fields.append(
                {
                    "id": field.id,
                    "acuityFieldId": field.acuity_field_id,
                    "customLabel": field.custom_label,
                    "placeholderText": field.placeholder_text,
                    "helpText": field.help_text,
                    "isRequired": field.is_required,
                    "isHidden": field.is_hidden,
                    "staticValue": field.static_value,
                    "examineeFieldMapping": field.examinee_field_mapping,
                    "displayOrder": field.display_order,
                    "displayWidth": field.display_width,
                    "acuityField": {
                        "id": acuity_field.id,
                        "name": acuity_field.name,
                        "type": acuity_field.type,
                        "options": acuity_field.options,
                        "required": acuity_field.required,
                    }
                    if acuity_field
                    else None,
                }
            )

        return {
            "id": app_form.id,
            "acuityFormId": app_form.acuity_form_id,
            "name": app_form.name,
            "description": app_form.description,
            "isActive": app_form.is_active,
            "fields": fields,
            "acuityForm": {
                "id": acuity_form.id,
                "name": acuity_form.name,
                "description": acuity_form.description,
            }
            if acuity_form
            else None,
        }

    def update_appointment_type(
        self,
        specialist_id: str,
        appointment_type_id: int,
        data: SpecialistAppointmentTypeUpdate,
        admin_id: str,
        request: Request,
    ) -> SpecialistAppointmentType:
        mapping = self.repo.get_type_mapping(self.db, specialist_id, appointment_type_id)
        if not mapping:
            raise NotFoundError("Specialist appointment type")

        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(changes, TYPE_MAPPING_REQUIRED_FIELDS)

        mapping = self.repo.update_type_mapping(
            self.db, mapping, **{TYPE_MAPPING_COLUMNS[k]: v for k, v in changes.items()}
        )
        logger.info(f"✏️ Appointment type {appointment_type_id} updated for specialist {specialist_id}")
        AuditService.log_request(
            self.db,
            request,
            admin_id,
            "specialist_appointment_type.updated",
            "specialist_appointment_type",
            f"{specialist_id}_{appointment_type_id}",
            {"updates": list(changes)},
        )
        return mapping
