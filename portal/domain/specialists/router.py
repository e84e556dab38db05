"""Specialist router - FastAPI endpoints for specialists and their availability"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...auth import UserContext, get_current_user_context, require_admin
from ...database import get_db
from ...errors import ValidationError
from ...models import User
from .schemas import (
    PositionUpdate,
    SlugCheckRequest,
    SpecialistAppointmentTypeUpdate,
    SpecialistSyncRequest,
    SpecialistUpdate,
)
from .service import SpecialistService, serialize_specialist, serialize_type_mapping

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/specialists", tags=["Specialists"])


def get_specialist_service(db: Session = Depends(get_db)) -> SpecialistService:
    """Dependency injection for SpecialistService"""
    return SpecialistService(db)


def parse_type_id(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValidationError("Invalid appointment type ID") from None


# Static paths are declared before "/{specialist_id}"


@router.get("")
async def list_specialists(
    includeInactive: bool = Query(False),
    appointmentType: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    ctx: UserContext = Depends(get_current_user_context),
    service: SpecialistService = Depends(get_specialist_service),
):
    data = service.list_specialists(ctx, includeInactive, appointmentType, city, state)
    return {"success": True, "data": data}


@router.post("/check-slug")
async def check_slug(
    data: SlugCheckRequest,
    _: User = Depends(require_admin),
    service: SpecialistService = Depends(get_specialist_service),
):
    return {"available": service.is_slug_available(data.slug)}


@router.post("/sync")
async def sync_specialist(
    data: SpecialistSyncRequest,
    request: Request,
    admin: User = Depends(require_admin),
    service: SpecialistService = Depends(get_specialist_service),
):
    """Create a specialist profile from an Acuity calendar"""
    specialist = await service.sync_specialist(data, admin.id, request)
    return {
        "success": True,
        "data": serialize_specialist(specialist),
        "message": "Specialist successfully synchronized with Acuity calendar",
    }


@router.put("/positions")
async def update_positions(
    data: list[PositionUpdate],
    request: Request,
    admin: User = Depends(require_admin),
    service: SpecialistService = Depends(get_specialist_service),
):
    updated = service.update_positions(data, admin.id, request)
    return {"success": True, "updated": updated, "message": "Positions updated successfully"}


@router.get("/{specialist_id}")
async def get_specialist(
    specialist_id: str,
    ctx: UserContext = Depends(get_current_user_context),
    service: SpecialistService = Depends(get_specialist_service),
):
    specialist = service.get_specialist(specialist_id)
    return {"success": True, "data": serialize_specialist(specialist, ctx)}


@router.put("/{specialist_id}")
async def update_specialist(
    specialist_id: str,
    data: SpecialistUpdate,
    request: Request,
    admin: User = Depends(require_admin),
    service: SpecialistService = Depends(get_specialist_service),
):
    specialist = service.update_specialist(specialist_id, data, admin.id, request)
    return {
        "success": True,
        "data": serialize_specialist(specialist),
        "message": "Specialist updated successfully",
    }


@router.delete("/{specialist_id}/deactivate")
async def deactivate_specialist(
    specialist_id: str,
    request: Request,
    admin: User = Depends(require_admin),
    service: SpecialistService = Depends(get_specialist_service),
):
    specialist = service.set_active(specialist_id, False, admin.id, request)
    return {"success": True, "data": serialize_specialist(specialist), "message": "Specialist deactivated"}


@router.post("/{specialist_id}/activate")
async def activate_specialist(
    specialist_id: str,
    request: Request,
    admin: User = Depends(require_admin),
    service: SpecialistService = Depends(get_specialist_service),
):
    specialist = service.set_active(specialist_id, True, admin.id, request)
    return {"success": True, "data": serialize_specialist(specialist), "message": "Specialist activated"}


@router.get("/{specialist_id}/availability")
async def get_availability(
    specialist_id: str,
    request: Request,
    startDate: str = Query(...),
    endDate: str = Query(...),
    appointmentTypeId: Optional[int] = Query(None),
    timezone: Optional[str] = Query(None),
    ctx: UserContext = Depends(get_current_user_context),
    service: SpecialistService = Depends(get_specialist_service),
):
    """Time slots across a date range (at most 30 days)"""
    data = await service.get_availability(
        specialist_id, ctx, request, startDate, endDate, appointmentTypeId, timezone
    )
    return {"success": True, "data": data}


@router.get("/{specialist_id}/available-dates")
async def get_available_dates(
    specialist_id: str,
    request: Request,
    month: str = Query(...),
    appointmentTypeId: int = Query(...),
    ctx: UserContext = Depends(get_current_user_context),
    service: SpecialistService = Depends(get_specialist_service),
):
    data = await service.get_available_dates(specialist_id, ctx, request, month, appointmentTypeId)
    return {"success": True, "data": data}


@router.get("/{specialist_id}/time-slots")
async def get_time_slots(
    specialist_id: str,
    request: Request,
    date: str = Query(...),
    appointmentTypeId: int = Query(...),
    timezone: Optional[str] = Query(None),
    ctx: UserContext = Depends(get_current_user_context),
    service: SpecialistService = Depends(get_specialist_service),
):
    data = await service.get_time_slots(specialist_id, ctx, request, date, appointmentTypeId, timezone)
    return {"success": True, "data": data}


@router.get("/{specialist_id}/appointment-types")
async def get_appointment_types(
    specialist_id: str,
    ctx: UserContext = Depends(get_current_user_context),
    service: SpecialistService = Depends(get_specialist_service),
):
    return {"success": True, "data": service.get_appointment_types(specialist_id)}


@router.get("/{specialist_id}/appointment-types/{type_id}/form")
async def get_appointment_type_form(
    specialist_id: str,
    type_id: str,
    ctx: UserContext = Depends(get_current_user_context),
    service: SpecialistService = Depends(get_specialist_service),
):
    form = service.get_appointment_type_form(specialist_id, parse_type_id(type_id))
    if form is None:
        return {"success": True, "data": None, "message": "No form configured for this appointment type"}
    return {"success": True, "data": form}


@router.put("/{specialist_id}/appointment-types/{type_id}")
async def update_appointment_type(
    specialist_id: str,
    type_id: str,
    data: SpecialistAppointmentTypeUpdate,
    request: Request,
    admin: User = Depends(require_admin),
    service: SpecialistService = Depends(get_specialist_service),
):
    mapping = service.update_appointment_type(specialist_id, parse_type_id(type_id), data, admin.id, request)
    return {
        "success": True,
        "data": serialize_type_mapping(mapping),
        "message": "Appointment type configuration updated successfully",
    }
