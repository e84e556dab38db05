"""Booking router - FastAPI endpoints for booking operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...auth import UserContext, get_current_user_context
from ...database import get_db
from ...rate_limiter import booking_create_rate_limit
from .schemas import BookingCreate, CancelRequest, ProgressUpdate, RescheduleRequest
from .service import BookingService, serialize_booking

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db)


@router.get("")
async def list_bookings(
    status: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    specialistId: Optional[str] = Query(None),
    specialistIds: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: UserContext = Depends(get_current_user_context),
    service: BookingService = Depends(get_booking_service),
):
    """List bookings visible to the caller"""
    result = service.list_bookings(
        ctx,
        status=status,
        start_date=startDate,
        end_date=endDate,
        specialist_id=specialistId,
        specialist_ids=specialistIds,
        search=search,
        page=page,
        limit=limit,
    )
    return {"success": True, **result}


@router.get("/{booking_id}")
async def get_booking(
    booking_id: str,
    ctx: UserContext = Depends(get_current_user_context),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.get_booking(booking_id, ctx)
    return {"success": True, "booking": serialize_booking(booking, include_progress=True)}


@router.post("", status_code=201)
async def create_booking(
    data: BookingCreate,
    request: Request,
    _: None = Depends(booking_create_rate_limit),
    ctx: UserContext = Depends(get_current_user_context),
    service: BookingService = Depends(get_booking_service),
):
    """Create a booking and its Acuity appointment"""
    booking = await service.create_booking(data, ctx, request)
    return {"success": True, "id": booking.id, "message": "Booking created successfully"}


@router.post("/{booking_id}/progress")
async def update_progress(
    booking_id: str,
    data: ProgressUpdate,
    request: Request,
    ctx: UserContext = Depends(get_current_user_context),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.update_progress(booking_id, data.progress, ctx, data.notes, request)
    return {
        "success": True,
        "booking": serialize_booking(booking, include_progress=True),
        "message": "Progress updated successfully",
    }


@router.post("/{booking_id}/reschedule")
async def reschedule_booking(
    booking_id: str,
    data: RescheduleRequest,
    request: Request,
    ctx: UserContext = Depends(get_current_user_context),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.reschedule(booking_id, data.datetime, ctx, data.timezone, request)
    return {
        "success": True,
        "booking": serialize_booking(booking, include_progress=True),
        "message": "Booking rescheduled successfully",
    }


@router.post("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: str,
    request: Request,
    data: Optional[CancelRequest] = None,
    ctx: UserContext = Depends(get_current_user_context),
    service: BookingService = Depends(get_booking_service),
):
    no_show = data.noShow if data else False
    booking = await service.cancel(booking_id, ctx, no_show, request)
    return {
        "success": True,
        "booking": serialize_booking(booking, include_progress=True),
        "message": "Booking marked as no-show" if no_show else "Booking cancelled successfully",
    }
