"""Webhook payload schemas - Pydantic models for provider and automation callbacks"""

from typing import Optional

from pydantic import BaseModel


class IntakeField(BaseModel):
    id: int
    fieldID: Optional[int] = None
    value: str = ""
    name: Optional[str] = None


class AppointmentWebhook(BaseModel):
    """Automation callback for a new or updated Acuity appointment"""

    acuityAppointmentId: int
    location: str

    # Required only when the booking does not exist yet
    datetime: Optional[str] = None
    duration: Optional[int] = None
    acuityCalendarId: Optional[int] = None
    acuityAppointmentTypeId: Optional[int] = None
    type: Optional[str] = None
    referrerFirstName: Optional[str] = None
    referrerLastName: Optional[str] = None
    referrerEmail: Optional[str] = None
    referrerPhone: Optional[str] = None
    organizationName: Optional[str] = None
    fields: list[IntakeField] = []


class AppointmentCancellation(BaseModel):
    acuityAppointmentId: int


class AppointmentReschedule(BaseModel):
    acuityAppointmentId: int
    datetime: str
