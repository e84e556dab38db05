"""Booking domain schemas - Pydantic models for validation"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email

ProgressStatus = Literal[
    "scheduled",
    "rescheduled",
    "cancelled",
    "no-show",
    "generating-report",
    "report-generated",
    "payment-received",
]


class FieldAnswer(BaseModel):
    id: int
    value: str


class BookingCreate(BaseModel):
    """Schema for creating a booking (and its Acuity appointment)"""

    appointmentTypeId: int
    datetime: str
    firstName: str = Field(min_length=1)
    lastName: str = Field(min_length=1)
    email: str
    phone: str = ""
    timezone: str
    organizationSlug: str
    specialistId: str
    fields: list[FieldAnswer] = []

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v):
        return validate_email(v)


class ProgressUpdate(BaseModel):
    progress: ProgressStatus
    notes: Optional[str] = None


class RescheduleRequest(BaseModel):
    datetime: str
    timezone: Optional[str] = None


class CancelRequest(BaseModel):
    noShow: bool = False
