"""Specialist domain schemas - Pydantic models for validation"""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class SpecialistLocation(BaseModel):
    streetAddress: Optional[str] = None
    suburb: Optional[str] = None
    city: str
    state: str
    postalCode: Optional[str] = None
    country: str = "Australia"


class SlugCheckRequest(BaseModel):
    slug: str = Field(min_length=1)


class SpecialistSyncRequest(BaseModel):
    """Link an existing user to an Acuity calendar"""

    userId: str
    acuityCalendarId: int


class PositionUpdate(BaseModel):
    id: str
    position: int = Field(ge=0)


class SpecialistUpdate(BaseModel):
    """Partial specialist update; only fields sent are applied"""

    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = None
    image: Optional[str] = None
    specialty: Optional[str] = None
    location: Optional[SpecialistLocation] = None
    acceptsInPerson: Optional[bool] = None
    acceptsTelehealth: Optional[bool] = None
    isActive: Optional[bool] = None


class SpecialistAppointmentTypeUpdate(BaseModel):
    enabled: Optional[bool] = None
    appointmentMode: Optional[Literal["in-person", "telehealth"]] = None
    customDisplayName: Optional[str] = None
    customDescription: Optional[str] = None
    customPrice: Optional[float] = None
    notes: Optional[str] = None
