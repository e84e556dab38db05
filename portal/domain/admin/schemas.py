"""Admin domain schemas - Pydantic models for validation"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    metadata: Optional[dict] = None


class InvitationCreate(BaseModel):
    email: str
    role: Literal["owner", "manager", "team_lead", "member"] = "member"

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v):
        return validate_email(v)
