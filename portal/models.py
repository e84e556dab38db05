import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .encryption import EncryptedString


def generate_id():
    """Generate a UUID primary key"""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Naive UTC timestamp (columns are stored without tz info)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


BOOKING_STATUSES = ("active", "closed", "archived")
BOOKING_TYPES = ("in-person", "telehealth")
PROGRESS_STATUSES = (
    "scheduled",
    "rescheduled",
    "cancelled",
    "no-show",
    "generating-report",
    "report-generated",
    "payment-received",
)
SPECIALTIES = (
    "cardiology",
    "dermatology",
    "endocrinology",
    "gastroenterology",
    "neurology",
    "oncology",
    "orthopedics",
    "pediatrics",
    "psychiatry",
    "radiology",
    "general_practice",
    "other",
)
MEMBER_ROLES = ("owner", "manager", "team_lead", "member")
EXAMINEE_FIELD_MAPPINGS = (
    "firstName",
    "lastName",
    "dateOfBirth",
    "email",
    "phoneNumber",
    "address",
    "authorizedContact",
    "condition",
    "caseType",
)


# ============================================================================
# IDENTITY & ORGANIZATIONS
# ============================================================================


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False, default="")
    email = Column(String(255), unique=True, index=True, nullable=False)
    role = Column(String(100), nullable=True, default="user")  # comma separated
    banned = Column(Boolean, default=False, nullable=False)
    ban_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    sessions = relationship("Session", back_populates="user", cascade="all, delete-orphan")
    memberships = relationship("Member", back_populates="user", cascade="all, delete-orphan")
    specialist = relationship("Specialist", back_populates="user", uselist=False)

    @property
    def roles(self) -> list[str]:
        return [r.strip() for r in (self.role or "").split(",") if r.strip()]

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


class Session(Base):
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=generate_id)
    token = Column(String(255), unique=True, index=True, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    impersonated_by = Column(String(36), nullable=True)
    active_organization_id = Column(String(36), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="sessions")


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    teams = relationship("Team", back_populates="organization", cascade="all, delete-orphan")
    members = relationship("Member", back_populates="organization", cascade="all, delete-orphan")


class Team(Base):
    __tablename__ = "teams"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utc_now)

    organization = relationship("Organization", back_populates="teams")


class Member(Base):
    __tablename__ = "members"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="member")
    created_at = Column(DateTime, server_default=func.now())

    organization = relationship("Organization", back_populates="members")
    user = relationship("User", back_populates="memberships")


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="team_members_unique"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    team_id = Column(String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)


# ============================================================================
# PEOPLE (PII columns are encrypted at rest)
# ============================================================================


class Referrer(Base):
    __tablename__ = "referrers"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    first_name = Column(EncryptedString, nullable=False)
    last_name = Column(EncryptedString, nullable=False)
    email = Column(EncryptedString, nullable=False)
    email_hash = Column(String(64), index=True, nullable=True)  # sha256 of lower-cased email
    phone = Column(EncryptedString, nullable=True)
    job_title = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    examinees = relationship("Examinee", back_populates="referrer")


class Examinee(Base):
    __tablename__ = "examinees"

    id = Column(String(36), primary_key=True, default=generate_id)
    referrer_id = Column(String(36), ForeignKey("referrers.id"), nullable=False, index=True)
    first_name = Column(EncryptedString, nullable=False)
    last_name = Column(EncryptedString, nullable=False)
    date_of_birth = Column(EncryptedString, nullable=False)
    address = Column(EncryptedString, nullable=False)
    email = Column(EncryptedString, nullable=False)
    phone_number = Column(EncryptedString, nullable=True)
    authorized_contact = Column(Boolean, default=False, nullable=False)
    condition = Column(EncryptedString, nullable=False)
    case_type = Column(EncryptedString, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    referrer = relationship("Referrer", back_populates="examinees")


# ============================================================================
# SPECIALISTS & PROVIDER MIRROR TABLES
# ============================================================================


class Specialist(Base):
    __tablename__ = "specialists"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    acuity_calendar_id = Column(Integer, unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=True)
    image = Column(Text, nullable=True)
    specialty = Column(String(50), nullable=False, default="other")
    # {"streetAddress", "suburb", "city", "state", "postalCode", "country"}
    location = Column(JSON, nullable=True)
    accepts_in_person = Column(Boolean, default=False, nullable=False)
    accepts_telehealth = Column(Boolean, default=True, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="specialist")
    appointment_types = relationship(
        "SpecialistAppointmentType", back_populates="specialist", cascade="all, delete-orphan"
    )


class AcuityAppointmentType(Base):
    __tablename__ = "acuity_appointment_types"

    id = Column(Integer, primary_key=True, autoincrement=False)  # Acuity id
    active = Column(Boolean, nullable=False, default=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    duration = Column(Integer, nullable=False)  # minutes
    price = Column(Numeric(10, 2), nullable=True)
    category = Column(Text, nullable=False, default="")
    color = Column(String(20), nullable=True)
    private = Column(Boolean, nullable=False, default=False)
    calendar_ids = Column(JSON, nullable=False, default=list)
    scheduling_url = Column(Text, nullable=False, default="")
    last_synced_at = Column(DateTime, default=utc_now, nullable=False)


class SpecialistAppointmentType(Base):
    __tablename__ = "specialist_appointment_types"
    __table_args__ = (
        UniqueConstraint("specialist_id", "appointment_type_id", name="specialist_appointment_type_unique"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    specialist_id = Column(
        String(36), ForeignKey("specialists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    appointment_type_id = Column(
        Integer, ForeignKey("acuity_appointment_types.id", ondelete="CASCADE"), nullable=False
    )
    enabled = Column(Boolean, default=True, nullable=False)
    appointment_mode = Column(String(20), default="in-person", nullable=False)
    custom_display_name = Column(String(255), nullable=True)
    custom_description = Column(Text, nullable=True)
    custom_price = Column(Numeric(10, 2), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    specialist = relationship("Specialist", back_populates="appointment_types")
    appointment_type = relationship("AcuityAppointmentType")


class AcuityForm(Base):
    __tablename__ = "acuity_forms"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    hidden = Column(Boolean, nullable=False, default=False)
    appointment_type_ids = Column(JSON, nullable=False, default=list)
    last_synced_at = Column(DateTime, default=utc_now, nullable=False)

    fields = relationship("AcuityFormField", back_populates="form", cascade="all, delete-orphan")


class AcuityFormField(Base):
    __tablename__ = "acuity_form_fields"

    id = Column(Integer, primary_key=True, autoincrement=False)
    form_id = Column(Integer, ForeignKey("acuity_forms.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    required = Column(Boolean, nullable=False, default=False)
    type = Column(String(30), nullable=False)
    options = Column(JSON, nullable=True)
    last_synced_at = Column(DateTime, default=utc_now, nullable=False)

    form = relationship("AcuityForm", back_populates="fields")


class AcuityAppointmentTypeForm(Base):
    __tablename__ = "acuity_appointment_type_forms"

    appointment_type_id = Column(
        Integer, ForeignKey("acuity_appointment_types.id", ondelete="CASCADE"), primary_key=True
    )
    form_id = Column(Integer, ForeignKey("acuity_forms.id", ondelete="CASCADE"), primary_key=True)


class AppForm(Base):
    __tablename__ = "app_forms"

    id = Column(String(36), primary_key=True, default=generate_id)
    acuity_form_id = Column(Integer, ForeignKey("acuity_forms.id"), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    fields = relationship(
        "AppFormField",
        back_populates="app_form",
        cascade="all, delete-orphan",
        order_by="AppFormField.display_order",
    )


class AppFormField(Base):
    __tablename__ = "app_form_fields"
    __table_args__ = (UniqueConstraint("app_form_id", "acuity_field_id", name="app_form_fields_unique"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    app_form_id = Column(String(36), ForeignKey("app_forms.id", ondelete="CASCADE"), nullable=False)
    acuity_field_id = Column(Integer, nullable=False, index=True)
    custom_label = Column(String(255), nullable=True)
    placeholder_text = Column(String(255), nullable=True)
    help_text = Column(Text, nullable=True)
    is_required = Column(Boolean, default=False, nullable=False)
    is_hidden = Column(Boolean, default=False, nullable=False)
    static_value = Column(Text, nullable=True)
    examinee_field_mapping = Column(String(50), nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    display_width = Column(String(10), nullable=False, default="full")

    app_form = relationship("AppForm", back_populates="fields")


# ============================================================================
# BOOKINGS
# ============================================================================


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), nullable=False, index=True)
    team_id = Column(String(36), nullable=True)
    created_by_id = Column(String(36), nullable=False)
    referrer_id = Column(String(36), ForeignKey("referrers.id"), nullable=False, index=True)
    specialist_id = Column(String(36), ForeignKey("specialists.id"), nullable=False, index=True)
    examinee_id = Column(String(36), ForeignKey("examinees.id"), nullable=False)
    status = Column(String(20), nullable=False, default="active", index=True)
    type = Column(String(20), nullable=False, default="in-person")
    duration = Column(Integer, nullable=True)  # minutes
    location = Column(Text, nullable=True)
    date_time = Column(DateTime, nullable=True, index=True)
    acuity_appointment_id = Column(Integer, unique=True, nullable=True)
    acuity_appointment_type_id = Column(Integer, nullable=True)
    acuity_calendar_id = Column(Integer, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    scheduled_at = Column(DateTime, default=utc_now)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    referrer = relationship("Referrer")
    specialist = relationship("Specialist")
    examinee = relationship("Examinee")
    progress = relationship(
        "BookingProgress",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingProgress.created_at",
    )
    documents = relationship("Document", back_populates="booking")


class BookingProgress(Base):
    __tablename__ = "booking_progress"

    id = Column(String(36), primary_key=True, default=generate_id)
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(String(30), nullable=True)
    to_status = Column(String(30), nullable=False)
    changed_by_id = Column(String(36), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    booking = relationship("Booking", back_populates="progress")


# ============================================================================
# DOCUMENTS, WEBHOOKS, AUDIT
# ============================================================================


class Document(Base):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=generate_id)
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by_id = Column(String(36), nullable=False)
    section = Column(String(40), nullable=False)
    category = Column(String(40), nullable=False)
    s3_key = Column(EncryptedString, nullable=False)
    s3_bucket = Column(String(255), nullable=False)
    file_name = Column(EncryptedString, nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    booking = relationship("Booking", back_populates="documents")


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_id)
    source = Column(String(50), nullable=False, default="acuity")
    event_type = Column(String(100), nullable=False)
    resource_id = Column(String(100), nullable=True)
    payload = Column(JSON, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), nullable=True, index=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=False)
    changes = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, index=True)
