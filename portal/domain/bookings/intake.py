"""Turning submitted intake-form answers into referrer and examinee records"""

import logging
import time
from typing import Optional

from sqlalchemy.orm import Session

from ...encryption import hash_lookup_value
from ...models import (
    AcuityAppointmentTypeForm,
    AppForm,
    AppFormField,
    Examinee,
    Referrer,
    User,
)

logger = logging.getLogger(__name__)

REQUIRED_EXAMINEE_FIELDS = ("firstName", "lastName", "dateOfBirth", "address", "condition", "caseType")


def get_field_mappings(db: Session, appointment_type_id: Optional[int]) -> dict[int, str]:
    """Acuity field id -> examinee attribute, from the active forms of an appointment type"""
    query = (
        db.query(AppFormField.acuity_field_id, AppFormField.examinee_field_mapping)
        .join(AppForm, AppForm.id == AppFormField.app_form_id)
        .filter(AppForm.is_active.is_(True), AppFormField.examinee_field_mapping.isnot(None))
    )
    if appointment_type_id is not None:
        query = query.join(
            AcuityAppointmentTypeForm, AcuityAppointmentTypeForm.form_id == AppForm.acuity_form_id
        ).filter(AcuityAppointmentTypeForm.appointment_type_id == appointment_type_id)
    return {field_id: mapping for field_id, mapping in query.all()}


def extract_examinee_data(
    db: Session, appointment_type_id: Optional[int], fields: list[dict]
) -> dict[str, str]:
    """Collect mapped answers; Acuity sends fieldID, automation payloads may only carry id"""
    mappings = get_field_mappings(db, appointment_type_id)
    data: dict[str, str] = {}
    for field in fields or []:
        field_id = field.get("fieldID") if field.get("fieldID") is not None else field.get("id")
        mapping = mappings.get(field_id)
        value = field.get("value")
        if mapping and value:
            data[mapping] = str(value)
    return data


def missing_examinee_fields(data: dict[str, str]) -> list[str]:
    return [name for name in REQUIRED_EXAMINEE_FIELDS if not data.get(name)]


def build_examinee(referrer_id: str, data: dict[str, str]) -> Examinee:
    return Examinee(
        referrer_id=referrer_id,
        first_name=data["firstName"],
        last_name=data["lastName"],
        date_of_birth=data["dateOfBirth"],
        address=data["address"],
        email=data.get("email") or "n/a",
        phone_number=data.get("phoneNumber") or "",
        authorized_contact=data.get("authorizedContact", "").strip().lower() == "yes",
        condition=data["condition"],
        case_type=data["caseType"],
    )


def find_referrer_by_email(db: Session, organization_id: str, email: str) -> Optional[Referrer]:
    return (
        db.query(Referrer)
        .filter(
            Referrer.organization_id == organization_id,
            Referrer.email_hash == hash_lookup_value(email),
        )
        .first()
    )


def _new_referrer(
    db: Session,
    organization_id: str,
    email: str,
    first_name: Optional[str],
    last_name: Optional[str],
    phone: Optional[str],
    user_id: Optional[str] = None,
) -> Referrer:
    referrer = Referrer(
        organization_id=organization_id,
        user_id=user_id,
        first_name=first_name or "",
        last_name=last_name or "",
        email=email,
        email_hash=hash_lookup_value(email),
        phone=phone or "",
    )
    db.add(referrer)
    db.flush()
    logger.info(f"✅ Created referrer {referrer.id}")
    return referrer


def get_or_create_user_referrer(
    db: Session,
    organization_id: str,
    user: User,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
) -> Referrer:
    """
    The referrer record of a signed-in user within one organization.

    Only a record already linked to the user counts; the email typed into the
    booking form never selects or links an existing referrer.
    """
    linked = (
        db.query(Referrer)
        .filter(Referrer.user_id == user.id, Referrer.organization_id == organization_id)
        .first()
    )
    if linked:
        return linked

    first, _, last = (user.name or "").partition(" ")
    return _new_referrer(
        db,
        organization_id,
        user.email,
        first_name or first,
        last_name or last,
        phone,
        user_id=user.id,
    )


def find_or_create_referrer(
    db: Session,
    organization_id: str,
    email: Optional[str],
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
) -> Referrer:
    """Referrer for a provider callback: matched by email inside the organization, never linked to a user"""
    if email:
        existing = find_referrer_by_email(db, organization_id, email)
        if existing:
            logger.info(f"🔍 Found existing referrer {existing.id}")
            return existing
    else:
        email = f"unknown-{int(time.time() * 1000)}@placeholder.com"
        first_name = first_name or "Unknown"
        last_name = last_name or "Referrer"

    return _new_referrer(db, organization_id, email, first_name, last_name, phone)
