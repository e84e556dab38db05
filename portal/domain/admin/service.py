"""Admin service - Acuity catalogue sync, organizations and audit log access"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional
from urllib.parse import urlencode

from fastapi import Request
from sqlalchemy.orm import Session

from ... import config
from ...cache import invalidate_appointment_types_cache
from ...email_service import send_organization_invitation
from ...errors import ConflictError, ExternalServiceError, NotFoundError, ValidationError
from ...models import (
    AcuityAppointmentType,
    AcuityForm,
    AcuityFormField,
    AuditLog,
    Organization,
    SpecialistAppointmentType,
    User,
    utc_now,
)
from ...services.acuity_service import AcuityAPIError, get_acuity_service
from ...services.audit_service import AuditService
from ...shared.validators import isoformat, slugify
from .repository import AdminRepository
from .schemas import InvitationCreate, OrganizationCreate

logger = logging.getLogger(__name__)

MAX_AUDIT_LOGS = 500


def _price(value) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def serialize_organization(organization: Organization, member_count: Optional[int] = None) -> dict:
    data = {
        "id": organization.id,
        "name": organization.name,
        "slug": organization.slug,
        "metadata": organization.metadata_,
        "createdAt": isoformat(organization.created_at),
        "teams": [{"id": t.id, "name": t.name} for t in organization.teams],
    }
    if member_count is not None:
        data["memberCount"] = member_count
    return data


def serialize_audit_log(log: AuditLog) -> dict:
    return {
        "id": log.id,
        "userId": log.user_id,
        "action": log.action,
        "entityType": log.entity_type,
        "entityId": log.entity_id,
        "changes": log.changes,
        "ipAddress": log.ip_address,
        "userAgent": log.user_agent,
        "createdAt": isoformat(log.created_at),
    }


class AdminService:
    """Service layer for admin-only operations"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AdminRepository()

    async def _fetch(self, what: str, call):
        try:
            return await call()
        except AcuityAPIError as e:
            logger.error(f"❌ Failed to fetch {what} from Acuity: {e.message}")
            raise ExternalServiceError(f"Acuity error: {e.message}", details={"code": e.code}) from e

    # ------------------------------------------------------------------
    # Acuity catalogue
    # ------------------------------------------------------------------

    async def sync_appointment_types(self, admin: User, request: Request) -> dict:
        """Upsert provider appointment types, deactivate missing ones and refresh form links"""
        invalidate_appointment_types_cache()
        remote_types = await self._fetch("appointment types", get_acuity_service().get_appointment_types)

        existing = self.repo.all_appointment_types(self.db)
        known_forms = self.repo.known_form_ids(self.db)
        seen: set[int] = set()
        created = updated = 0

        try:
            for remote in remote_types:
                type_id = remote.get("id")
                if not isinstance(type_id, int):
                    logger.warning(f"⚠️ Skipping appointment type without id: {remote!r}")
                    continue
                seen.add(type_id)

                values = {
                    "active": remote.get("active") is not False,
                    "name": remote.get("name") or "",
                    "description": remote.get("description") or "",
                    "duration": remote.get("duration") or 0,
                    "price": _price(remote.get("price")),
                    "category": remote.get("category") or "",
                    "color": remote.get("color"),
                    "private": remote.get("private") is True,
                    "calendar_ids": remote.get("calendarIDs") or [],
                    "scheduling_url": remote.get("schedulingUrl") or "",
                    "last_synced_at": utc_now(),
                }
                appointment_type = existing.get(type_id)
                if appointment_type is None:
                    self.db.add(AcuityAppointmentType(id=type_id, **values))
                    created += 1
                else:
                    for field, value in values.items():
                        setattr(appointment_type, field, value)
                    updated += 1

                self.db.flush()
                form_ids = [f for f in remote.get("formIDs") or [] if f in known_forms]
                self.repo.replace_type_form_links(self.db, type_id, form_ids)

            deactivated = 0
            for type_id, appointment_type in existing.items():
                if type_id not in seen and appointment_type.active:
                    appointment_type.active = False
                    appointment_type.last_synced_at = utc_now()
                    deactivated += 1

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        invalidate_appointment_types_cache()
        result = {"created": created, "updated": updated, "deactivated": deactivated}
        logger.info(f"🔄 Appointment types synced by {admin.id}: {result}")
        AuditService.log_request(
            self.db, request, admin.id, "acuity.appointment_types_synced", "acuity_appointment_type", "all", result
        )
        return {**result, "synced": created + updated}

    async def sync_forms(self, admin: User, request: Request) -> dict:
        """Upsert provider intake forms and replace their fields"""
        remote_forms = await self._fetch("forms", get_acuity_service().get_forms)
        created = updated = 0

        try:
            for remote in remote_forms:
                form = self.repo.get_form(self.db, remote["id"])
                values = {
                    "name": remote.get("name") or "",
                    "description": remote.get("description") or "",
                    "hidden": remote.get("hidden") is True,
                    "appointment_type_ids": remote.get("appointmentTypeIDs") or [],
                    "last_synced_at": utc_now(),
                }
                if form is None:
                    form = AcuityForm(id=remote["id"], **values)
                    self.db.add(form)
                    created += 1
                else:
                    for field, value in values.items():
                        setattr(form, field, value)
                    updated += 1
                self.db.flush()

                self.repo.replace_form_fields(
                    self.db,
                    form.id,
                    [
                        AcuityFormField(
                            id=field["id"],
                            form_id=form.id,
                            name=field["name"],
                            required=field.get("required") is True,
                            type=field["type"],
                            options=field.get("options") or None,
                            last_synced_at=utc_now(),
                        )
                        for field in remote.get("fields") or []
                    ],
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        result = {"created": created, "updated": updated}
        logger.info(f"🔄 Forms synced by {admin.id}: {result}")
        AuditService.log_request(self.db, request, admin.id, "acuity.forms_synced", "acuity_form", "all", result)
        return {**result, "synced": created + updated}

    def sync_specialist_appointment_types(self, specialist_id: str, admin: User, request: Request) -> dict:
        """Map every active provider type offered on the specialist's calendar"""
        specialist = self.repo.get_specialist(self.db, specialist_id)
        if not specialist:
            raise NotFoundError("Specialist")

        mapped = self.repo.mapped_type_ids(self.db, specialist.id)
        created = []
        for appointment_type in self.repo.active_appointment_types(self.db):
            if specialist.acuity_calendar_id not in (appointment_type.calendar_ids or []):
                continue
            if appointment_type.id in mapped:
                continue
            mode = "telehealth" if "telehealth" in appointment_type.name.lower() else "in-person"
            self.db.add(
                SpecialistAppointmentType(
                    specialist_id=specialist.id,
                    appointment_type_id=appointment_type.id,
                    enabled=True,
                    appointment_mode=mode,
                )
            )
            created.append(appointment_type.id)
        self.db.commit()

        logger.info(f"🔗 Mapped {len(created)} appointment types to specialist {specialist.id}")
        AuditService.log_request(
            self.db, request, admin.id, "specialist.appointment_types_synced", "specialist", specialist.id,
            {"created": created},
        )
        return {"created": len(created), "appointmentTypeIds": created}

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def list_organizations(self) -> list[dict]:
        return [
            serialize_organization(org, self.repo.count_members(self.db, org.id))
            for org in self.repo.list_organizations(self.db)
        ]

    def create_organization(self, data: OrganizationCreate, admin: User, request: Request) -> Organization:
        slug = slugify(data.slug or data.name)
        if not slug:
            raise ValidationError("Organization slug is required")
        if self.repo.get_organization_by_slug(self.db, slug):
            raise ConflictError("An organization with this slug already exists")

        organization = self.repo.create_organization(self.db, data.name.strip(), slug, data.metadata)
        logger.info(f"🏢 Organization {organization.id} ({slug}) created by {admin.id}")
        AuditService.log_request(
            self.db, request, admin.id, "organization.created", "organization", organization.id,
            {"name": organization.name, "slug": slug},
        )
        return organization

    async def invite_member(
        self, organization_id: str, data: InvitationCreate, admin: User, request: Request
    ) -> dict:
        organization = self.repo.get_organization(self.db, organization_id)
        if not organization:
            raise NotFoundError("Organization")

        query = urlencode({"organization": organization.slug, "email": data.email, "role": data.role})
        invitation_url = f"{config.FRONTEND_URL}/invitations/accept?{query}"

        email_sent = True
        try:
            await send_organization_invitation(
                data.email, organization.name, admin.name or "An administrator", data.role, invitation_url
            )
        except Exception as e:
            email_sent = False
            logger.warning(f"⚠️ Invitation email to {data.email} failed: {e}")

        AuditService.log_request(
            self.db, request, admin.id, "organization.member_invited", "organization", organization.id,
            {"email": data.email, "role": data.role, "emailSent": email_sent},
        )
        return {"email": data.email, "role": data.role, "emailSent": email_sent}

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def get_audit_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[dict]:
        limit = min(max(1, limit), MAX_AUDIT_LOGS)
        return [
            serialize_audit_log(log)
            for log in self.repo.query_audit_logs(self.db, entity_type, entity_id, user_id, limit)
        ]
