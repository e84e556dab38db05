"""Admin router - FastAPI endpoints restricted to platform administrators"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...auth import require_admin
from ...database import get_db
from ...models import User
from .schemas import InvitationCreate, OrganizationCreate
from .service import AdminService, serialize_organization

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


def get_admin_service(db: Session = Depends(get_db)) -> AdminService:
    """Dependency injection for AdminService"""
    return AdminService(db)


@router.post("/integration/acuity/appointment-types/sync")
async def sync_appointment_types(
    request: Request,
    admin: User = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    """Pull appointment types from Acuity into the local catalogue"""
    result = await service.sync_appointment_types(admin, request)
    return {"success": True, **result, "message": "Appointment types synced successfully"}


@router.post("/integration/acuity/forms/sync")
async def sync_forms(
    request: Request,
    admin: User = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    result = await service.sync_forms(admin, request)
    return {"success": True, **result, "message": "Forms synced successfully"}


@router.post("/specialists/{specialist_id}/appointment-types/sync")
async def sync_specialist_appointment_types(
    specialist_id: str,
    request: Request,
    admin: User = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    result = service.sync_specialist_appointment_types(specialist_id, admin, request)
    return {"success": True, **result}


@router.get("/organizations")
async def list_organizations(
    _: User = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.list_organizations()}


@router.post("/organizations", status_code=201)
async def create_organization(
    data: OrganizationCreate,
    request: Request,
    admin: User = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    organization = service.create_organization(data, admin, request)
    return {"success": True, "data": serialize_organization(organization, 0)}


@router.post("/organizations/{organization_id}/invitations", status_code=201)
async def invite_member(
    organization_id: str,
    data: InvitationCreate,
    request: Request,
    admin: User = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    result = await service.invite_member(organization_id, data, admin, request)
    return {"success": True, "data": result}


@router.get("/audit-logs")
async def get_audit_logs(
    entityType: Optional[str] = Query(None),
    entityId: Optional[str] = Query(None),
    userId: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    _: User = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.get_audit_logs(entityType, entityId, userId, limit)}
