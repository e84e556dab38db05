import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session as DbSession
from sqlalchemy.orm import joinedload

from .database import get_db
from .errors import ForbiddenError, UnauthorizedError
from .models import Member, Session, Specialist, Team, TeamMember, User, utc_now

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

SESSION_COOKIE_NAME = "session_token"
ORG_ADMIN_ROLES = ("owner", "manager")


@dataclass
class UserContext:
    """Everything permission checks need to know about the caller"""

    user: User
    is_admin: bool = False
    specialist: Optional[Specialist] = None
    organization_id: Optional[str] = None
    member_role: Optional[str] = None
    team_ids: list[str] = field(default_factory=list)

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def is_org_admin(self) -> bool:
        return self.member_role in ORG_ADMIN_ROLES

    @property
    def document_role(self) -> str:
        if self.is_admin:
            return "admin"
        if self.member_role in ("owner", "manager", "team_lead"):
            return self.member_role
        if self.specialist is not None:
            return "specialist"
        return "referrer"


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(SESSION_COOKIE_NAME)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: DbSession = Depends(get_db),
) -> User:
    """Resolve the session token (bearer header or cookie) to its user"""
    token = _extract_token(request, credentials)
    if not token:
        logger.debug("🚫 Request without session token")
        raise UnauthorizedError("Unauthorized")

    session = (
        db.query(Session)
        .options(joinedload(Session.user))
        .filter(Session.token == token)
        .first()
    )
    if not session:
        logger.warning("🚫 Unknown session token")
        raise UnauthorizedError("Invalid session")

    if session.expires_at <= utc_now():
        logger.info(f"🚫 Expired session for user {session.user_id}")
        raise UnauthorizedError("Session expired")

    user = session.user
    if user is None:
        raise UnauthorizedError("Invalid session")

    if user.banned:
        logger.warning(f"🚫 Banned user {user.id} attempted access")
        raise ForbiddenError(user.ban_reason or "Your account has been banned")

    request.state.user = user
    request.state.session = session
    if session.impersonated_by:
        request.state.impersonated_by = session.impersonated_by
        logger.info(f"🔍 User {user.id} impersonated by {session.impersonated_by}")

    logger.debug(f"✅ User authenticated: {user.id}")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        logger.warning(f"🚫 Non-admin user {user.id} attempted admin route")
        raise ForbiddenError("Forbidden: Insufficient permissions")
    return user


def get_user_context(db: DbSession, user: User, organization_id: Optional[str] = None) -> UserContext:
    """Load admin flag, specialist profile and organization membership"""
    specialist = db.query(Specialist).filter(Specialist.user_id == user.id).first()

    query = db.query(Member).filter(Member.user_id == user.id)
    if organization_id:
        query = query.filter(Member.organization_id == organization_id)
    membership = query.order_by(Member.created_at).first()

    team_ids: list[str] = []
    if membership:
        team_ids = [
            row.team_id
            for row in db.query(TeamMember)
            .join(Team, Team.id == TeamMember.team_id)
            .filter(
                TeamMember.user_id == user.id,
                Team.organization_id == membership.organization_id,
            )
            .all()
        ]

    return UserContext(
        user=user,
        is_admin=user.is_admin,
        specialist=specialist,
        organization_id=membership.organization_id if membership else None,
        member_role=membership.role if membership else None,
        team_ids=team_ids,
    )


async def get_current_user_context(
    request: Request,
    user: User = Depends(get_current_user),
    db: DbSession = Depends(get_db),
) -> UserContext:
    session = getattr(request.state, "session", None)
    active_org = session.active_organization_id if session else None
    return get_user_context(db, user, active_org)
