import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Append-only audit trail for PHI access and changes"""

    @staticmethod
    def log(
        db: Session,
        user_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        impersonated_by: Optional[str] = None,
    ) -> None:
        """Write an audit row. Never raises; a failed audit must not fail the request."""
        changes = dict(metadata or {})
        if impersonated_by:
            changes["impersonatedBy"] = impersonated_by
        try:
            db.add(
                AuditLog(
                    user_id=user_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    changes=changes or None,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )
            db.commit()
            logger.debug(f"📝 Audit {action} on {entity_type}:{entity_id} by {user_id}")
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to write audit log {action} for {entity_type}:{entity_id}: {e}")

    @staticmethod
    def log_request(db: Session, request, user_id: Optional[str], action: str, entity_type: str, entity_id: str, metadata=None) -> None:
        """Audit helper that pulls client details from the request"""
        forwarded = request.headers.get("X-Forwarded-For")
        ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
        AuditService.log(
            db,
            user_id,
            action,
            entity_type,
            entity_id,
            metadata=metadata,
            ip_address=ip,
            user_agent=request.headers.get("User-Agent"),
            impersonated_by=getattr(request.state, "impersonated_by", None),
        )
