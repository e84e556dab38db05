"""Document repository - Database operations for booking documents"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Document, Member, TeamMember, utc_now


class DocumentRepository:
    """Repository for document database operations"""

    @staticmethod
    def get_document(db: Session, document_id: str, include_deleted: bool = False) -> Optional[Document]:
        query = db.query(Document).filter(Document.id == document_id)
        if not include_deleted:
            query = query.filter(Document.deleted_at.is_(None))
        return query.first()

    @staticmethod
    def list_for_booking(
        db: Session,
        booking_id: str,
        section: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Document]:
        query = db.query(Document).filter(
            Document.booking_id == booking_id, Document.deleted_at.is_(None)
        )
        if section:
            query = query.filter(Document.section == section)
        if category:
            query = query.filter(Document.category == category)
        return query.order_by(Document.created_at.desc()).all()

    @staticmethod
    def create_document(db: Session, **document_data) -> Document:
        document = Document(**document_data)
        db.add(document)
        db.commit()
        db.refresh(document)
        return document

    @staticmethod
    def soft_delete(db: Session, document: Document) -> Document:
        document.deleted_at = utc_now()
        db.commit()
        db.refresh(document)
        return document

    @staticmethod
    def is_team_lead_for(db: Session, user_id: str, organization_id: str, team_id: Optional[str]) -> bool:
        """Team lead of the organization who belongs to the given team"""
        if not team_id:
            return False
        is_lead = (
            db.query(Member)
            .filter(
                Member.user_id == user_id,
                Member.organization_id == organization_id,
                Member.role == "team_lead",
            )
            .first()
        )
        if not is_lead:
            return False
        return (
            db.query(TeamMember)
            .filter(TeamMember.user_id == user_id, TeamMember.team_id == team_id)
            .first()
            is not None
        )
