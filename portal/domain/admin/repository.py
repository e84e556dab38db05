"""Admin repository - Database operations for provider sync, organizations and audit logs"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    AcuityAppointmentType,
    AcuityAppointmentTypeForm,
    AcuityForm,
    AcuityFormField,
    AuditLog,
    Member,
    Organization,
    Specialist,
    SpecialistAppointmentType,
    Team,
)


class AdminRepository:
    """Repository for admin database operations"""

    # Provider catalogue

    @staticmethod
    def all_appointment_types(db: Session) -> dict[int, AcuityAppointmentType]:
        return {t.id: t for t in db.query(AcuityAppointmentType).all()}

    @staticmethod
    def active_appointment_types(db: Session) -> list[AcuityAppointmentType]:
        return (
            db.query(AcuityAppointmentType)
            .filter(AcuityAppointmentType.active.is_(True))
            .order_by(AcuityAppointmentType.id)
            .all()
        )

    @staticmethod
    def known_form_ids(db: Session) -> set[int]:
        return {row.id for row in db.query(AcuityForm.id).all()}

    @staticmethod
    def replace_type_form_links(db: Session, appointment_type_id: int, form_ids: list[int]) -> None:
        db.query(AcuityAppointmentTypeForm).filter(
            AcuityAppointmentTypeForm.appointment_type_id == appointment_type_id
        ).delete(synchronize_session=False)
        for form_id in dict.fromkeys(form_ids):
            db.add(AcuityAppointmentTypeForm(appointment_type_id=appointment_type_id, form_id=form_id))

    @staticmethod
    def get_form(db: Session, form_id: int) -> Optional[AcuityForm]:
        return db.query(AcuityForm).filter(AcuityForm.id == form_id).first()

    @staticmethod
    def replace_form_fields(db: Session, form_id: int, fields: list[AcuityFormField]) -> None:
        db.query(AcuityFormField).filter(AcuityFormField.form_id == form_id).delete(
            synchronize_session=False
        )
        db.add_all(fields)

    # Specialist mappings

    @staticmethod
    def get_specialist(db: Session, specialist_id: str) -> Optional[Specialist]:
        return db.query(Specialist).filter(Specialist.id == specialist_id).first()

    @staticmethod
    def mapped_type_ids(db: Session, specialist_id: str) -> set[int]:
        return {
            row.appointment_type_id
            for row in db.query(SpecialistAppointmentType.appointment_type_id)
            .filter(SpecialistAppointmentType.specialist_id == specialist_id)
            .all()
        }

    # Organizations

    @staticmethod
    def list_organizations(db: Session) -> list[Organization]:
        return db.query(Organization).order_by(Organization.name).all()

    @staticmethod
    def get_organization(db: Session, organization_id: str) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.id == organization_id).first()

    @staticmethod
    def get_organization_by_slug(db: Session, slug: str) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.slug == slug).first()

    @staticmethod
    def create_organization(db: Session, name: str, slug: str, metadata: Optional[dict] = None) -> Organization:
        organization = Organization(name=name, slug=slug, metadata_=metadata)
        db.add(organization)
        db.flush()
        db.add(Team(organization_id=organization.id, name=name))
        db.commit()
        db.refresh(organization)
        return organization

    @staticmethod
    def count_members(db: Session, organization_id: str) -> int:
        return db.query(Member).filter(Member.organization_id == organization_id).count()

    # Audit

    @staticmethod
    def query_audit_logs(
        db: Session,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        query = db.query(AuditLog)
        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id:
            query = query.filter(AuditLog.entity_id == entity_id)
        if user_id:
            query = query.filter(AuditLog.user_id == user_id)
        return query.order_by(AuditLog.created_at.desc()).limit(limit).all()
