"""Specialist repository - Database operations for specialists and their appointment types"""

from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import (
    AcuityAppointmentTypeForm,
    AcuityForm,
    AcuityFormField,
    AppForm,
    Specialist,
    SpecialistAppointmentType,
    utc_now,
)


class SpecialistRepository:
    """Repository for specialist database operations"""

    @staticmethod
    def list_specialists(
        db: Session,
        include_inactive: bool = False,
        appointment_type: Optional[str] = None,
    ) -> list[Specialist]:
        query = db.query(Specialist).options(joinedload(Specialist.user))
        if not include_inactive:
            query = query.filter(Specialist.is_active.is_(True))
        if appointment_type == "in_person":
            query = query.filter(Specialist.accepts_in_person.is_(True))
        elif appointment_type == "telehealth":
            query = query.filter(Specialist.accepts_telehealth.is_(True))
        elif appointment_type == "both":
            query = query.filter(
                Specialist.accepts_in_person.is_(True), Specialist.accepts_telehealth.is_(True)
            )
        return query.order_by(Specialist.position, Specialist.name).all()

    @staticmethod
    def get_specialist(db: Session, specialist_id: str) -> Optional[Specialist]:
        return (
            db.query(Specialist)
            .options(joinedload(Specialist.user))
            .filter(Specialist.id == specialist_id)
            .first()
        )

    @staticmethod
    def get_by_user_id(db: Session, user_id: str) -> Optional[Specialist]:
        return db.query(Specialist).filter(Specialist.user_id == user_id).first()

    @staticmethod
    def get_by_slug(db: Session, slug: str) -> Optional[Specialist]:
        return db.query(Specialist).filter(Specialist.slug == slug).first()

    @staticmethod
    def get_by_calendar_id(db: Session, calendar_id: int) -> Optional[Specialist]:
        return db.query(Specialist).filter(Specialist.acuity_calendar_id == calendar_id).first()

    @staticmethod
    def create_specialist(db: Session, **specialist_data) -> Specialist:
        specialist = Specialist(**specialist_data)
        db.add(specialist)
        db.commit()
        db.refresh(specialist)
        return specialist

    @staticmethod
    def update_specialist(db: Session, specialist: Specialist, **updates) -> Specialist:
        for field, value in updates.items():
            setattr(specialist, field, value)
        specialist.updated_at = utc_now()
        db.commit()
        db.refresh(specialist)
        return specialist

    @staticmethod
    def update_positions(db: Session, positions: dict[str, int]) -> int:
        """Apply all positions in one transaction; returns the number updated"""
        specialists = db.query(Specialist).filter(Specialist.id.in_(list(positions))).all()
        try:
            for specialist in specialists:
                specialist.position = positions[specialist.id]
                specialist.updated_at = utc_now()
            db.commit()
        except Exception:
            db.rollback()
            raise
        return len(specialists)

    # Appointment type mappings

    @staticmethod
    def enabled_types(db: Session, specialist_id: str) -> list[SpecialistAppointmentType]:
        """Enabled mappings whose provider appointment type is still active"""
        rows = (
            db.query(SpecialistAppointmentType)
            .options(joinedload(SpecialistAppointmentType.appointment_type))
            .filter(
                SpecialistAppointmentType.specialist_id == specialist_id,
                SpecialistAppointmentType.enabled.is_(True),
            )
            .order_by(SpecialistAppointmentType.appointment_type_id)
            .all()
        )
        return [r for r in rows if r.appointment_type is not None and r.appointment_type.active]

    @staticmethod
    def get_type_mapping(
        db: Session, specialist_id: str, appointment_type_id: int, enabled_only: bool = False
    ) -> Optional[SpecialistAppointmentType]:
        query = (
            db.query(SpecialistAppointmentType)
            .options(joinedload(SpecialistAppointmentType.appointment_type))
            .filter(
                SpecialistAppointmentType.specialist_id == specialist_id,
                SpecialistAppointmentType.appointment_type_id == appointment_type_id,
            )
        )
        if enabled_only:
            query = query.filter(SpecialistAppointmentType.enabled.is_(True))
        return query.first()

    @staticmethod
    def update_type_mapping(db: Session, mapping: SpecialistAppointmentType, **updates) -> SpecialistAppointmentType:
        for field, value in updates.items():
            setattr(mapping, field, value)
        mapping.updated_at = utc_now()
        db.commit()
        db.refresh(mapping)
        return mapping

    # Intake forms

    @staticmethod
    def linked_form_id(db: Session, appointment_type_id: int) -> Optional[int]:
        link = (
            db.query(AcuityAppointmentTypeForm)
            .filter(AcuityAppointmentTypeForm.appointment_type_id == appointment_type_id)
            .order_by(AcuityAppointmentTypeForm.form_id)
            .first()
        )
        return link.form_id if link else None

    @staticmethod
    def get_active_app_form(db: Session, acuity_form_id: int) -> Optional[AppForm]:
        return (
            db.query(AppForm)
            .options(joinedload(AppForm.fields))
            .filter(AppForm.acuity_form_id == acuity_form_id, AppForm.is_active.is_(True))
            .first()
        )

    @staticmethod
    def get_acuity_form(db: Session, form_id: int) -> Optional[AcuityForm]:
        return db.query(AcuityForm).filter(AcuityForm.id == form_id).first()

    @staticmethod
    def get_acuity_fields(db: Session, form_id: int) -> dict[int, AcuityFormField]:
        return {
            field.id: field
            for field in db.query(AcuityFormField).filter(AcuityFormField.form_id == form_id).all()
        }
