"""Booking repository - Database operations for bookings"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Query, Session, joinedload

from ...models import (
    Booking,
    BookingProgress,
    Member,
    Organization,
    Referrer,
    Specialist,
    SpecialistAppointmentType,
    Team,
)


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def base_query(db: Session) -> Query:
        return db.query(Booking).options(
            joinedload(Booking.specialist),
            joinedload(Booking.examinee),
            joinedload(Booking.referrer),
        )

    @staticmethod
    def get_booking(db: Session, booking_id: str) -> Optional[Booking]:
        return (
            BookingRepository.base_query(db)
            .options(joinedload(Booking.progress))
            .filter(Booking.id == booking_id)
            .first()
        )

    @staticmethod
    def get_by_acuity_id(db: Session, acuity_appointment_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.acuity_appointment_id == acuity_appointment_id).first()

    @staticmethod
    def referrer_ids_for_user(db: Session, user_id: str) -> list[str]:
        return [row.id for row in db.query(Referrer.id).filter(Referrer.user_id == user_id).all()]

    @staticmethod
    def apply_filters(
        query: Query,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        specialist_ids: Optional[list[str]] = None,
    ) -> Query:
        if status:
            query = query.filter(Booking.status == status)
        if start:
            query = query.filter(Booking.date_time >= start)
        if end:
            query = query.filter(Booking.date_time <= end)
        if specialist_ids:
            query = query.filter(Booking.specialist_id.in_(specialist_ids))
        return query

    @staticmethod
    def find_conflict(db: Session, specialist_id: str, date_time: datetime) -> Optional[Booking]:
        return (
            db.query(Booking)
            .filter(
                Booking.specialist_id == specialist_id,
                Booking.date_time == date_time,
                Booking.status == "active",
            )
            .first()
        )

    @staticmethod
    def latest_progress(db: Session, booking_id: str) -> Optional[BookingProgress]:
        return (
            db.query(BookingProgress)
            .filter(BookingProgress.booking_id == booking_id)
            .order_by(BookingProgress.created_at.desc())
            .first()
        )

    @staticmethod
    def add_progress(
        db: Session,
        booking_id: str,
        to_status: str,
        changed_by_id: str,
        from_status: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BookingProgress:
        row = BookingProgress(
            booking_id=booking_id,
            from_status=from_status,
            to_status=to_status,
            changed_by_id=changed_by_id,
            notes=notes,
        )
        db.add(row)
        return row

    @staticmethod
    def get_organization_by_slug(db: Session, slug: str) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.slug == slug).first()

    @staticmethod
    def get_first_team(db: Session, organization_id: str) -> Optional[Team]:
        return (
            db.query(Team)
            .filter(Team.organization_id == organization_id)
            .order_by(Team.created_at)
            .first()
        )

    @staticmethod
    def get_membership(db: Session, user_id: str, organization_id: str) -> Optional[Member]:
        return (
            db.query(Member)
            .filter(Member.user_id == user_id, Member.organization_id == organization_id)
            .first()
        )

    @staticmethod
    def get_active_specialist(db: Session, specialist_id: str) -> Optional[Specialist]:
        return (
            db.query(Specialist)
            .filter(Specialist.id == specialist_id, Specialist.is_active.is_(True))
            .first()
        )

    @staticmethod
    def get_specialist_type(
        db: Session, specialist_id: str, appointment_type_id: int
    ) -> Optional[SpecialistAppointmentType]:
        return (
            db.query(SpecialistAppointmentType)
            .options(joinedload(SpecialistAppointmentType.appointment_type))
            .filter(
                SpecialistAppointmentType.specialist_id == specialist_id,
                SpecialistAppointmentType.appointment_type_id == appointment_type_id,
            )
            .first()
        )
