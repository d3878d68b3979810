import logging
from datetime import datetime

from scheduler.core.errors import ConflictError, ForbiddenError, NotFoundError, PreconditionError, ValidationError
from scheduler.core.locks import scheduling_locks, slot_key
from scheduler.models.availability import AvailabilitySlot
from scheduler.models.booking import BOOKING_COMPLETED, BOOKING_CONFIRMED, Booking
from scheduler.models.user import ADMIN_ROLES, ROLE_INSTRUCTOR, ROLE_STUDENT, User
from scheduler.services.base import BaseService

logger = logging.getLogger(__name__)

FEEDBACK_FROM_STUDENT = 'student'
FEEDBACK_FROM_INSTRUCTOR = 'instructor'


class BookingService(BaseService):
    """Student claims on confirmed availability slots.

    A slot can be claimed by many students; each (slot, student) pair at most
    once. Bookings can be withdrawn until an instructor turns them into a
    concrete session.
    """

    def get_booking(self, booking_id: int, for_update: bool = False) -> Booking:
        query = self.db.query(Booking).filter(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        booking = query.first()
        if booking is None:
            raise NotFoundError('Booking not found.')
        return booking

    def _get_slot(self, availability_id: int, for_update: bool = False) -> AvailabilitySlot:
        query = self.db.query(AvailabilitySlot).filter(AvailabilitySlot.id == availability_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        slot = query.first()
        if slot is None:
            raise NotFoundError('Availability slot not found.')
        return slot

    def _refresh_booked_flag(self, slot: AvailabilitySlot) -> None:
        remaining = self.db.query(Booking.id).filter(Booking.availability_id == slot.id).first()
        slot.is_booked = remaining is not None

    def book(self, student_id: int, availability_id: int, notes: str | None = None) -> Booking:
        duplicate_message = 'You have already booked this slot.'

        with scheduling_locks.hold(slot_key(availability_id)), self.transaction(conflict_message=duplicate_message):
            slot = self._get_slot(availability_id, for_update=True)

            if not slot.is_confirmed:
                raise PreconditionError('This slot is not yet confirmed by the instructor.')

            existing = self.db.query(Booking.id).filter(
                Booking.availability_id == availability_id,
                Booking.student_id == student_id,
            ).first()
            if existing is not None:
                raise ConflictError(duplicate_message)

            booking = Booking(
                availability_id=availability_id,
                student_id=student_id,
                track_id=slot.track_id,
                status=BOOKING_CONFIRMED,
                student_notes=notes,
            )
            self.db.add(booking)
            slot.is_booked = True
            self.db.flush()

        self.db.refresh(booking)
        logger.info('Student %s booked availability slot %s', student_id, availability_id)
        return booking

    def cancel(self, student_id: int, booking_id: int) -> None:
        booking = self.get_booking(booking_id)

        with scheduling_locks.hold(slot_key(booking.availability_id)), self.transaction():
            booking = self.get_booking(booking_id, for_update=True)

            if booking.student_id != student_id:
                raise ForbiddenError('You can only cancel your own bookings.')
            if booking.status == BOOKING_COMPLETED:
                raise PreconditionError('Cannot cancel a completed booking.')
            if booking.session_id is not None:
                raise PreconditionError(
                    'Cannot cancel - instructor has already created a session for this booking. '
                    'Cancel the session instead.'
                )

            slot = self._get_slot(booking.availability_id, for_update=True)
            self.db.delete(booking)
            self.db.flush()
            self._refresh_booked_flag(slot)

        logger.info('Student %s cancelled booking %s', student_id, booking_id)

    def submit_feedback(self, actor: User, booking_id: int, role: str, note: str) -> Booking:
        if role not in (FEEDBACK_FROM_STUDENT, FEEDBACK_FROM_INSTRUCTOR):
            raise ValidationError("Feedback type must be 'student' or 'instructor'.")
        if not note or not note.strip():
            raise ValidationError('Feedback is required.')

        with self.transaction():
            booking = self.get_booking(booking_id, for_update=True)
            slot = self._get_slot(booking.availability_id)

            if role == FEEDBACK_FROM_STUDENT:
                if booking.student_id != actor.id:
                    raise ForbiddenError('You can only leave feedback for your own sessions.')
                booking.student_notes = note.strip()
                booking.feedback_given_at = datetime.now()
            else:
                if slot.instructor_id != actor.id:
                    raise ForbiddenError('You can only leave feedback for your own sessions.')
                booking.instructor_notes = note.strip()

            booking.status = BOOKING_COMPLETED

        self.db.refresh(booking)
        logger.info('Feedback from %s recorded on booking %s', role, booking_id)
        return booking

    def update_notes(
        self,
        actor: User,
        booking_id: int,
        student_notes: str | None = None,
        instructor_notes: str | None = None,
    ) -> Booking:
        with self.transaction():
            booking = self.get_booking(booking_id, for_update=True)
            slot = self._get_slot(booking.availability_id)

            is_student = actor.role == ROLE_STUDENT and actor.id == booking.student_id
            is_instructor = actor.role == ROLE_INSTRUCTOR and actor.id == slot.instructor_id
            is_admin = actor.role in ADMIN_ROLES

            if not (is_student or is_instructor or is_admin):
                raise ForbiddenError('You are not part of this booking.')
            if is_student and instructor_notes is not None:
                raise ForbiddenError('Students cannot update instructor notes.')
            if is_instructor and student_notes is not None:
                raise ForbiddenError('Instructors cannot update student notes.')

            if student_notes is not None:
                booking.student_notes = student_notes
            if instructor_notes is not None:
                booking.instructor_notes = instructor_notes

        self.db.refresh(booking)
        return booking

    def list_for_student(self, student_id: int) -> list[Booking]:
        return self.db.query(Booking).join(AvailabilitySlot).filter(
            Booking.student_id == student_id,
        ).order_by(
            AvailabilitySlot.week_start_date.asc(),
            AvailabilitySlot.day_of_week.asc(),
            AvailabilitySlot.start_hour.asc(),
        ).all()

    def list_for_instructor(self, instructor_id: int) -> list[Booking]:
        return self.db.query(Booking).join(AvailabilitySlot).filter(
            AvailabilitySlot.instructor_id == instructor_id,
        ).order_by(
            AvailabilitySlot.week_start_date.asc(),
            AvailabilitySlot.day_of_week.asc(),
            AvailabilitySlot.start_hour.asc(),
            Booking.id.asc(),
        ).all()
