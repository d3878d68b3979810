"""Instructor weekly availability.

Instructors submit a set of hour ranges per track and week. A submission
replaces whatever unconfirmed set exists for that week; confirming locks the
set for good and opens it to student bookings.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy.orm import Session, selectinload

from scheduler.core.config import ScheduleSettings
from scheduler.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from scheduler.core.locks import scheduling_locks, week_key
from scheduler.models.availability import AvailabilitySlot
from scheduler.models.booking import Booking
from scheduler.models.track import Track
from scheduler.models.user import User
from scheduler.services.base import BaseService
from scheduler.services.time_slots import TimeSlot, find_overlapping_pairs, format_hour

logger = logging.getLogger(__name__)

DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


@dataclass(frozen=True)
class SlotInput:
    day_of_week: int
    start_hour: int
    end_hour: int


def weekday_index(day: date) -> int:
    """Day of week with Sunday as 0, matching ``AvailabilitySlot.day_of_week``."""
    return (day.weekday() + 1) % 7


class AvailabilityService(BaseService):
    def __init__(self, db: Session, settings: ScheduleSettings):
        super().__init__(db)
        self.settings = settings

    def session_date_for(self, slot: AvailabilitySlot) -> date:
        offset = (slot.day_of_week - self.settings.week_start_day) % 7
        return slot.week_start_date + timedelta(days=offset)

    def time_slot_for(self, slot: AvailabilitySlot) -> TimeSlot:
        return TimeSlot.from_hours(self.session_date_for(slot), slot.start_hour, slot.end_hour)

    def validate_week_start(self, week_start_date: date) -> None:
        expected = self.settings.week_start_day
        if weekday_index(week_start_date) != expected:
            raise ValidationError(f'week_start_date must be a {DAY_NAMES[expected]}.')

    def validate_slot(self, slot: SlotInput) -> None:
        earliest = self.settings.earliest_hour
        latest = self.settings.latest_hour

        if not 0 <= slot.day_of_week <= 6:
            raise ValidationError('day_of_week must be between 0 (Sunday) and 6 (Saturday).')
        if not earliest <= slot.start_hour <= latest:
            raise ValidationError(f'start_hour must be between {earliest} and {latest}.')
        if not earliest <= slot.end_hour <= latest:
            raise ValidationError(f'end_hour must be between {earliest} and {latest}.')
        if slot.end_hour <= slot.start_hour:
            raise ValidationError('end_hour must be greater than start_hour.')

    def get_assigned_track(self, instructor_id: int, track_id: int) -> Track:
        track = self.get_track(track_id)
        if track.instructor_id != instructor_id:
            raise ForbiddenError('You are not assigned to this track.')
        return track

    def _week_query(self, instructor_id: int, track_id: int, week_start_date: date):
        return self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.instructor_id == instructor_id,
            AvailabilitySlot.track_id == track_id,
            AvailabilitySlot.week_start_date == week_start_date,
        )

    def submit(
        self,
        instructor_id: int,
        track_id: int,
        week_start_date: date,
        slots: list[SlotInput],
    ) -> list[AvailabilitySlot]:
        self.validate_week_start(week_start_date)
        self.get_assigned_track(instructor_id, track_id)

        for slot in slots:
            self.validate_slot(slot)

        # Each slot is pinned to a weekday, so overlaps are checked on a shared reference week.
        intervals = [
            TimeSlot.from_hours(week_start_date + timedelta(days=slot.day_of_week), slot.start_hour, slot.end_hour)
            for slot in slots
        ]
        overlapping = find_overlapping_pairs(intervals)
        if overlapping:
            first, second = (slots[index] for index in overlapping[0])
            raise ValidationError(
                f'Slots overlap on {DAY_NAMES[first.day_of_week]}: '
                f'{format_hour(first.start_hour)}-{format_hour(first.end_hour)} and '
                f'{format_hour(second.start_hour)}-{format_hour(second.end_hour)}.'
            )

        with scheduling_locks.hold(week_key(instructor_id, track_id, week_start_date)), self.transaction(
            conflict_message='Availability for this week/track changed concurrently.',
        ):
            confirmed = self._week_query(instructor_id, track_id, week_start_date).filter(
                AvailabilitySlot.is_confirmed.is_(True),
            ).with_for_update().populate_existing().first()
            if confirmed is not None:
                raise ConflictError('Availability for this week/track is already confirmed and cannot be modified.')

            self._week_query(instructor_id, track_id, week_start_date).filter(
                AvailabilitySlot.is_confirmed.is_(False),
            ).delete(synchronize_session=False)

            created = [
                AvailabilitySlot(
                    instructor_id=instructor_id,
                    track_id=track_id,
                    week_start_date=week_start_date,
                    day_of_week=slot.day_of_week,
                    start_hour=slot.start_hour,
                    end_hour=slot.end_hour,
                    is_booked=False,
                    is_confirmed=False,
                )
                for slot in slots
            ]
            self.db.add_all(created)

        for slot in created:
            self.db.refresh(slot)

        logger.info(
            'Saved %d availability slots for instructor %s, track %s, week %s',
            len(created), instructor_id, track_id, week_start_date,
        )
        return created

    def confirm(self, instructor_id: int, track_id: int, week_start_date: date) -> int:
        self.get_assigned_track(instructor_id, track_id)

        with scheduling_locks.hold(week_key(instructor_id, track_id, week_start_date)), self.transaction():
            week_slots = (
                self._week_query(instructor_id, track_id, week_start_date).with_for_update().populate_existing().all()
            )
            pending = [slot for slot in week_slots if not slot.is_confirmed]

            if not week_slots:
                raise NotFoundError('No availability slots found. Save your time slots before confirming.')
            if not pending:
                raise ConflictError('All availability slots are already confirmed for this week/track.')

            for slot in pending:
                slot.is_confirmed = True

        logger.info(
            'Confirmed %d availability slots for instructor %s, track %s, week %s',
            len(pending), instructor_id, track_id, week_start_date,
        )
        return len(pending)

    def list_for_instructor(
        self,
        instructor_id: int,
        week_start_date: date | None = None,
        track_id: int | None = None,
    ) -> list[AvailabilitySlot]:
        query = self.db.query(AvailabilitySlot).options(
            selectinload(AvailabilitySlot.bookings),
        ).filter(AvailabilitySlot.instructor_id == instructor_id)

        if week_start_date is not None:
            query = query.filter(AvailabilitySlot.week_start_date == week_start_date)
        if track_id is not None:
            query = query.filter(AvailabilitySlot.track_id == track_id)

        return query.order_by(
            AvailabilitySlot.week_start_date.asc(),
            AvailabilitySlot.day_of_week.asc(),
            AvailabilitySlot.start_hour.asc(),
        ).all()

    def list_open_slots(self, track_id: int, week_start_date: date | None = None) -> list[AvailabilitySlot]:
        self.get_track(track_id)

        query = self.db.query(AvailabilitySlot).filter(
            AvailabilitySlot.track_id == track_id,
            AvailabilitySlot.is_confirmed.is_(True),
        )
        if week_start_date is not None:
            query = query.filter(AvailabilitySlot.week_start_date == week_start_date)

        return query.order_by(
            AvailabilitySlot.week_start_date.asc(),
            AvailabilitySlot.day_of_week.asc(),
            AvailabilitySlot.start_hour.asc(),
        ).all()

    def get_slot(self, availability_id: int, for_update: bool = False) -> AvailabilitySlot:
        query = self.db.query(AvailabilitySlot).filter(AvailabilitySlot.id == availability_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        slot = query.first()
        if slot is None:
            raise NotFoundError('Availability slot not found.')
        return slot

    def students_by_id(self, bookings: list[Booking]) -> dict[int, User]:
        student_ids = {booking.student_id for booking in bookings}
        if not student_ids:
            return {}
        students = self.db.query(User).filter(User.id.in_(student_ids)).all()
        return {student.id: student for student in students}
