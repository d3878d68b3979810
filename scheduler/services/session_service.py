"""Live session lifecycle.

Sessions move through ``DRAFT -> SCHEDULED/READY -> ACTIVE <-> PAUSED ->
COMPLETED`` with ``CANCELLED`` reachable before going live. Only an explicit
``start`` puts a session on air, and only when it carries a usable meeting
link. Link edits recompute the pre-start status on their own.
"""

import logging
from datetime import date, datetime, time

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from scheduler.core.config import ScheduleSettings
from scheduler.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from scheduler.core.locks import scheduling_locks, session_key, slot_key, track_day_key
from scheduler.models.availability import AvailabilitySlot
from scheduler.models.booking import BOOKING_CONFIRMED, Booking
from scheduler.models.live_session import LEGACY_STATUS_ALIASES, LiveSession, SessionStatus, normalize_status
from scheduler.models.track import Track
from scheduler.models.user import ADMIN_ROLES, ROLE_COORDINATOR, ROLE_INSTRUCTOR, ROLE_STUDENT, User
from scheduler.services.attendance_service import AttendanceService
from scheduler.services.availability_service import AvailabilityService
from scheduler.services.base import BaseService
from scheduler.services.meeting_links import (
    LINK_REMEDIATION,
    PLATFORM_EXAMPLES,
    can_join_session,
    can_start_session,
    status_from_link,
    validate_meeting_link,
)
from scheduler.services.time_slots import (
    TimeSlot,
    describe_conflict,
    find_conflicts,
    format_hour,
    session_time_slot,
)

logger = logging.getLogger(__name__)

ACTION_START = 'start'
ACTION_PAUSE = 'pause'
ACTION_RESUME = 'resume'
ACTION_COMPLETE = 'complete'
ACTION_CANCEL = 'cancel'

TRANSITIONS: dict[SessionStatus, dict[str, SessionStatus]] = {
    SessionStatus.DRAFT: {ACTION_CANCEL: SessionStatus.CANCELLED},
    SessionStatus.SCHEDULED: {ACTION_START: SessionStatus.ACTIVE, ACTION_CANCEL: SessionStatus.CANCELLED},
    SessionStatus.READY: {ACTION_START: SessionStatus.ACTIVE, ACTION_CANCEL: SessionStatus.CANCELLED},
    SessionStatus.ACTIVE: {ACTION_PAUSE: SessionStatus.PAUSED, ACTION_COMPLETE: SessionStatus.COMPLETED},
    SessionStatus.PAUSED: {ACTION_RESUME: SessionStatus.ACTIVE, ACTION_COMPLETE: SessionStatus.COMPLETED},
    SessionStatus.COMPLETED: {},
    SessionStatus.CANCELLED: {},
}

# Statuses for which the elapsed time since the scheduled start is reported.
TIMED_STATUSES = {SessionStatus.ACTIVE, SessionStatus.PAUSED, SessionStatus.COMPLETED}


def available_actions(status: SessionStatus) -> list[str]:
    return list(TRANSITIONS.get(status, {}))


def next_status(status: SessionStatus, action: str) -> SessionStatus:
    target = TRANSITIONS.get(status, {}).get(action)
    if target is None:
        raise InvalidTransitionError(status.value, action)
    return target


def status_values(status: SessionStatus) -> list[str]:
    """Stored values that read back as ``status``, legacy spellings included."""
    return [status.value] + [alias for alias, canonical in LEGACY_STATUS_ALIASES.items() if canonical == status]


def append_note(log: str | None, author: str, note: str, now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).isoformat(timespec='seconds')
    return f"{log or ''}\n[{stamp}] {author}: {note.strip()}".strip()


def elapsed_minutes(live_session: LiveSession, now: datetime | None = None) -> int | None:
    if live_session.current_status not in TIMED_STATUSES or not live_session.has_schedule:
        return None
    scheduled = session_time_slot(live_session)
    started_at = datetime.combine(live_session.date, time(scheduled.start // 60, scheduled.start % 60))
    seconds = ((now or datetime.now()) - started_at).total_seconds()
    return max(0, int(seconds // 60))


class SessionService(BaseService):
    def __init__(self, db: Session, settings: ScheduleSettings):
        super().__init__(db)
        self.attendance = AttendanceService(db)
        self.availability = AvailabilityService(db, settings)

    # -- permissions -------------------------------------------------------

    def can_create_on_track(self, actor: User, track: Track) -> bool:
        if actor.role in ADMIN_ROLES:
            return True
        if actor.role == ROLE_INSTRUCTOR:
            return track.instructor_id == actor.id
        if actor.role == ROLE_COORDINATOR:
            return track.coordinator_id == actor.id
        return False

    def can_view_session(self, actor: User, live_session: LiveSession) -> bool:
        if actor.role == ROLE_STUDENT:
            track = self.db.query(Track).filter(Track.id == live_session.track_id).first()
            if track is not None and actor.grade_id is not None and track.grade_id == actor.grade_id:
                return True
            booked = self.db.query(Booking.id).filter(
                Booking.session_id == live_session.id,
                Booking.student_id == actor.id,
            ).first()
            return booked is not None
        return self.can_manage_session(actor, live_session)

    def get_visible_session(self, actor: User, session_id: int) -> LiveSession:
        live_session = self.get_session(session_id)
        if not self.can_view_session(actor, live_session):
            raise ForbiddenError("You don't have access to this session.")
        return live_session

    # -- validation helpers ------------------------------------------------

    @staticmethod
    def _time_slot(day: date, start_time: str, end_time: str) -> TimeSlot:
        try:
            return TimeSlot.from_clock(day, start_time, end_time)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    def _check_conflicts(self, track_id: int, candidate: TimeSlot, exclude_id: int | None = None) -> None:
        query = self.db.query(LiveSession).filter(
            LiveSession.track_id == track_id,
            LiveSession.date == candidate.day,
        )
        if exclude_id is not None:
            query = query.filter(LiveSession.id != exclude_id)

        existing = query.populate_existing().all()
        conflicts = find_conflicts(candidate, ((session_time_slot(other), other) for other in existing))
        if conflicts:
            logger.warning(
                'Session on track %s at %s %s-%s collides with %d existing sessions',
                track_id, candidate.day, candidate.start_time, candidate.end_time, len(conflicts),
            )
            raise ConflictError(
                'This time slot conflicts with existing sessions.',
                conflicts=[describe_conflict(other) for other in conflicts],
            )

    def _get_instructor(self, instructor_id: int) -> User:
        instructor = self.db.query(User).filter(User.id == instructor_id).first()
        if instructor is None or instructor.role != ROLE_INSTRUCTOR:
            raise ValidationError('Instructor not found or is not an instructor.')
        return instructor

    @staticmethod
    def _validated_link(url: str | None) -> str | None:
        """Return the stripped link, ``None`` for blank, or reject a malformed one."""
        if url is None or not url.strip():
            return None
        validation = validate_meeting_link(url)
        if not validation.is_valid:
            raise ValidationError(
                validation.error,
                platform=validation.platform,
                example=PLATFORM_EXAMPLES.get(validation.platform or ''),
            )
        return url.strip()

    # -- creation and edits ------------------------------------------------

    def create_session(
        self,
        actor: User,
        track_id: int,
        title: str,
        session_date: date,
        start_time: str,
        end_time: str,
        instructor_id: int | None = None,
        description: str | None = None,
        external_link: str | None = None,
        materials: str | None = None,
        booking_ids: list[int] | None = None,
    ) -> LiveSession:
        if not title or not title.strip():
            raise ValidationError('Title is required.')

        track = self.get_track(track_id)
        if not self.can_create_on_track(actor, track):
            raise ForbiddenError('You are not allowed to create sessions for this track.')

        instructor_id = instructor_id or track.instructor_id
        if instructor_id is None:
            raise ValidationError('Track has no instructor; provide instructor_id.')
        self._get_instructor(instructor_id)

        candidate = self._time_slot(session_date, start_time, end_time)
        link = self._validated_link(external_link)

        with scheduling_locks.hold(track_day_key(track_id, session_date)), self.transaction():
            self._check_conflicts(track_id, candidate)

            live_session = LiveSession(
                title=title.strip(),
                description=description,
                track_id=track_id,
                instructor_id=instructor_id,
                date=session_date,
                start_time=candidate.start_time,
                end_time=candidate.end_time,
                external_link=link,
                link_added_at=datetime.now() if link else None,
                status=status_from_link(link, SessionStatus.DRAFT, has_schedule=True).value,
                materials=materials,
            )
            self.db.add(live_session)
            self.db.flush()

            if booking_ids:
                self.db.query(Booking).filter(
                    Booking.id.in_(booking_ids),
                    Booking.track_id == track_id,
                    Booking.session_id.is_(None),
                ).update({Booking.session_id: live_session.id}, synchronize_session=False)

        self.db.refresh(live_session)
        logger.info('User %s created session %s on track %s', actor.id, live_session.id, track_id)
        return live_session

    def update_session(
        self,
        actor: User,
        session_id: int,
        title: str | None = None,
        description: str | None = None,
        session_date: date | None = None,
        start_time: str | None = None,
        end_time: str | None = None,
        track_id: int | None = None,
        instructor_id: int | None = None,
        materials: str | None = None,
    ) -> LiveSession:
        live_session = self.get_session(session_id)
        self.require_session_manager(actor, live_session, "You don't have permission to edit this session.")

        if title is not None and not title.strip():
            raise ValidationError('Title cannot be empty.')

        new_track_id = track_id if track_id is not None else live_session.track_id
        new_date = session_date or live_session.date
        new_instructor_id = instructor_id
        if track_id is not None and track_id != live_session.track_id:
            new_track = self.get_track(track_id)
            new_instructor_id = instructor_id or new_track.instructor_id
        if new_instructor_id is not None:
            self._get_instructor(new_instructor_id)

        candidate = self._time_slot(
            new_date,
            start_time or live_session.start_time,
            end_time or live_session.end_time,
        )
        reschedules = (
            new_track_id != live_session.track_id
            or candidate != session_time_slot(live_session)
        )

        with scheduling_locks.hold(track_day_key(new_track_id, new_date)), \
                scheduling_locks.hold(session_key(session_id)), self.transaction():
            live_session = self.get_session(session_id, for_update=True)
            if reschedules:
                self._check_conflicts(new_track_id, candidate, exclude_id=session_id)

            if title is not None:
                live_session.title = title.strip()
            if description is not None:
                live_session.description = description
            if materials is not None:
                live_session.materials = materials
            live_session.track_id = new_track_id
            live_session.date = candidate.day
            live_session.start_time = candidate.start_time
            live_session.end_time = candidate.end_time
            if new_instructor_id is not None:
                live_session.instructor_id = new_instructor_id

        self.db.refresh(live_session)
        logger.info('User %s updated session %s', actor.id, session_id)
        return live_session

    def update_link(self, actor: User, session_id: int, url: str | None) -> LiveSession:
        live_session = self.get_session(session_id)
        if actor.id != live_session.instructor_id:
            raise ForbiddenError('You can only update links for your own sessions.')

        link = self._validated_link(url)

        with scheduling_locks.hold(session_key(session_id)), self.transaction():
            live_session = self.get_session(session_id, for_update=True)
            self._apply_link(live_session, link)

        self.db.refresh(live_session)
        logger.info('Instructor %s %s the meeting link of session %s', actor.id, 'set' if link else 'cleared', session_id)
        return live_session

    @staticmethod
    def _apply_link(live_session: LiveSession, link: str | None) -> None:
        live_session.external_link = link
        live_session.link_added_at = datetime.now() if link else None
        live_session.status = status_from_link(
            link, live_session.current_status, live_session.has_schedule,
        ).value

    def attach_meeting_link(
        self,
        actor: User,
        url: str,
        booking_id: int | None = None,
        availability_id: int | None = None,
        title: str | None = None,
    ) -> tuple[LiveSession, int]:
        """Find or create the session for a booked slot and point bookings at it.

        With ``booking_id`` only that booking is linked; with ``availability_id``
        every confirmed booking on the slot is. Either way the session is
        identified by (track, instructor, date, start time) so both variants
        converge on the same row.
        """
        if (booking_id is None) == (availability_id is None):
            raise ValidationError('Provide exactly one of booking_id or availability_id.')
        link = self._validated_link(url)
        if link is None:
            raise ValidationError('meeting_link is required.')

        if booking_id is not None:
            booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
            if booking is None:
                raise NotFoundError('Booking not found.')
            slot = self.availability.get_slot(booking.availability_id)
        else:
            slot = self.availability.get_slot(availability_id)

        if slot.instructor_id != actor.id:
            raise ForbiddenError('You can only add meeting links to your own sessions.')

        track = self.get_track(slot.track_id)
        candidate = self.availability.time_slot_for(slot)

        # Lock order: slot, then track-day.
        slot_lock = scheduling_locks.hold(slot_key(slot.id))
        day_lock = scheduling_locks.hold(track_day_key(slot.track_id, candidate.day))
        with slot_lock, day_lock, self.transaction():
            targets_query = self.db.query(Booking).filter(Booking.availability_id == slot.id)
            if booking_id is not None:
                targets_query = targets_query.filter(Booking.id == booking_id)
            else:
                targets_query = targets_query.filter(Booking.status == BOOKING_CONFIRMED)
            targets = targets_query.order_by(Booking.id.asc()).with_for_update().populate_existing().all()
            if booking_id is not None and not targets:
                raise NotFoundError('Booking not found.')

            live_session = None
            if booking_id is not None and targets[0].session_id is not None:
                live_session = self.get_session(targets[0].session_id, for_update=True)
            if live_session is None:
                live_session = self._find_slot_session(slot, candidate)
            if live_session is None:
                self._check_conflicts(slot.track_id, candidate)
                live_session = LiveSession(
                    title=(title or '').strip() or f'{track.name} - Session',
                    track_id=slot.track_id,
                    instructor_id=slot.instructor_id,
                    date=candidate.day,
                    start_time=candidate.start_time,
                    end_time=candidate.end_time,
                    status=SessionStatus.SCHEDULED.value,
                )
                self.db.add(live_session)
                created = True
            else:
                if title and title.strip():
                    live_session.title = title.strip()
                created = False

            self._apply_link(live_session, link)
            self.db.flush()

            for booking in targets:
                booking.session_id = live_session.id

        self.db.refresh(live_session)
        logger.info(
            'Instructor %s %s session %s for slot %s and linked %d bookings',
            actor.id, 'created' if created else 'updated', live_session.id, slot.id, len(targets),
        )
        return live_session, len(targets)

    def _find_slot_session(self, slot: AvailabilitySlot, candidate: TimeSlot) -> LiveSession | None:
        return self.db.query(LiveSession).filter(
            LiveSession.track_id == slot.track_id,
            LiveSession.instructor_id == slot.instructor_id,
            LiveSession.date == candidate.day,
            LiveSession.start_time == format_hour(slot.start_hour),
        ).order_by(LiveSession.id.asc()).with_for_update().populate_existing().first()

    def delete_session(self, actor: User, session_id: int) -> None:
        live_session = self.get_session(session_id)
        self.require_session_manager(actor, live_session, "You don't have permission to delete this session.")

        with scheduling_locks.hold(session_key(session_id)), self.transaction():
            live_session = self.get_session(session_id, for_update=True)
            if self.attendance.count(session_id):
                raise ConflictError('Cannot delete a session that has attendance records.')

            self.db.query(Booking).filter(Booking.session_id == session_id).update(
                {Booking.session_id: None}, synchronize_session=False,
            )
            self.db.delete(live_session)

        logger.info('User %s deleted session %s', actor.id, session_id)

    # -- state machine -----------------------------------------------------

    def transition(self, actor: User, session_id: int, action: str, notes: str | None = None) -> LiveSession:
        live_session = self.get_session(session_id)
        self.require_session_manager(actor, live_session, 'You can only control your own sessions.')

        with scheduling_locks.hold(session_key(session_id)), self.transaction():
            live_session = self.get_session(session_id, for_update=True)
            previous = live_session.current_status
            target = next_status(previous, action)

            if action == ACTION_START:
                validation = validate_meeting_link(live_session.external_link)
                if not validation.is_valid:
                    raise PreconditionError(
                        'Cannot start session without valid external meeting link',
                        reason=validation.error,
                        suggested_action=LINK_REMEDIATION,
                    )

            live_session.status = target.value
            if notes and notes.strip():
                live_session.notes = append_note(live_session.notes, actor.name or actor.email, notes)

            if action == ACTION_START:
                self.attendance.reconcile(live_session, marked_by=actor.id)

        self.db.refresh(live_session)
        logger.info(
            'User %s moved session %s from %s to %s (%s)',
            actor.id, session_id, previous.value, target.value, action,
        )
        return live_session

    def control_info(self, actor: User, session_id: int, now: datetime | None = None) -> dict:
        live_session = self.get_visible_session(actor, session_id)
        status = live_session.current_status
        can_control = self.can_manage_session(actor, live_session)

        return {
            'session': live_session,
            'can_control': can_control,
            'available_actions': available_actions(status) if can_control else [],
            'current_status': status,
            'can_start': ACTION_START in TRANSITIONS[status] and can_start_session(live_session.external_link),
            'can_join': can_join_session(live_session.external_link, status),
            'duration_minutes': elapsed_minutes(live_session, now),
            'attendance_stats': self.attendance.stats(session_id),
        }

    # -- listing -----------------------------------------------------------

    def list_sessions(
        self,
        actor: User,
        track_id: int | None = None,
        instructor_id: int | None = None,
        status: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[LiveSession]:
        query = self.db.query(LiveSession)

        if actor.role == ROLE_INSTRUCTOR:
            query = query.filter(LiveSession.instructor_id == actor.id)
        elif actor.role == ROLE_COORDINATOR:
            coordinated = select(Track.id).where(Track.coordinator_id == actor.id)
            query = query.filter(LiveSession.track_id.in_(coordinated))
        elif actor.role == ROLE_STUDENT:
            booked = select(Booking.session_id).where(
                Booking.student_id == actor.id,
                Booking.session_id.isnot(None),
            )
            visible = [LiveSession.id.in_(booked)]
            if actor.grade_id is not None:
                grade_tracks = select(Track.id).where(Track.grade_id == actor.grade_id)
                visible.append(LiveSession.track_id.in_(grade_tracks))
            query = query.filter(or_(*visible))
        elif actor.role not in ADMIN_ROLES:
            return []

        if track_id is not None:
            query = query.filter(LiveSession.track_id == track_id)
        if instructor_id is not None:
            query = query.filter(LiveSession.instructor_id == instructor_id)
        if status:
            try:
                wanted = normalize_status(status)
            except ValueError as exc:
                raise ValidationError(f"Unknown session status '{status}'.") from exc
            query = query.filter(LiveSession.status.in_(status_values(wanted)))
        if date_from is not None:
            query = query.filter(LiveSession.date >= date_from)
        if date_to is not None:
            query = query.filter(LiveSession.date <= date_to)

        return query.order_by(LiveSession.date.asc(), LiveSession.start_time.asc(), LiveSession.id.asc()).all()
