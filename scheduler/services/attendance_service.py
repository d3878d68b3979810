"""Attendance rows for live sessions.

Every student expected at a session gets exactly one attendance record. Rows
are created lazily (defaulting to absent) when a session starts or its roster
is read, and instructors or coordinators then mark them.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from scheduler.core.errors import ValidationError
from scheduler.core.locks import scheduling_locks, session_key
from scheduler.models.attendance import (
    ATTENDANCE_ABSENT,
    ATTENDANCE_EXCUSED,
    ATTENDANCE_LATE,
    ATTENDANCE_PRESENT,
    ATTENDANCE_STATUSES,
    SessionAttendance,
)
from scheduler.models.booking import Booking
from scheduler.models.live_session import LiveSession
from scheduler.models.track import Track
from scheduler.models.user import ROLE_STUDENT, User
from scheduler.services.base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttendanceStats:
    total: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0
    rate: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AttendanceEntry:
    student_id: int
    status: str
    notes: str | None = None


def compute_stats(statuses: list[str]) -> AttendanceStats:
    total = len(statuses)
    present = statuses.count(ATTENDANCE_PRESENT)
    return AttendanceStats(
        total=total,
        present=present,
        absent=statuses.count(ATTENDANCE_ABSENT),
        late=statuses.count(ATTENDANCE_LATE),
        excused=statuses.count(ATTENDANCE_EXCUSED),
        rate=present / total if total else 0.0,
    )


class AttendanceService(BaseService):
    def expected_student_ids(self, live_session: LiveSession) -> set[int]:
        """Students of the track's grade plus anyone whose booking feeds this session."""
        track = self.db.query(Track).filter(Track.id == live_session.track_id).first()
        student_ids: set[int] = set()

        if track is not None and track.grade_id is not None:
            enrolled = self.db.query(User.id).filter(
                User.role == ROLE_STUDENT,
                User.grade_id == track.grade_id,
            ).all()
            student_ids.update(student_id for (student_id,) in enrolled)

        booked = self.db.query(Booking.student_id).filter(Booking.session_id == live_session.id).all()
        student_ids.update(student_id for (student_id,) in booked)
        return student_ids

    def reconcile(self, live_session: LiveSession, marked_by: int | None = None) -> int:
        """Insert an absent record for every expected student without one.

        Runs inside the caller's transaction and does not commit.
        """
        recorded = {
            student_id
            for (student_id,) in self.db.query(SessionAttendance.student_id).filter(
                SessionAttendance.session_id == live_session.id,
            ).all()
        }
        missing = sorted(self.expected_student_ids(live_session) - recorded)

        now = datetime.now()
        self.db.add_all(
            SessionAttendance(
                session_id=live_session.id,
                student_id=student_id,
                status=ATTENDANCE_ABSENT,
                marked_by=marked_by,
                marked_at=now,
            )
            for student_id in missing
        )
        self.db.flush()

        if missing:
            logger.info('Created %d default attendance records for session %s', len(missing), live_session.id)
        return len(missing)

    def records(self, session_id: int) -> list[SessionAttendance]:
        return self.db.query(SessionAttendance).outerjoin(
            User, User.id == SessionAttendance.student_id,
        ).filter(
            SessionAttendance.session_id == session_id,
        ).order_by(User.name.asc(), SessionAttendance.student_id.asc()).all()

    def student_names(self, records: list[SessionAttendance]) -> dict[int, str]:
        student_ids = {record.student_id for record in records}
        if not student_ids:
            return {}
        rows = self.db.query(User.id, User.name).filter(User.id.in_(student_ids)).all()
        return {student_id: name for student_id, name in rows}

    def count(self, session_id: int) -> int:
        return self.db.query(SessionAttendance).filter(SessionAttendance.session_id == session_id).count()

    def stats(self, session_id: int) -> AttendanceStats:
        statuses = [
            status
            for (status,) in self.db.query(SessionAttendance.status).filter(
                SessionAttendance.session_id == session_id,
            ).all()
        ]
        return compute_stats(statuses)

    def roster(self, actor: User, session_id: int) -> tuple[list[SessionAttendance], AttendanceStats]:
        live_session = self.get_session(session_id)
        self.require_session_manager(actor, live_session, "You don't have permission to view this session's attendance.")

        with scheduling_locks.hold(session_key(session_id)), self.transaction(
            conflict_message='Attendance for this session changed concurrently.',
        ):
            self.reconcile(live_session)

        return self.records(session_id), self.stats(session_id)

    def mark(
        self,
        actor: User,
        session_id: int,
        student_id: int,
        status: str,
        notes: str | None = None,
    ) -> SessionAttendance:
        return self.mark_bulk(actor, session_id, [AttendanceEntry(student_id, status, notes)])[0]

    def mark_bulk(self, actor: User, session_id: int, entries: list[AttendanceEntry]) -> list[SessionAttendance]:
        for entry in entries:
            if entry.status not in ATTENDANCE_STATUSES:
                raise ValidationError(
                    f"Invalid attendance status '{entry.status}'. Use one of: {', '.join(ATTENDANCE_STATUSES)}."
                )

        live_session = self.get_session(session_id)
        self.require_session_manager(actor, live_session, "You don't have permission to manage this session.")

        marked: list[SessionAttendance] = []
        with scheduling_locks.hold(session_key(session_id)), self.transaction(
            conflict_message='Attendance for this session changed concurrently.',
        ):
            now = datetime.now()
            for entry in entries:
                record = self.db.query(SessionAttendance).filter(
                    SessionAttendance.session_id == session_id,
                    SessionAttendance.student_id == entry.student_id,
                ).first()
                if record is None:
                    record = SessionAttendance(session_id=session_id, student_id=entry.student_id)
                    self.db.add(record)

                record.status = entry.status
                record.notes = entry.notes or None
                record.marked_by = actor.id
                record.marked_at = now
                marked.append(record)
                self.db.flush()

        for record in marked:
            self.db.refresh(record)

        logger.info('User %s marked %d attendance records on session %s', actor.id, len(marked), session_id)
        return marked
