import os
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from scheduler.core.config import ScheduleSettings  # noqa: E402
from scheduler.database import Base  # noqa: E402
from scheduler.models.attendance import SessionAttendance  # noqa: E402,F401
from scheduler.models.availability import AvailabilitySlot  # noqa: E402
from scheduler.models.booking import Booking  # noqa: E402
from scheduler.models.live_session import LiveSession, SessionStatus  # noqa: E402
from scheduler.models.track import Grade, Track  # noqa: E402
from scheduler.models.user import (  # noqa: E402
    ROLE_COORDINATOR,
    ROLE_INSTRUCTOR,
    ROLE_MANAGER,
    ROLE_STUDENT,
    User,
)

# 2026-01-04 is a Sunday, the default week start.
WEEK_START = date(2026, 1, 4)
MONDAY = date(2026, 1, 5)


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings() -> ScheduleSettings:
    return ScheduleSettings()


@pytest.fixture
def school(db) -> SimpleNamespace:
    grade = Grade(name='Grade 7')
    other_grade = Grade(name='Grade 8')
    db.add_all([grade, other_grade])
    db.flush()

    instructor = User(email='ines@example.edu', name='Ines', role=ROLE_INSTRUCTOR)
    other_instructor = User(email='omar@example.edu', name='Omar', role=ROLE_INSTRUCTOR)
    coordinator = User(email='cora@example.edu', name='Cora', role=ROLE_COORDINATOR)
    manager = User(email='max@example.edu', name='Max', role=ROLE_MANAGER)
    students = [
        User(email='sara@example.edu', name='Sara', role=ROLE_STUDENT, grade_id=grade.id),
        User(email='adam@example.edu', name='Adam', role=ROLE_STUDENT, grade_id=grade.id),
        User(email='lina@example.edu', name='Lina', role=ROLE_STUDENT, grade_id=grade.id),
    ]
    outsider = User(email='zaid@example.edu', name='Zaid', role=ROLE_STUDENT, grade_id=other_grade.id)
    db.add_all([instructor, other_instructor, coordinator, manager, outsider, *students])
    db.flush()

    track = Track(
        name='Algebra',
        grade_id=grade.id,
        instructor_id=instructor.id,
        coordinator_id=coordinator.id,
    )
    other_track = Track(
        name='Physics',
        grade_id=other_grade.id,
        instructor_id=other_instructor.id,
        coordinator_id=coordinator.id,
    )
    db.add_all([track, other_track])
    db.commit()

    return SimpleNamespace(
        grade=grade,
        other_grade=other_grade,
        instructor=instructor,
        other_instructor=other_instructor,
        coordinator=coordinator,
        manager=manager,
        students=students,
        student=students[0],
        outsider=outsider,
        track=track,
        other_track=other_track,
    )


@pytest.fixture
def make_slot(db, school):
    def factory(
        day_of_week: int = 1,
        start_hour: int = 14,
        end_hour: int = 15,
        is_confirmed: bool = True,
        instructor=None,
        track=None,
        week_start_date: date = WEEK_START,
    ) -> AvailabilitySlot:
        slot = AvailabilitySlot(
            instructor_id=(instructor or school.instructor).id,
            track_id=(track or school.track).id,
            week_start_date=week_start_date,
            day_of_week=day_of_week,
            start_hour=start_hour,
            end_hour=end_hour,
            is_booked=False,
            is_confirmed=is_confirmed,
        )
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot

    return factory


@pytest.fixture
def make_booking(db):
    def factory(slot: AvailabilitySlot, student: User, **fields) -> Booking:
        booking = Booking(
            availability_id=slot.id,
            student_id=student.id,
            track_id=slot.track_id,
            **fields,
        )
        db.add(booking)
        slot.is_booked = True
        db.commit()
        db.refresh(booking)
        return booking

    return factory


@pytest.fixture
def make_session(db, school):
    def factory(
        status: SessionStatus | str = SessionStatus.SCHEDULED,
        session_date: date = MONDAY,
        start_time: str = '14:00',
        end_time: str = '15:00',
        external_link: str | None = None,
        track=None,
        instructor=None,
        title: str = 'Linear equations',
    ) -> LiveSession:
        live_session = LiveSession(
            title=title,
            track_id=(track or school.track).id,
            instructor_id=(instructor or school.instructor).id,
            date=session_date,
            start_time=start_time,
            end_time=end_time,
            external_link=external_link,
            status=status.value if isinstance(status, SessionStatus) else status,
        )
        db.add(live_session)
        db.commit()
        db.refresh(live_session)
        return live_session

    return factory


@pytest.fixture
def file_school(tmp_path):
    """A seeded file-backed database for tests that need several independent sessions."""
    engine = create_engine(f'sqlite:///{tmp_path / "school.db"}', connect_args={'check_same_thread': False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with factory() as setup:
        grade = Grade(name='Grade 10')
        setup.add(grade)
        setup.flush()
        instructor = User(email='tariq@example.edu', name='Tariq', role=ROLE_INSTRUCTOR)
        students = [
            User(email=f'student{index}@example.edu', name=f'Student {index}', role=ROLE_STUDENT, grade_id=grade.id)
            for index in range(3)
        ]
        setup.add_all([instructor, *students])
        setup.flush()
        track = Track(name='Biology', grade_id=grade.id, instructor_id=instructor.id)
        setup.add(track)
        setup.flush()
        slot = AvailabilitySlot(
            instructor_id=instructor.id,
            track_id=track.id,
            week_start_date=WEEK_START,
            day_of_week=1,
            start_hour=14,
            end_hour=15,
            is_booked=False,
            is_confirmed=True,
        )
        setup.add(slot)
        setup.commit()
        ids = SimpleNamespace(
            instructor_id=instructor.id,
            student_ids=[student.id for student in students],
            track_id=track.id,
            slot_id=slot.id,
        )

    def add_session(status: SessionStatus = SessionStatus.READY, external_link: str | None = None) -> int:
        with factory() as session:
            live_session = LiveSession(
                title='Cells',
                track_id=ids.track_id,
                instructor_id=ids.instructor_id,
                date=MONDAY,
                start_time='14:00',
                end_time='15:00',
                external_link=external_link,
                status=status.value,
            )
            session.add(live_session)
            session.commit()
            return live_session.id

    def add_booking(student_id: int) -> int:
        with factory() as session:
            booking = Booking(availability_id=ids.slot_id, student_id=student_id, track_id=ids.track_id)
            session.add(booking)
            session.get(AvailabilitySlot, ids.slot_id).is_booked = True
            session.commit()
            return booking.id

    try:
        yield SimpleNamespace(factory=factory, add_session=add_session, add_booking=add_booking, **vars(ids))
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
