import pytest
from pydantic import ValidationError

from scheduler.core.errors import ForbiddenError
from scheduler.models.attendance import ATTENDANCE_ABSENT, ATTENDANCE_LATE, ATTENDANCE_PRESENT
from scheduler.routes.attendance_routes import (
    AttendanceEntryRequest,
    BulkAttendanceRequest,
    MarkAttendanceRequest,
    get_roster,
    mark_attendance,
    mark_attendance_bulk,
)
from scheduler.services.attendance_service import AttendanceService


@pytest.fixture
def service(db) -> AttendanceService:
    return AttendanceService(db)


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('scheduler.routes.attendance_routes.ensure_database_ready', lambda: None)


def test_mark_attendance_request_normalizes_status() -> None:
    request = MarkAttendanceRequest(status=' Present ', notes=' ')

    assert request.status == ATTENDANCE_PRESENT
    assert request.notes is None


def test_bulk_attendance_request_rejects_empty_and_duplicates() -> None:
    with pytest.raises(ValidationError):
        BulkAttendanceRequest(records=[])
    with pytest.raises(ValidationError):
        BulkAttendanceRequest(
            records=[
                AttendanceEntryRequest(student_id=1, status='present'),
                AttendanceEntryRequest(student_id=1, status='late'),
            ]
        )


def test_get_roster_lists_students_with_names(service, school, make_session) -> None:
    live_session = make_session()

    roster = get_roster(session_id=live_session.id, current_user=school.instructor, service=service)

    assert [record.student_name for record in roster.records] == ['Adam', 'Lina', 'Sara']
    assert {record.status for record in roster.records} == {ATTENDANCE_ABSENT}
    assert roster.stats.total == 3


def test_get_roster_rejects_other_instructor(service, school, make_session) -> None:
    live_session = make_session()

    with pytest.raises(ForbiddenError):
        get_roster(session_id=live_session.id, current_user=school.other_instructor, service=service)


def test_mark_attendance_route(service, school, make_session) -> None:
    live_session = make_session()

    record = mark_attendance(
        session_id=live_session.id,
        student_id=school.student.id,
        data=MarkAttendanceRequest(status='late', notes='Bus'),
        current_user=school.instructor,
        service=service,
    )

    assert record.status == ATTENDANCE_LATE
    assert record.student_name == 'Sara'
    assert record.marked_by == school.instructor.id


def test_mark_attendance_bulk_route(service, school, make_session) -> None:
    live_session = make_session()
    first, second, _ = school.students

    records = mark_attendance_bulk(
        session_id=live_session.id,
        data=BulkAttendanceRequest(
            records=[
                AttendanceEntryRequest(student_id=first.id, status='present'),
                AttendanceEntryRequest(student_id=second.id, status='absent'),
            ]
        ),
        current_user=school.coordinator,
        service=service,
    )

    assert {record.student_id: record.status for record in records} == {
        first.id: ATTENDANCE_PRESENT,
        second.id: ATTENDANCE_ABSENT,
    }
