from datetime import date

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from scheduler.auth.dependencies import get_current_user
from scheduler.core.errors import ForbiddenError
from scheduler.database import get_db
from scheduler.main import app
from scheduler.models.live_session import SessionStatus
from scheduler.routes.session_routes import (
    BulkMeetingLinkRequest,
    ControlRequest,
    CreateSessionRequest,
    MeetingLinkRequest,
    UpdateSessionRequest,
    attach_meeting_link_to_slot,
    control_session,
    create_session,
    get_control_info,
    list_sessions,
)
from scheduler.services.session_service import SessionService

ZOOM_LINK = 'https://zoom.us/j/123456'


@pytest.fixture
def service(db, settings) -> SessionService:
    return SessionService(db, settings)


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('scheduler.routes.session_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def client_as(db):
    def factory(user) -> TestClient:
        app.dependency_overrides[get_db] = lambda: db
        app.dependency_overrides[get_current_user] = lambda: user
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


def test_create_session_request_strips_title() -> None:
    request = CreateSessionRequest(
        title='  Fractions  ',
        track_id=1,
        date=date(2026, 1, 5),
        start_time=' 14:00 ',
        end_time='15:00',
    )

    assert request.title == 'Fractions'
    assert request.start_time == '14:00'
    assert request.booking_ids == []


def test_create_session_request_rejects_blank_title() -> None:
    with pytest.raises(ValidationError):
        CreateSessionRequest(title='  ', track_id=1, date=date(2026, 1, 5), start_time='14:00', end_time='15:00')


def test_update_session_request_allows_partial_updates() -> None:
    request = UpdateSessionRequest(session_date=date(2026, 1, 6))

    assert request.title is None
    assert request.session_date == date(2026, 1, 6)


def test_meeting_link_requests_require_link() -> None:
    with pytest.raises(ValidationError):
        MeetingLinkRequest(booking_id=1, meeting_link='   ')
    with pytest.raises(ValidationError):
        BulkMeetingLinkRequest(availability_id=1, meeting_link='')


def test_control_request_normalizes_action_and_notes() -> None:
    request = ControlRequest(action=' START ', notes='   ')

    assert request.action == 'start'
    assert request.notes is None


def test_create_session_route_serializes_status(service, school) -> None:
    response = create_session(
        data=CreateSessionRequest(
            title='Fractions',
            track_id=school.track.id,
            date=date(2026, 1, 5),
            start_time='14:00',
            end_time='15:00',
            external_link=ZOOM_LINK,
        ),
        current_user=school.instructor,
        service=service,
    )

    assert response.status == SessionStatus.READY.value
    assert response.instructor_id == school.instructor.id
    assert response.link_added_at is not None


def test_list_sessions_route_passes_filters(service, school, make_session) -> None:
    scheduled = make_session()
    make_session(status=SessionStatus.COMPLETED, start_time='16:00', end_time='17:00')

    response = list_sessions(
        track_id=None,
        instructor_id=None,
        session_status='SCHEDULED',
        date_from=None,
        date_to=None,
        current_user=school.instructor,
        service=service,
    )

    assert [live_session.id for live_session in response] == [scheduled.id]


def test_bulk_meeting_link_route_reports_linked_bookings(service, school, make_slot, make_booking) -> None:
    slot = make_slot()
    make_booking(slot, school.students[0])
    make_booking(slot, school.students[1])

    response = attach_meeting_link_to_slot(
        data=BulkMeetingLinkRequest(availability_id=slot.id, meeting_link=ZOOM_LINK),
        current_user=school.instructor,
        service=service,
    )

    assert response.linked_bookings == 2
    assert response.session.title == 'Algebra - Session'
    assert response.session.status == SessionStatus.READY.value


def test_control_route_starts_session(service, school, make_session) -> None:
    live_session = make_session(status=SessionStatus.READY, external_link=ZOOM_LINK)

    response = control_session(
        session_id=live_session.id,
        data=ControlRequest(action='start', notes='Kicking off'),
        current_user=school.instructor,
        service=service,
    )

    assert response.status == SessionStatus.ACTIVE.value
    assert 'Ines: Kicking off' in response.notes


def test_control_info_route_for_student(service, school, make_session) -> None:
    live_session = make_session(status=SessionStatus.READY, external_link=ZOOM_LINK)

    info = get_control_info(session_id=live_session.id, current_user=school.student, service=service)

    assert info.can_control is False
    assert info.available_actions == []
    assert info.current_status == 'READY'
    assert info.can_start is True
    assert info.can_join is False
    assert info.attendance_stats.total == 0


def test_control_info_route_rejects_outsider(service, school, make_session) -> None:
    live_session = make_session()

    with pytest.raises(ForbiddenError):
        get_control_info(session_id=live_session.id, current_user=school.outsider, service=service)


def test_start_without_link_renders_precondition_error(client_as, school, make_session) -> None:
    live_session = make_session()

    response = client_as(school.instructor).put(f'/sessions/{live_session.id}/control', json={'action': 'start'})

    assert response.status_code == 400
    body = response.json()
    assert body['error'] == 'precondition_failed'
    assert body['detail'] == 'Cannot start session without valid external meeting link'
    assert body['reason'] == 'External meeting link is required to start the session'
    assert 'suggested_action' in body


def test_invalid_transition_renders_conflict(client_as, school, make_session) -> None:
    live_session = make_session(status=SessionStatus.COMPLETED, external_link=ZOOM_LINK)

    response = client_as(school.instructor).put(f'/sessions/{live_session.id}/control', json={'action': 'pause'})

    assert response.status_code == 409
    assert response.json() == {
        'error': 'invalid_transition',
        'detail': 'Cannot pause session with status COMPLETED',
        'current_status': 'COMPLETED',
        'action': 'pause',
    }


def test_students_cannot_control_sessions(client_as, school, make_session) -> None:
    live_session = make_session()

    response = client_as(school.student).put(f'/sessions/{live_session.id}/control', json={'action': 'cancel'})

    assert response.status_code == 403
    assert response.json() == {'detail': 'Forbidden'}


def test_missing_session_renders_not_found(client_as, school) -> None:
    response = client_as(school.student).get('/sessions/999')

    assert response.status_code == 404
    assert response.json()['error'] == 'not_found'
