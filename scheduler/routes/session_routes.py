from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from scheduler.auth.dependencies import get_current_user, require_roles
from scheduler.core.config import get_schedule_settings
from scheduler.database import ensure_database_ready, get_db
from scheduler.models.live_session import LiveSession
from scheduler.models.user import ROLE_INSTRUCTOR, STAFF_ROLES, User
from scheduler.routes.validators import clean_notes, clean_required
from scheduler.services.session_service import SessionService

router = APIRouter(tags=['sessions'])


class SessionResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    track_id: int
    instructor_id: int
    date: date
    start_time: str
    end_time: str
    external_link: str | None = None
    link_added_at: datetime | None = None
    status: str
    materials: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CreateSessionRequest(BaseModel):
    title: str
    track_id: int
    date: date
    start_time: str
    end_time: str
    instructor_id: int | None = None
    description: str | None = None
    external_link: str | None = None
    materials: str | None = None
    booking_ids: list[int] = []

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        return clean_required(value, 'Title')

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: str) -> str:
        return value.strip()


class UpdateSessionRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    session_date: date | None = None
    start_time: str | None = None
    end_time: str | None = None
    track_id: int | None = None
    instructor_id: int | None = None
    materials: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return clean_required(value, 'Title')


class UpdateLinkRequest(BaseModel):
    external_link: str | None = None


class MeetingLinkRequest(BaseModel):
    booking_id: int
    meeting_link: str
    title: str | None = None

    @field_validator('meeting_link')
    @classmethod
    def validate_meeting_link(cls, value: str) -> str:
        return clean_required(value, 'Meeting link')


class BulkMeetingLinkRequest(BaseModel):
    availability_id: int
    meeting_link: str
    title: str | None = None

    @field_validator('meeting_link')
    @classmethod
    def validate_meeting_link(cls, value: str) -> str:
        return clean_required(value, 'Meeting link')


class MeetingLinkResponse(BaseModel):
    session: SessionResponse
    linked_bookings: int


class ControlRequest(BaseModel):
    action: str
    notes: str | None = None

    @field_validator('action')
    @classmethod
    def validate_action(cls, value: str) -> str:
        return clean_required(value, 'Action').lower()

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return clean_notes(value)


class AttendanceStatsResponse(BaseModel):
    total: int
    present: int
    absent: int
    late: int
    excused: int
    rate: float


class ControlInfoResponse(BaseModel):
    session: SessionResponse
    can_control: bool
    available_actions: list[str]
    current_status: str
    can_start: bool
    can_join: bool
    duration_minutes: int | None = None
    attendance_stats: AttendanceStatsResponse


def get_session_service(db: Session = Depends(get_db)) -> SessionService:
    return SessionService(db, get_schedule_settings())


def serialize_session(live_session: LiveSession) -> SessionResponse:
    return SessionResponse(
        id=live_session.id,
        title=live_session.title,
        description=live_session.description,
        track_id=live_session.track_id,
        instructor_id=live_session.instructor_id,
        date=live_session.date,
        start_time=live_session.start_time,
        end_time=live_session.end_time,
        external_link=live_session.external_link,
        link_added_at=live_session.link_added_at,
        status=live_session.current_status.value,
        materials=live_session.materials,
        notes=live_session.notes,
        created_at=live_session.created_at,
        updated_at=live_session.updated_at,
    )


@router.post('/meeting-link', response_model=MeetingLinkResponse)
def attach_meeting_link(
    data: MeetingLinkRequest,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR)),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    live_session, linked = service.attach_meeting_link(
        current_user, data.meeting_link, booking_id=data.booking_id, title=data.title,
    )
    return MeetingLinkResponse(session=serialize_session(live_session), linked_bookings=linked)


@router.put('/meeting-link', response_model=MeetingLinkResponse)
def attach_meeting_link_to_slot(
    data: BulkMeetingLinkRequest,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR)),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    live_session, linked = service.attach_meeting_link(
        current_user, data.meeting_link, availability_id=data.availability_id, title=data.title,
    )
    return MeetingLinkResponse(session=serialize_session(live_session), linked_bookings=linked)


@router.post('', response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    data: CreateSessionRequest,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    live_session = service.create_session(
        current_user,
        track_id=data.track_id,
        title=data.title,
        session_date=data.date,
        start_time=data.start_time,
        end_time=data.end_time,
        instructor_id=data.instructor_id,
        description=data.description,
        external_link=data.external_link,
        materials=data.materials,
        booking_ids=data.booking_ids,
    )
    return serialize_session(live_session)


@router.get('', response_model=list[SessionResponse])
def list_sessions(
    track_id: int | None = Query(default=None),
    instructor_id: int | None = Query(default=None),
    session_status: str | None = Query(default=None, alias='status'),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    sessions = service.list_sessions(
        current_user,
        track_id=track_id,
        instructor_id=instructor_id,
        status=session_status,
        date_from=date_from,
        date_to=date_to,
    )
    return [serialize_session(live_session) for live_session in sessions]


@router.get('/{session_id}', response_model=SessionResponse)
def get_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    return serialize_session(service.get_visible_session(current_user, session_id))


@router.put('/{session_id}', response_model=SessionResponse)
def update_session(
    session_id: int,
    data: UpdateSessionRequest,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    live_session = service.update_session(
        current_user,
        session_id,
        title=data.title,
        description=data.description,
        session_date=data.session_date,
        start_time=data.start_time,
        end_time=data.end_time,
        track_id=data.track_id,
        instructor_id=data.instructor_id,
        materials=data.materials,
    )
    return serialize_session(live_session)


@router.patch('/{session_id}/link', response_model=SessionResponse)
def update_session_link(
    session_id: int,
    data: UpdateLinkRequest,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR)),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    return serialize_session(service.update_link(current_user, session_id, data.external_link))


@router.delete('/{session_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_session(
    session_id: int,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    service.delete_session(current_user, session_id)


@router.put('/{session_id}/control', response_model=SessionResponse)
def control_session(
    session_id: int,
    data: ControlRequest,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    return serialize_session(service.transition(current_user, session_id, data.action, data.notes))


@router.get('/{session_id}/control', response_model=ControlInfoResponse)
def get_control_info(
    session_id: int,
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    ensure_database_ready()

    info = service.control_info(current_user, session_id)
    return ControlInfoResponse(
        session=serialize_session(info['session']),
        can_control=info['can_control'],
        available_actions=info['available_actions'],
        current_status=info['current_status'].value,
        can_start=info['can_start'],
        can_join=info['can_join'],
        duration_minutes=info['duration_minutes'],
        attendance_stats=AttendanceStatsResponse(**info['attendance_stats'].as_dict()),
    )
