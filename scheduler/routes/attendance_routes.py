from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from scheduler.auth.dependencies import require_roles
from scheduler.database import ensure_database_ready, get_db
from scheduler.models.attendance import SessionAttendance
from scheduler.models.user import STAFF_ROLES, User
from scheduler.routes.session_routes import AttendanceStatsResponse
from scheduler.routes.validators import clean_notes, clean_required
from scheduler.services.attendance_service import AttendanceEntry, AttendanceService

router = APIRouter(tags=['attendance'])


class MarkAttendanceRequest(BaseModel):
    status: str
    notes: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return clean_required(value, 'Status').lower()

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return clean_notes(value)


class AttendanceEntryRequest(MarkAttendanceRequest):
    student_id: int


class BulkAttendanceRequest(BaseModel):
    records: list[AttendanceEntryRequest]

    @field_validator('records')
    @classmethod
    def validate_records(cls, value: list[AttendanceEntryRequest]) -> list[AttendanceEntryRequest]:
        if not value:
            raise ValueError('At least one attendance record is required.')
        student_ids = [record.student_id for record in value]
        if len(set(student_ids)) != len(student_ids):
            raise ValueError('Each student may appear only once.')
        return value


class AttendanceRecordResponse(BaseModel):
    id: int
    session_id: int
    student_id: int
    student_name: str | None = None
    status: str
    notes: str | None = None
    marked_by: int | None = None
    marked_at: datetime | None = None


class RosterResponse(BaseModel):
    records: list[AttendanceRecordResponse]
    stats: AttendanceStatsResponse


def get_attendance_service(db: Session = Depends(get_db)) -> AttendanceService:
    return AttendanceService(db)


def serialize_records(records: list[SessionAttendance], service: AttendanceService) -> list[AttendanceRecordResponse]:
    names = service.student_names(records)
    return [
        AttendanceRecordResponse(
            id=record.id,
            session_id=record.session_id,
            student_id=record.student_id,
            student_name=names.get(record.student_id),
            status=record.status,
            notes=record.notes,
            marked_by=record.marked_by,
            marked_at=record.marked_at,
        )
        for record in records
    ]


@router.get('/{session_id}/attendance', response_model=RosterResponse)
def get_roster(
    session_id: int,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    service: AttendanceService = Depends(get_attendance_service),
):
    ensure_database_ready()

    records, stats = service.roster(current_user, session_id)
    return RosterResponse(
        records=serialize_records(records, service),
        stats=AttendanceStatsResponse(**stats.as_dict()),
    )


@router.put('/{session_id}/attendance/{student_id}', response_model=AttendanceRecordResponse)
def mark_attendance(
    session_id: int,
    student_id: int,
    data: MarkAttendanceRequest,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    service: AttendanceService = Depends(get_attendance_service),
):
    ensure_database_ready()

    record = service.mark(current_user, session_id, student_id, data.status, data.notes)
    return serialize_records([record], service)[0]


@router.post('/{session_id}/attendance', response_model=list[AttendanceRecordResponse])
def mark_attendance_bulk(
    session_id: int,
    data: BulkAttendanceRequest,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    service: AttendanceService = Depends(get_attendance_service),
):
    ensure_database_ready()

    records = service.mark_bulk(
        current_user,
        session_id,
        [AttendanceEntry(entry.student_id, entry.status, entry.notes) for entry in data.records],
    )
    return serialize_records(records, service)
