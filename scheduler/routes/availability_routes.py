from datetime import date

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from scheduler.auth.dependencies import get_current_user, require_roles
from scheduler.core.config import get_schedule_settings
from scheduler.database import ensure_database_ready, get_db
from scheduler.models.availability import AvailabilitySlot
from scheduler.models.user import ROLE_INSTRUCTOR, User
from scheduler.services.availability_service import AvailabilityService, SlotInput

router = APIRouter(tags=['availability'])


class SlotRequest(BaseModel):
    day_of_week: int
    start_hour: int
    end_hour: int


class SubmitAvailabilityRequest(BaseModel):
    track_id: int
    week_start_date: date
    slots: list[SlotRequest]

    @field_validator('slots')
    @classmethod
    def validate_slots(cls, value: list[SlotRequest]) -> list[SlotRequest]:
        if not value:
            raise ValueError('At least one time slot is required.')
        return value


class ConfirmAvailabilityRequest(BaseModel):
    track_id: int
    week_start_date: date


class ConfirmAvailabilityResponse(BaseModel):
    confirmed: int


class SlotBookingResponse(BaseModel):
    id: int
    student_id: int
    student_name: str | None = None
    status: str
    session_id: int | None = None
    student_notes: str | None = None


class AvailabilitySlotResponse(BaseModel):
    id: int
    instructor_id: int
    track_id: int
    week_start_date: date
    day_of_week: int
    start_hour: int
    end_hour: int
    session_date: date
    is_booked: bool
    is_confirmed: bool
    bookings: list[SlotBookingResponse] = []


class OpenSlotResponse(BaseModel):
    id: int
    instructor_id: int
    track_id: int
    week_start_date: date
    day_of_week: int
    start_hour: int
    end_hour: int
    session_date: date
    is_booked: bool

    class Config:
        from_attributes = True


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(db, get_schedule_settings())


def serialize_slot(
    slot: AvailabilitySlot,
    service: AvailabilityService,
    students: dict[int, User] | None = None,
) -> AvailabilitySlotResponse:
    students = students or {}
    return AvailabilitySlotResponse(
        id=slot.id,
        instructor_id=slot.instructor_id,
        track_id=slot.track_id,
        week_start_date=slot.week_start_date,
        day_of_week=slot.day_of_week,
        start_hour=slot.start_hour,
        end_hour=slot.end_hour,
        session_date=service.session_date_for(slot),
        is_booked=bool(slot.is_booked),
        is_confirmed=bool(slot.is_confirmed),
        bookings=[
            SlotBookingResponse(
                id=booking.id,
                student_id=booking.student_id,
                student_name=students[booking.student_id].name if booking.student_id in students else None,
                status=booking.status,
                session_id=booking.session_id,
                student_notes=booking.student_notes,
            )
            for booking in slot.bookings
        ],
    )


@router.post('', response_model=list[AvailabilitySlotResponse], status_code=status.HTTP_201_CREATED)
def submit_availability(
    data: SubmitAvailabilityRequest,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR)),
    service: AvailabilityService = Depends(get_availability_service),
):
    ensure_database_ready()

    slots = service.submit(
        current_user.id,
        data.track_id,
        data.week_start_date,
        [SlotInput(slot.day_of_week, slot.start_hour, slot.end_hour) for slot in data.slots],
    )
    return [serialize_slot(slot, service) for slot in slots]


@router.put('/confirm', response_model=ConfirmAvailabilityResponse)
def confirm_availability(
    data: ConfirmAvailabilityRequest,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR)),
    service: AvailabilityService = Depends(get_availability_service),
):
    ensure_database_ready()

    confirmed = service.confirm(current_user.id, data.track_id, data.week_start_date)
    return ConfirmAvailabilityResponse(confirmed=confirmed)


@router.get('', response_model=list[AvailabilitySlotResponse])
def list_my_availability(
    week_start_date: date | None = Query(default=None),
    track_id: int | None = Query(default=None),
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR)),
    service: AvailabilityService = Depends(get_availability_service),
):
    ensure_database_ready()

    slots = service.list_for_instructor(current_user.id, week_start_date=week_start_date, track_id=track_id)
    students = service.students_by_id([booking for slot in slots for booking in slot.bookings])
    return [serialize_slot(slot, service, students) for slot in slots]


@router.get('/open', response_model=list[OpenSlotResponse], dependencies=[Depends(get_current_user)])
def list_open_slots(
    track_id: int = Query(...),
    week_start_date: date | None = Query(default=None),
    service: AvailabilityService = Depends(get_availability_service),
):
    ensure_database_ready()

    return [
        OpenSlotResponse(
            id=slot.id,
            instructor_id=slot.instructor_id,
            track_id=slot.track_id,
            week_start_date=slot.week_start_date,
            day_of_week=slot.day_of_week,
            start_hour=slot.start_hour,
            end_hour=slot.end_hour,
            session_date=service.session_date_for(slot),
            is_booked=bool(slot.is_booked),
        )
        for slot in service.list_open_slots(track_id, week_start_date)
    ]
