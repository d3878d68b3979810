from datetime import date, datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from scheduler.auth.dependencies import get_current_user, require_roles
from scheduler.core.config import get_schedule_settings
from scheduler.database import ensure_database_ready, get_db
from scheduler.models.booking import Booking
from scheduler.models.user import ROLE_INSTRUCTOR, ROLE_STUDENT, User
from scheduler.routes.validators import clean_notes, clean_required
from scheduler.services.availability_service import AvailabilityService
from scheduler.services.booking_service import FEEDBACK_FROM_INSTRUCTOR, FEEDBACK_FROM_STUDENT, BookingService

router = APIRouter(tags=['bookings'])


class CreateBookingRequest(BaseModel):
    availability_id: int
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return clean_notes(value)


class FeedbackRequest(BaseModel):
    feedback_type: str
    note: str

    @field_validator('feedback_type')
    @classmethod
    def validate_feedback_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in (FEEDBACK_FROM_STUDENT, FEEDBACK_FROM_INSTRUCTOR):
            raise ValueError("Feedback type must be 'student' or 'instructor'.")
        return normalized

    @field_validator('note')
    @classmethod
    def validate_note(cls, value: str) -> str:
        clean_required(value, 'Feedback')
        return clean_notes(value)


class UpdateNotesRequest(BaseModel):
    student_notes: str | None = None
    instructor_notes: str | None = None

    @field_validator('student_notes', 'instructor_notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return clean_notes(value) or ''


class BookingResponse(BaseModel):
    id: int
    availability_id: int
    student_id: int
    track_id: int
    session_id: int | None = None
    status: str
    student_notes: str | None = None
    instructor_notes: str | None = None
    feedback_given_at: datetime | None = None
    session_date: date | None = None
    start_hour: int | None = None
    end_hour: int | None = None


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db)


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(db, get_schedule_settings())


def serialize_booking(booking: Booking, availability: AvailabilityService | None = None) -> BookingResponse:
    slot = booking.availability
    return BookingResponse(
        id=booking.id,
        availability_id=booking.availability_id,
        student_id=booking.student_id,
        track_id=booking.track_id,
        session_id=booking.session_id,
        status=booking.status,
        student_notes=booking.student_notes,
        instructor_notes=booking.instructor_notes,
        feedback_given_at=booking.feedback_given_at,
        session_date=availability.session_date_for(slot) if availability and slot else None,
        start_hour=slot.start_hour if slot else None,
        end_hour=slot.end_hour if slot else None,
    )


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def book_slot(
    data: CreateBookingRequest,
    current_user: User = Depends(require_roles(ROLE_STUDENT)),
    service: BookingService = Depends(get_booking_service),
    availability: AvailabilityService = Depends(get_availability_service),
):
    ensure_database_ready()

    booking = service.book(current_user.id, data.availability_id, data.notes)
    return serialize_booking(booking, availability)


@router.delete('/{booking_id}', status_code=status.HTTP_204_NO_CONTENT)
def cancel_booking(
    booking_id: int,
    current_user: User = Depends(require_roles(ROLE_STUDENT)),
    service: BookingService = Depends(get_booking_service),
):
    ensure_database_ready()

    service.cancel(current_user.id, booking_id)


@router.get('/mine', response_model=list[BookingResponse])
def list_my_bookings(
    current_user: User = Depends(require_roles(ROLE_STUDENT, ROLE_INSTRUCTOR)),
    service: BookingService = Depends(get_booking_service),
    availability: AvailabilityService = Depends(get_availability_service),
):
    ensure_database_ready()

    if current_user.role == ROLE_INSTRUCTOR:
        bookings = service.list_for_instructor(current_user.id)
    else:
        bookings = service.list_for_student(current_user.id)
    return [serialize_booking(booking, availability) for booking in bookings]


@router.post('/{booking_id}/feedback', response_model=BookingResponse)
def submit_feedback(
    booking_id: int,
    data: FeedbackRequest,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
    availability: AvailabilityService = Depends(get_availability_service),
):
    ensure_database_ready()

    booking = service.submit_feedback(current_user, booking_id, data.feedback_type, data.note)
    return serialize_booking(booking, availability)


@router.put('/{booking_id}/notes', response_model=BookingResponse)
def update_booking_notes(
    booking_id: int,
    data: UpdateNotesRequest,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
    availability: AvailabilityService = Depends(get_availability_service),
):
    ensure_database_ready()

    booking = service.update_notes(
        current_user,
        booking_id,
        student_notes=data.student_notes,
        instructor_notes=data.instructor_notes,
    )
    return serialize_booking(booking, availability)
