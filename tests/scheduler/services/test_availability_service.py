from datetime import date

import pytest

from scheduler.core.config import ScheduleSettings
from scheduler.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from scheduler.models.availability import AvailabilitySlot
from scheduler.services.availability_service import AvailabilityService, SlotInput, weekday_index

WEEK_START = date(2026, 1, 4)


@pytest.fixture
def service(db, settings) -> AvailabilityService:
    return AvailabilityService(db, settings)


def _submit(service, school, slots, week_start=WEEK_START):
    return service.submit(school.instructor.id, school.track.id, week_start, slots)


def test_weekday_index_counts_from_sunday() -> None:
    assert weekday_index(date(2026, 1, 4)) == 0
    assert weekday_index(date(2026, 1, 10)) == 6


def test_submit_creates_unconfirmed_slots(service, school) -> None:
    slots = _submit(service, school, [SlotInput(1, 14, 16), SlotInput(3, 13, 14)])

    assert [(slot.day_of_week, slot.start_hour, slot.end_hour) for slot in slots] == [(1, 14, 16), (3, 13, 14)]
    assert all(not slot.is_confirmed and not slot.is_booked for slot in slots)


def test_submit_rejects_week_start_on_wrong_weekday(service, school) -> None:
    with pytest.raises(ValidationError) as exc_info:
        _submit(service, school, [SlotInput(1, 14, 15)], week_start=date(2026, 1, 5))

    assert exc_info.value.message == 'week_start_date must be a Sunday.'


@pytest.mark.parametrize(
    'slot',
    [
        SlotInput(7, 14, 15),
        SlotInput(-1, 14, 15),
        SlotInput(1, 12, 14),
        SlotInput(1, 13, 23),
        SlotInput(1, 15, 15),
        SlotInput(1, 16, 14),
    ],
)
def test_submit_rejects_invalid_slots(service, school, slot: SlotInput) -> None:
    with pytest.raises(ValidationError):
        _submit(service, school, [slot])


def test_submit_accepts_full_teaching_window(service, school) -> None:
    slots = _submit(service, school, [SlotInput(2, 13, 22)])

    assert slots[0].end_hour == 22


def test_submit_rejects_overlapping_slots_on_the_same_day(service, school) -> None:
    with pytest.raises(ValidationError) as exc_info:
        _submit(service, school, [SlotInput(1, 13, 15), SlotInput(1, 14, 16)])

    assert 'Monday' in exc_info.value.message


def test_submit_allows_back_to_back_slots(service, school) -> None:
    slots = _submit(service, school, [SlotInput(1, 13, 14), SlotInput(1, 14, 15)])

    assert len(slots) == 2


def test_submit_requires_track_assignment(service, school) -> None:
    with pytest.raises(ForbiddenError):
        service.submit(school.other_instructor.id, school.track.id, WEEK_START, [SlotInput(1, 14, 15)])

    with pytest.raises(NotFoundError):
        service.submit(school.instructor.id, 999, WEEK_START, [SlotInput(1, 14, 15)])


def test_resubmitting_replaces_unconfirmed_slots(service, school, db) -> None:
    _submit(service, school, [SlotInput(1, 14, 15), SlotInput(2, 14, 15)])
    _submit(service, school, [SlotInput(4, 16, 18)])

    remaining = db.query(AvailabilitySlot).all()
    assert [(slot.day_of_week, slot.start_hour) for slot in remaining] == [(4, 16)]


def test_confirmation_is_permanent(service, school) -> None:
    _submit(service, school, [SlotInput(1, 14, 15)])

    assert service.confirm(school.instructor.id, school.track.id, WEEK_START) == 1

    with pytest.raises(ConflictError):
        _submit(service, school, [SlotInput(2, 14, 15)])
    with pytest.raises(ConflictError):
        service.confirm(school.instructor.id, school.track.id, WEEK_START)

    assert all(slot.is_confirmed for slot in service.list_for_instructor(school.instructor.id))


def test_confirm_without_slots_is_not_found(service, school) -> None:
    with pytest.raises(NotFoundError):
        service.confirm(school.instructor.id, school.track.id, WEEK_START)


def test_other_weeks_stay_editable_after_confirmation(service, school) -> None:
    _submit(service, school, [SlotInput(1, 14, 15)])
    service.confirm(school.instructor.id, school.track.id, WEEK_START)

    next_week = date(2026, 1, 11)
    slots = _submit(service, school, [SlotInput(1, 14, 15)], week_start=next_week)

    assert slots[0].week_start_date == next_week


def test_list_for_instructor_orders_by_week_day_and_hour(service, school, make_slot, make_booking) -> None:
    make_slot(day_of_week=3, start_hour=13, end_hour=14, week_start_date=date(2026, 1, 11))
    late = make_slot(day_of_week=1, start_hour=17, end_hour=18)
    early = make_slot(day_of_week=1, start_hour=14, end_hour=15)
    make_booking(early, school.student)

    slots = service.list_for_instructor(school.instructor.id)

    assert [slot.id for slot in slots][:2] == [early.id, late.id]
    assert [booking.student_id for booking in slots[0].bookings] == [school.student.id]
    assert service.students_by_id(slots[0].bookings)[school.student.id].name == 'Sara'


def test_list_open_slots_only_returns_confirmed(service, school, make_slot) -> None:
    confirmed = make_slot(day_of_week=1, is_confirmed=True)
    make_slot(day_of_week=2, is_confirmed=False)

    assert [slot.id for slot in service.list_open_slots(school.track.id)] == [confirmed.id]

    with pytest.raises(NotFoundError):
        service.list_open_slots(999)


def test_session_date_follows_configured_week_start(db, school, make_slot) -> None:
    monday_weeks = AvailabilityService(db, ScheduleSettings(week_start_day=1))
    week_start = date(2026, 1, 5)

    monday = make_slot(day_of_week=1, week_start_date=week_start)
    sunday = make_slot(day_of_week=0, start_hour=16, end_hour=17, week_start_date=week_start)

    assert monday_weeks.session_date_for(monday) == date(2026, 1, 5)
    assert monday_weeks.session_date_for(sunday) == date(2026, 1, 11)


def test_session_date_for_default_sunday_week(service, make_slot) -> None:
    slot = make_slot(day_of_week=1)

    assert service.session_date_for(slot) == date(2026, 1, 5)
    assert service.time_slot_for(slot).start_time == '14:00'
