from datetime import date, time

from timetable.schemas.schedule import Classroom, FacultyAvailability, FacultyLeave, ScheduledEntry, Teacher
from timetable.services.scheduler.constraints import ConstraintChecker, are_consecutive, daily_cap_minutes
from timetable.services.scheduler.grid import ScheduleState

from tests.conftest import WEEK, make_slots

SLOTS = make_slots()
TEACHER = Teacher(id="T1", max_hours_per_day=8)


def checker_for(state, teacher=TEACHER, **kwargs):
    return ConstraintChecker(state, [teacher], **kwargs)


def test_unavailable_slot_rejected():
    state = ScheduleState(WEEK, SLOTS)
    teacher = Teacher(id="T1", unavailable_slots=["s2"])
    checker = checker_for(state, teacher)

    assert checker.teacher_can_take(teacher, "monday", [SLOTS[0]])
    assert not checker.teacher_can_take(teacher, "monday", [SLOTS[1]])
    assert not checker.teacher_can_take(teacher, "monday", [SLOTS[0], SLOTS[1]])


def test_existing_booking_rejected():
    state = ScheduleState(
        WEEK,
        SLOTS,
        external_entries=[ScheduledEntry(teacher_id="T1", classroom_id="R9", time_slot_id="s1", day="monday", duration=60)],
    )
    checker = checker_for(state)

    assert not checker.teacher_can_take(TEACHER, "monday", [SLOTS[0]])
    assert checker.teacher_can_take(TEACHER, "tuesday", [SLOTS[0]])
    assert not checker.classroom_is_free(Classroom(id="R9"), "monday", [SLOTS[0]])
    assert checker.classroom_is_free(Classroom(id="R1"), "monday", [SLOTS[0]])


def test_daily_cap_counts_candidate_duration():
    state = ScheduleState(WEEK, SLOTS)
    state.teacher_minutes[("T1", "monday")] = 60
    checker = checker_for(state, max_teacher_hours_per_day=2)

    assert checker.teacher_can_take(TEACHER, "monday", [SLOTS[0]])
    assert not checker.teacher_can_take(TEACHER, "monday", [SLOTS[0], SLOTS[1]])


def test_cap_is_the_stricter_limit():
    assert daily_cap_minutes(Teacher(id="T1", max_hours_per_day=4), 8) == 240
    assert daily_cap_minutes(Teacher(id="T1", max_hours_per_day=6), 5) == 300
    assert daily_cap_minutes(None, None) == 480


def test_availability_must_cover_the_slot():
    state = ScheduleState(WEEK, SLOTS)
    rows = [
        FacultyAvailability(teacher_id="T1", day_of_week=1, start_time="09:00", end_time="11:00"),
        FacultyAvailability(teacher_id="T1", day="tuesday", start_time="09:00", end_time="12:00", is_available=False),
    ]
    checker = checker_for(state, respect_availability=True, availability=rows)

    assert checker.teacher_can_take(TEACHER, "monday", [SLOTS[0], SLOTS[1]])
    assert not checker.teacher_can_take(TEACHER, "monday", [SLOTS[2]])
    assert not checker.teacher_can_take(TEACHER, "tuesday", [SLOTS[0]])


def test_availability_ignored_unless_enforced():
    state = ScheduleState(WEEK, SLOTS)
    checker = checker_for(state, respect_availability=False, availability=[])
    assert checker.teacher_can_take(TEACHER, "friday", [SLOTS[4]])


def test_recurring_leave_blocks_overlapping_window():
    state = ScheduleState(WEEK, SLOTS)
    rows = [FacultyAvailability(teacher_id="T1", day=d, start_time="08:00", end_time="18:00") for d in WEEK]
    leaves = [
        FacultyLeave(teacher_id="T1", is_recurring=True, recurring_day=3,
                     recurring_start_time="10:30", recurring_end_time="11:30"),
        FacultyLeave(teacher_id="T1", is_recurring=True, recurring_day="monday", status="pending"),
    ]
    checker = checker_for(state, respect_availability=True, availability=rows, leaves=leaves)

    assert checker.teacher_can_take(TEACHER, "wednesday", [SLOTS[0]])
    assert not checker.teacher_can_take(TEACHER, "wednesday", [SLOTS[1]])
    assert not checker.teacher_can_take(TEACHER, "wednesday", [SLOTS[2]])
    assert checker.teacher_can_take(TEACHER, "wednesday", [SLOTS[3]])
    # pending leave does not count
    assert checker.teacher_can_take(TEACHER, "monday", [SLOTS[0]])


def test_dated_leave_needs_week_start():
    state = ScheduleState(WEEK, SLOTS)
    rows = [FacultyAvailability(teacher_id="T1", day=d, start_time="08:00", end_time="18:00") for d in WEEK]
    leaves = [FacultyLeave(teacher_id="T1", start_date=date(2024, 9, 3), end_date=date(2024, 9, 4))]

    undated = checker_for(state, respect_availability=True, availability=rows, leaves=leaves)
    assert undated.teacher_can_take(TEACHER, "tuesday", [SLOTS[0]])

    # 2024-09-02 is a Monday
    dated = checker_for(state, respect_availability=True, availability=rows, leaves=leaves, week_start=date(2024, 9, 2))
    assert dated.teacher_can_take(TEACHER, "monday", [SLOTS[0]])
    assert not dated.teacher_can_take(TEACHER, "tuesday", [SLOTS[0]])
    assert not dated.teacher_can_take(TEACHER, "wednesday", [SLOTS[4]])
    assert dated.teacher_can_take(TEACHER, "thursday", [SLOTS[0]])


def test_consecutive_within_gap_tolerance():
    a, b = make_slots(2, gap=10)
    c, d = make_slots(2, gap=15)

    assert are_consecutive(a, b, 10)
    assert not are_consecutive(c, d, 10)
    assert not are_consecutive(b, a, 10)
    assert are_consecutive(*make_slots(2, start=time(14, 0)), 0)
