import logging
from collections import defaultdict
from datetime import date, time, timedelta
from typing import Dict, Iterable, List, Optional

from timetable.schemas.schedule import (
    DAY_NAMES,
    Classroom,
    FacultyAvailability,
    FacultyLeave,
    Teacher,
    TimeSlot,
)
from timetable.services.scheduler.grid import ScheduleState, to_minutes

logger = logging.getLogger(__name__)


def daily_cap_minutes(teacher: Optional[Teacher], run_cap_hours: Optional[int]) -> int:
    """Daily teaching cap: the stricter of the teacher's own and the run-wide limit."""
    caps = [c for c in (teacher.max_hours_per_day if teacher else None, run_cap_hours) if c]
    return min(caps) * 60 if caps else 8 * 60


def windows_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    return start_a < end_b and start_b < end_a


def are_consecutive(first: TimeSlot, second: TimeSlot, gap_tolerance: int) -> bool:
    gap = to_minutes(second.start_time) - to_minutes(first.end_time)
    return 0 <= gap <= gap_tolerance


class ConstraintChecker:
    """Hard-constraint predicate used by every placement step.

    A slot set is valid for a teacher iff:
      - none of its slots is in the teacher's unavailable_slots
      - (availability enforced) each slot is covered by an available
        FacultyAvailability row and not overlapped by an approved leave
      - the teacher has no booking at that (day, slot)
      - minutes already taught that day + the set's duration <= cap
    A slot set is valid for a classroom iff nothing occupies (classroom, day, slot).
    """

    def __init__(
        self,
        state: ScheduleState,
        teachers: Iterable[Teacher],
        *,
        max_teacher_hours_per_day: Optional[int] = None,
        respect_availability: bool = False,
        availability: Iterable[FacultyAvailability] = (),
        leaves: Iterable[FacultyLeave] = (),
        week_start: Optional[date] = None,
        gap_tolerance: int = 10,
    ):
        self.state = state
        self.teacher_info: Dict[str, Teacher] = {t.id: t for t in teachers}
        self.run_cap = max_teacher_hours_per_day
        self.respect_availability = respect_availability
        self.week_start = week_start
        self.gap_tolerance = gap_tolerance

        self.availability: Dict[str, List[FacultyAvailability]] = defaultdict(list)
        for row in availability:
            if row.is_available:
                self.availability[row.teacher_id].append(row)

        self.leaves: Dict[str, List[FacultyLeave]] = defaultdict(list)
        for leave in leaves:
            if leave.is_approved:
                self.leaves[leave.teacher_id].append(leave)

    def cap_minutes(self, teacher_id: str) -> int:
        return daily_cap_minutes(self.teacher_info.get(teacher_id), self.run_cap)

    def consecutive(self, first: TimeSlot, second: TimeSlot) -> bool:
        return are_consecutive(first, second, self.gap_tolerance)

    def teacher_can_take(self, teacher: Teacher, day: str, slots: List[TimeSlot]) -> bool:
        for slot in slots:
            if slot.id in teacher.unavailable_slots:
                return False
            if self.respect_availability:
                if not self._is_covered(teacher.id, day, slot):
                    return False
                if self._on_leave(teacher.id, day, slot):
                    return False
            if (teacher.id, day, slot.id) in self.state.teacher_bookings:
                return False

        needed = sum(slot.duration for slot in slots)
        taught = self.state.teacher_minutes.get((teacher.id, day), 0)
        return taught + needed <= self.cap_minutes(teacher.id)

    def classroom_is_free(self, classroom: Classroom, day: str, slots: List[TimeSlot]) -> bool:
        return all((classroom.id, day, slot.id) not in self.state.classroom_bookings for slot in slots)

    def _is_covered(self, teacher_id: str, day: str, slot: TimeSlot) -> bool:
        return any(
            row.day == day and row.start_time <= slot.start_time and row.end_time >= slot.end_time
            for row in self.availability.get(teacher_id, [])
        )

    def _on_leave(self, teacher_id: str, day: str, slot: TimeSlot) -> bool:
        slot_date = self._date_for(day)
        for leave in self.leaves.get(teacher_id, []):
            if slot_date and leave.start_date and leave.end_date:
                if not leave.start_date <= slot_date <= leave.end_date:
                    continue
            if leave.is_recurring:
                if leave.recurring_day != day:
                    continue
                if leave.recurring_start_time is None or leave.recurring_end_time is None:
                    return True
                if windows_overlap(leave.recurring_start_time, leave.recurring_end_time, slot.start_time, slot.end_time):
                    return True
            elif slot_date is not None and leave.start_date and leave.end_date:
                # Dated leave already matched the concrete date above
                return True
        return False

    def _date_for(self, day: str) -> Optional[date]:
        if self.week_start is None:
            return None
        # week_start is a Monday; Sunday closes the week
        offset = (DAY_NAMES.index(day) - 1) % 7
        return self.week_start + timedelta(days=offset)
