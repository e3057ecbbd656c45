import logging
import random
import time
from typing import Dict, List, Optional, Sequence

from timetable.schemas.schedule import Classroom, Conflict, ConflictType, ScheduledEntry, Severity, Subject, TimeSlot
from timetable.services.scheduler.constraints import ConstraintChecker
from timetable.services.scheduler.errors import SearchBudgetExceeded
from timetable.services.scheduler.grid import ScheduleState
from timetable.services.scheduler.requirements import LAB_SESSION_SLOTS, Requirement
from timetable.services.scheduler.validator import insufficient_periods_conflict

logger = logging.getLogger(__name__)

LAB_ROOM_TYPES = ("lab",)
THEORY_ROOM_TYPES = ("lecture", "seminar")


class SearchBudget:
    """Step and wall-clock bound for the day/slot search loops."""

    def __init__(self, max_steps: Optional[int] = None, time_limit: Optional[float] = None, clock=time.monotonic):
        self.max_steps = max_steps
        self.clock = clock
        self.deadline = clock() + time_limit if time_limit is not None else None
        self.steps = 0

    def tick(self):
        self.steps += 1
        if self.max_steps is not None and self.steps > self.max_steps:
            raise SearchBudgetExceeded(f"step budget of {self.max_steps} exhausted")
        if self.deadline is not None and self.clock() > self.deadline:
            raise SearchBudgetExceeded("time limit reached")


class SlotAllocator:
    """Greedy placement of theory periods and lab sessions into the batch grid.

    Requirements are taken in the order given (labs first, biggest first).
    For each one the working days are visited in a shuffled order and every
    day is filled as far as the constraints allow before moving on.
    """

    def __init__(
        self,
        state: ScheduleState,
        checker: ConstraintChecker,
        classrooms: List[Classroom],
        *,
        rng: Optional[random.Random] = None,
        day_order: Optional[Sequence[str]] = None,
        budget: Optional[SearchBudget] = None,
        batch_size: int = 0,
    ):
        self.state = state
        self.checker = checker
        self.classrooms = classrooms
        self.rng = rng or random.Random()
        self.day_order = list(day_order) if day_order else None
        self.budget = budget or SearchBudget()
        self.batch_size = batch_size
        self.placed: Dict[tuple, int] = {}

    def allocate(self, requirements: List[Requirement]) -> List[Conflict]:
        conflicts = []
        for index, requirement in enumerate(requirements):
            try:
                placed = self._allocate_requirement(requirement)
            except SearchBudgetExceeded as exc:
                logger.warning("Allocation stopped early: %s", exc)
                conflicts.append(
                    Conflict(
                        type=ConflictType.SEARCH_BUDGET_EXHAUSTED,
                        severity=Severity.WARNING,
                        description=f"Allocation stopped early ({exc}); {len(requirements) - index} requirements left",
                    )
                )
                for rest in requirements[index:]:
                    done = self.placed.get(rest.key, 0)
                    if done < rest.periods_required:
                        conflicts.append(
                            insufficient_periods_conflict(rest.subject, rest.is_lab, done, rest.periods_required)
                        )
                break

            if placed < requirement.periods_required:
                logger.warning(
                    "Scheduled %d/%d for %s", placed, requirement.periods_required, requirement.label
                )
                conflicts.append(
                    insufficient_periods_conflict(
                        requirement.subject, requirement.is_lab, placed, requirement.periods_required
                    )
                )
        return conflicts

    def _days(self) -> List[str]:
        if self.day_order is not None:
            return [d for d in self.day_order if d in self.state.days]
        days = list(self.state.days)
        self.rng.shuffle(days)
        return days

    def _allocate_requirement(self, requirement: Requirement) -> int:
        self.placed[requirement.key] = 0
        for day in self._days():
            needed = requirement.periods_required - self.placed[requirement.key]
            if needed <= 0:
                break
            self.budget.tick()
            if requirement.is_lab:
                self._place_labs(requirement, day, needed)
            else:
                self._place_theory(requirement, day, needed)
        return self.placed[requirement.key]

    def _place_labs(self, requirement: Requirement, day: str, needed: int):
        free = self.state.free_slots(day)
        i = 0
        placed = 0
        while i < len(free) - 1 and placed < needed:
            self.budget.tick()
            pair = [free[i], free[i + 1]]
            if not self.checker.consecutive(pair[0], pair[1]):
                i += 1
                continue
            if not self.checker.teacher_can_take(requirement.teacher, day, pair):
                i += 1
                continue
            room = self._find_classroom(requirement.subject, LAB_ROOM_TYPES, day, pair)
            if room is None:
                i += 1
                continue

            for slot in pair:
                self._book(requirement, day, slot, room, consecutive_slots=LAB_SESSION_SLOTS)
            logger.debug("Lab %s on %s at %s in %s", requirement.label, day, pair[0].start_time, room.id)
            placed += 1
            self.placed[requirement.key] += 1
            # Second slot of the pair is consumed
            i += 2

    def _place_theory(self, requirement: Requirement, day: str, needed: int):
        placed = 0
        for slot in self.state.free_slots(day):
            if placed >= needed:
                break
            self.budget.tick()
            if not self.checker.teacher_can_take(requirement.teacher, day, [slot]):
                continue
            room = self._find_classroom(requirement.subject, THEORY_ROOM_TYPES, day, [slot])
            if room is None:
                continue

            self._book(requirement, day, slot, room, consecutive_slots=1)
            logger.debug("Period %s on %s at %s in %s", requirement.label, day, slot.start_time, room.id)
            placed += 1
            self.placed[requirement.key] += 1

    def _find_classroom(self, subject: Subject, room_types, day: str, slots: List[TimeSlot]) -> Optional[Classroom]:
        """Department rooms first, then any room; smallest sufficient capacity first."""
        suitable = sorted(
            (r for r in self.classrooms if r.type in room_types and r.capacity >= self.batch_size),
            key=lambda r: (room_types.index(r.type), r.capacity),
        )
        preferred = [r for r in suitable if subject.department and r.department == subject.department]

        for room in preferred + suitable:
            if self.checker.classroom_is_free(room, day, slots):
                return room
        return None

    def _book(self, requirement: Requirement, day: str, slot: TimeSlot, room: Classroom, consecutive_slots: int):
        self.state.book(
            ScheduledEntry(
                subject_id=requirement.subject.id,
                teacher_id=requirement.teacher.id,
                classroom_id=room.id,
                time_slot_id=slot.id,
                day=day,
                is_lab=requirement.is_lab,
                duration=slot.duration,
                consecutive_slots=consecutive_slots,
            )
        )
