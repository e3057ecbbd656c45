import logging
from typing import Iterable, List, Optional

from timetable.schemas.schedule import Conflict, ConflictType, ScheduledEntry, Severity, SpecialClass, TimeSlot
from timetable.services.scheduler.constraints import ConstraintChecker
from timetable.services.scheduler.grid import ScheduleState

logger = logging.getLogger(__name__)


class SpecialClassPlacer:
    """Pins special classes to their fixed day/time before generic scheduling.

    Placed cells are booked in the grid with the special class's own teacher
    and classroom and are never handed out again.
    """

    def __init__(self, state: ScheduleState, checker: ConstraintChecker):
        self.state = state
        self.checker = checker

    def place_all(self, special_classes: Iterable[SpecialClass]) -> List[Conflict]:
        conflicts = []
        # Higher priority claims its window first
        for special in sorted(special_classes, key=lambda s: -s.priority):
            window = self._find_window(special)
            if window is None:
                logger.info("Cannot place special class %s on %s", special.name or special.id, special.day)
                conflicts.append(self._conflict(special))
                continue

            for slot in window:
                self.state.book(
                    ScheduledEntry(
                        subject_id=special.subject_id,
                        teacher_id=special.teacher_id,
                        classroom_id=special.classroom_id,
                        time_slot_id=slot.id,
                        day=special.day,
                        duration=slot.duration,
                        consecutive_slots=len(window),
                        special_class_id=special.id,
                    )
                )
            logger.debug("Placed special class %s on %s (%d slots)", special.id, special.day, len(window))
        return conflicts

    def _find_window(self, special: SpecialClass) -> Optional[List[TimeSlot]]:
        """Smallest run of adjacent free slots whose span covers the special class."""
        day_slots = self.state.slots_by_day.get(special.day)
        if not day_slots:
            return None

        for i, first in enumerate(day_slots):
            if first.start_time > special.start_time:
                break
            if first.end_time <= special.start_time:
                continue

            window = [first]
            j = i
            while window[-1].end_time < special.end_time and j + 1 < len(day_slots):
                nxt = day_slots[j + 1]
                if not self.checker.consecutive(window[-1], nxt):
                    break
                window.append(nxt)
                j += 1

            if window[-1].end_time >= special.end_time and all(self._usable(special, s) for s in window):
                return window
        return None

    def _usable(self, special: SpecialClass, slot: TimeSlot) -> bool:
        if slot.is_break or not self.state.is_cell_free(special.day, slot.id):
            return False
        if special.teacher_id and (special.teacher_id, special.day, slot.id) in self.state.teacher_bookings:
            return False
        return (special.classroom_id, special.day, slot.id) not in self.state.classroom_bookings

    @staticmethod
    def _conflict(special: SpecialClass) -> Conflict:
        return Conflict(
            type=ConflictType.SPECIAL_CLASS_CONFLICT,
            severity=Severity.INFO,
            description=f"Cannot place special class: {special.name or special.id}",
            involved_entities=[special.id],
            teacher_id=special.teacher_id,
            classroom_id=special.classroom_id,
            subject_id=special.subject_id,
            day=special.day,
        )
