import logging
from collections import defaultdict
from datetime import time
from typing import Dict, Iterable, List, Optional, Tuple

from timetable.schemas.schedule import ScheduledEntry, TimeSlot

logger = logging.getLogger(__name__)


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


class ScheduleState:
    """Run-local slot grid for one batch plus the occupancy indices.

    Every (day, slot) cell holds at most one entry of this run. Teacher and
    classroom bookings also include entries of other batches so the
    allocator never double-books across batches.
    """

    def __init__(self, days: List[str], time_slots: List[TimeSlot], external_entries: Iterable[ScheduledEntry] = ()):
        self.days = list(days)
        self.slot_index: Dict[str, TimeSlot] = {s.id: s for s in time_slots}
        self.slots_by_day: Dict[str, List[TimeSlot]] = {}
        for day in self.days:
            day_slots = [s for s in time_slots if s.day is None or s.day == day]
            self.slots_by_day[day] = sorted(day_slots, key=lambda s: (s.start_time, s.end_time))

        self.entries: List[ScheduledEntry] = []
        self.cells: Dict[Tuple[str, str], ScheduledEntry] = {}
        self.teacher_bookings = set()
        self.classroom_bookings = set()
        # (teacher_id, day) -> minutes already taught that day
        self.teacher_minutes: Dict[Tuple[str, str], int] = defaultdict(int)

        for entry in external_entries:
            self._index(entry)

    @property
    def grid_size(self) -> int:
        return sum(len([s for s in slots if not s.is_break]) for slots in self.slots_by_day.values())

    def is_cell_free(self, day: str, slot_id: str) -> bool:
        return (day, slot_id) not in self.cells

    def free_slots(self, day: str) -> List[TimeSlot]:
        """Chronological non-break slots of the day that are still empty."""
        return [s for s in self.slots_by_day.get(day, []) if not s.is_break and self.is_cell_free(day, s.id)]

    def find_free_slot(self, day: str, not_before: time, not_after: time) -> Optional[TimeSlot]:
        """First empty slot (break-flagged slots included) inside the window."""
        for slot in self.slots_by_day.get(day, []):
            if slot.start_time >= not_before and slot.end_time <= not_after and self.is_cell_free(day, slot.id):
                return slot
        return None

    def book(self, entry: ScheduledEntry) -> ScheduledEntry:
        key = (entry.day, entry.time_slot_id)
        if key in self.cells:
            raise ValueError(f"Cell {entry.day}/{entry.time_slot_id} is already occupied")
        self.cells[key] = entry
        self.entries.append(entry)
        self._index(entry)
        return entry

    def _index(self, entry: ScheduledEntry) -> None:
        if entry.is_amenity:
            return
        if entry.teacher_id:
            self.teacher_bookings.add((entry.teacher_id, entry.day, entry.time_slot_id))
            self.teacher_minutes[(entry.teacher_id, entry.day)] += entry.duration
        if entry.classroom_id:
            self.classroom_bookings.add((entry.classroom_id, entry.day, entry.time_slot_id))

    def slot_for(self, entry: ScheduledEntry) -> TimeSlot:
        return self.slot_index[entry.time_slot_id]
