import logging
from datetime import time
from typing import Optional

from timetable.schemas.schedule import ScheduledEntry
from timetable.services.scheduler.grid import ScheduleState, to_minutes

logger = logging.getLogger(__name__)


class BreakInserter:
    """Best-effort short breaks and one lunch slot per day.

    Nothing here is a hard constraint: when no empty slot fits, the day is
    left as it is and no conflict is raised.
    """

    def __init__(
        self,
        state: ScheduleState,
        *,
        max_continuous_minutes: int = 180,
        break_duration: int = 25,
        lunch_window: Optional[tuple] = (time(12, 0), time(13, 30)),
        lunch_duration: int = 30,
        gap_tolerance: int = 10,
    ):
        self.state = state
        self.max_continuous_minutes = max_continuous_minutes
        self.break_duration = break_duration
        self.lunch_window = lunch_window
        self.lunch_duration = lunch_duration
        self.gap_tolerance = gap_tolerance
        self.breaks = 0
        self.lunches = 0

    def insert_all(self, include_lunch: bool = True):
        for day in self.state.days:
            self._insert_breaks(day)
            if include_lunch and self.lunch_window:
                self._insert_lunch(day)
        logger.debug("Inserted %d breaks and %d lunch slots", self.breaks, self.lunches)

    def _insert_breaks(self, day: str):
        scheduled = sorted(
            (e for e in self.state.entries if e.day == day and not e.is_amenity),
            key=lambda e: self.state.slot_for(e).start_time,
        )

        continuous = 0
        for current, nxt in zip(scheduled, scheduled[1:]):
            continuous += current.duration
            current_slot = self.state.slot_for(current)
            next_slot = self.state.slot_for(nxt)

            if continuous >= self.max_continuous_minutes:
                slot = self.state.find_free_slot(day, current_slot.end_time, next_slot.start_time)
                if slot is not None:
                    self.state.book(
                        ScheduledEntry(time_slot_id=slot.id, day=day, is_break=True, duration=self.break_duration)
                    )
                    self.breaks += 1
                    continuous = 0
                    continue

            # A long enough gap is already a rest
            if to_minutes(next_slot.start_time) - to_minutes(current_slot.end_time) > self.gap_tolerance:
                continuous = 0

    def _insert_lunch(self, day: str):
        start, end = self.lunch_window
        slot = self.state.find_free_slot(day, start, end)
        if slot is None:
            return
        self.state.book(ScheduledEntry(time_slot_id=slot.id, day=day, is_lunch=True, duration=self.lunch_duration))
        self.lunches += 1
