from collections import defaultdict
from typing import Iterable, List, Optional

from timetable.schemas.schedule import (
    Conflict,
    ConflictType,
    ScheduledEntry,
    Severity,
    Subject,
    Teacher,
    ValidationResult,
)
from timetable.services.scheduler.constraints import daily_cap_minutes
from timetable.services.scheduler.requirements import required_periods


def insufficient_periods_conflict(subject: Subject, is_lab: bool, scheduled: int, required: int) -> Conflict:
    unit = "lab sessions" if is_lab else "periods"
    return Conflict(
        type=ConflictType.INSUFFICIENT_PERIODS,
        severity=Severity.WARNING,
        description=(
            f"Could only schedule {scheduled}/{required} {unit} for {subject.name or subject.id}"
        ),
        involved_entities=[subject.id],
        subject_id=subject.id,
        teacher_id=subject.teacher_id,
        is_lab=is_lab,
    )


def sort_conflicts(conflicts: Iterable[Conflict]) -> List[Conflict]:
    """Drop duplicates (first one wins) and order deterministically."""
    unique = {}
    for conflict in conflicts:
        unique.setdefault(conflict.key(), conflict)
    return [unique[k] for k in sorted(unique)]


class ScheduleValidator:
    def __init__(
        self,
        entries: List[ScheduledEntry],
        subjects: Iterable[Subject] = (),
        teachers: Iterable[Teacher] = (),
        max_teacher_hours_per_day: Optional[int] = None,
        external_entries: Iterable[ScheduledEntry] = (),
    ):
        """
        :param entries: the run's entries (the ones being checked)
        :param subjects: subjects whose weekly demand should be met by ``entries``
        :param external_entries: bookings of other batches; they only matter
               when they collide with one of ``entries``
        """
        self.entries = list(entries)
        self.external = list(external_entries)
        self.subjects = list(subjects)
        self.teacher_info = {t.id: t for t in teachers}
        self.run_cap = max_teacher_hours_per_day
        self.errors: List[Conflict] = []

    def validate(self) -> ValidationResult:
        self.errors = []
        self._v_teacher_conflict()
        self._v_classroom_conflict()
        self._v_teacher_overload()
        self._v_subject_counts()
        conflicts = sort_conflicts(self.errors)
        return ValidationResult(is_valid=len(conflicts) == 0, conflicts=conflicts)

    def _tagged(self):
        # Amenity rows never book a teacher or a room
        for e in self.entries:
            if not e.is_amenity:
                yield e, True
        for e in self.external:
            if not e.is_amenity:
                yield e, False

    @staticmethod
    def _activity(entry: ScheduledEntry) -> str:
        if entry.special_class_id:
            return f"special:{entry.special_class_id}"
        return entry.subject_id or "unknown"

    def _double_bookings(self, attr: str):
        usage = defaultdict(list)
        for entry, is_own in self._tagged():
            owner = getattr(entry, attr)
            if owner:
                usage[(owner, entry.day, entry.time_slot_id)].append((entry, is_own))

        for (owner, day, slot_id), booked in usage.items():
            activities = sorted({self._activity(e) for e, _ in booked})
            if len(activities) > 1 and any(is_own for _, is_own in booked):
                yield owner, day, slot_id, activities

    def _v_teacher_conflict(self):
        # Teacher cannot teach two different things in the same slot
        for teacher_id, day, slot_id, activities in self._double_bookings("teacher_id"):
            self.errors.append(
                Conflict(
                    type=ConflictType.TEACHER_CONFLICT,
                    severity=Severity.ERROR,
                    description=f"Teacher {teacher_id} double-booked on {day} in slot {slot_id}",
                    involved_entities=[teacher_id] + activities,
                    teacher_id=teacher_id,
                    day=day,
                    time_slot_id=slot_id,
                )
            )

    def _v_classroom_conflict(self):
        for classroom_id, day, slot_id, activities in self._double_bookings("classroom_id"):
            self.errors.append(
                Conflict(
                    type=ConflictType.CLASSROOM_CONFLICT,
                    severity=Severity.ERROR,
                    description=f"Classroom {classroom_id} double-booked on {day} in slot {slot_id}",
                    involved_entities=[classroom_id] + activities,
                    classroom_id=classroom_id,
                    day=day,
                    time_slot_id=slot_id,
                )
            )

    def _v_teacher_overload(self):
        minutes = defaultdict(int)
        own_days = set()
        for entry, is_own in self._tagged():
            if not entry.teacher_id:
                continue
            key = (entry.teacher_id, entry.day)
            minutes[key] += entry.duration
            if is_own:
                own_days.add(key)

        for teacher_id, day in sorted(own_days):
            cap = daily_cap_minutes(self.teacher_info.get(teacher_id), self.run_cap)
            total = minutes[(teacher_id, day)]
            if total > cap:
                self.errors.append(
                    Conflict(
                        type=ConflictType.TEACHER_OVERLOAD,
                        severity=Severity.ERROR,
                        description=(
                            f"Teacher {teacher_id} scheduled for {total / 60:g} hours on {day} "
                            f"(max: {cap / 60:g})"
                        ),
                        involved_entities=[teacher_id],
                        teacher_id=teacher_id,
                        day=day,
                    )
                )

    def _v_subject_counts(self):
        theory = defaultdict(int)
        lab_slots = defaultdict(int)
        for entry in self.entries:
            if entry.is_amenity or entry.special_class_id or not entry.subject_id:
                continue
            if entry.is_lab:
                lab_slots[entry.subject_id] += 1
            else:
                theory[entry.subject_id] += 1

        for subject in self.subjects:
            for is_lab, scheduled in ((False, theory[subject.id]), (True, lab_slots[subject.id] // 2)):
                required = required_periods(subject, is_lab)
                if scheduled < required:
                    self.errors.append(insufficient_periods_conflict(subject, is_lab, scheduled, required))
