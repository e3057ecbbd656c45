import logging
import math
from dataclasses import dataclass
from typing import Iterable, List

from timetable.schemas.schedule import Subject, Teacher
from timetable.services.scheduler.errors import InvalidScheduleInput

logger = logging.getLogger(__name__)

# A lab session always takes two back-to-back slots
LAB_SESSION_SLOTS = 2


@dataclass
class Requirement:
    subject: Subject
    teacher: Teacher
    periods_required: int
    is_lab: bool

    @property
    def key(self):
        return (self.subject.id, self.is_lab)

    @property
    def label(self) -> str:
        kind = "lab" if self.is_lab else "theory"
        return f"{self.subject.name or self.subject.id} ({kind})"


def calculate_requirements(subjects: Iterable[Subject], teachers: Iterable[Teacher]) -> List[Requirement]:
    """Weekly period demand per subject, split into theory and lab.

    Theory needs hours_per_week single periods; lab needs
    ceil(lab_hours_per_week / 2) two-slot sessions. The result is ordered
    labs first, then by periods_required descending.
    """
    teacher_info = {t.id: t for t in teachers}
    subjects = list(subjects)

    unassigned = [s.id for s in subjects if not s.teacher_id]
    if unassigned:
        raise InvalidScheduleInput(f"{len(unassigned)} subjects have no assigned teacher: {', '.join(unassigned)}")

    requirements = []
    for subject in subjects:
        teacher = teacher_info.get(subject.teacher_id)
        if teacher is None:
            raise InvalidScheduleInput(f"Subject {subject.id} references unknown teacher {subject.teacher_id}")

        if subject.hours_per_week > 0:
            requirements.append(Requirement(subject, teacher, subject.hours_per_week, is_lab=False))

        if subject.lab_hours_per_week > 0:
            sessions = math.ceil(subject.lab_hours_per_week / LAB_SESSION_SLOTS)
            requirements.append(Requirement(subject, teacher, sessions, is_lab=True))

    requirements.sort(key=lambda r: (not r.is_lab, -r.periods_required))
    logger.debug("Calculated %d requirements for %d subjects", len(requirements), len(subjects))
    return requirements


def required_periods(subject: Subject, is_lab: bool) -> int:
    if is_lab:
        return math.ceil(subject.lab_hours_per_week / LAB_SESSION_SLOTS)
    return subject.hours_per_week
