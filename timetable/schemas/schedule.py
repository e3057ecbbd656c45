from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from timetable.core.config import settings

# Index matches the 0 = Sunday convention used by the database
DAY_NAMES = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]


def normalize_day(value):
    """Accept 'Monday', 'monday' or 1 (0 = Sunday) and return 'monday'."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid day: {value!r}")
    if isinstance(value, int):
        if 0 <= value <= 6:
            return DAY_NAMES[value]
        raise ValueError(f"Day of week out of range: {value}")
    day = str(value).strip().lower()
    if day.isdigit():
        return normalize_day(int(day))
    if day not in DAY_NAMES:
        raise ValueError(f"Unknown day: {value!r}")
    return day


def minutes_between(start: time, end: time) -> int:
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


# --- Input entities (read-only for a run) ---
class Teacher(BaseModel):
    id: str
    name: str = ""
    department: Optional[str] = None
    max_hours_per_day: int = Field(default=8, gt=0)
    unavailable_slots: List[str] = []
    preferences: Dict[str, Any] = {}

    @field_validator("unavailable_slots", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return v or []


class Subject(BaseModel):
    id: str
    name: str = ""
    code: Optional[str] = None
    department: Optional[str] = None
    semester: Optional[int] = None
    hours_per_week: int = Field(default=0, ge=0)
    lab_hours_per_week: int = Field(default=0, ge=0)
    teacher_id: Optional[str] = None


class Classroom(BaseModel):
    id: str
    name: str = ""
    type: str = Field(default="lecture", validation_alias=AliasChoices("type", "room_type"))
    department: Optional[str] = None
    capacity: int = 30

    @field_validator("type")
    @classmethod
    def _check_type(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"lecture", "lab", "seminar"}:
            raise ValueError(f"Unknown classroom type: {v!r}")
        return v


class TimeSlot(BaseModel):
    id: str
    day: Optional[str] = None
    start_time: time
    end_time: time
    duration: Optional[int] = None
    is_break: bool = False

    @field_validator("day", mode="before")
    @classmethod
    def _normalize_day(cls, v):
        return normalize_day(v)

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_time <= self.start_time:
            raise ValueError(f"Time slot {self.id} ends before it starts")
        if not self.duration:
            self.duration = minutes_between(self.start_time, self.end_time)
        return self


class FacultyAvailability(BaseModel):
    teacher_id: str
    day: str = Field(validation_alias=AliasChoices("day", "day_of_week"))
    start_time: time
    end_time: time
    is_available: bool = True
    preference_level: int = Field(default=1, ge=1, le=5)

    @field_validator("day", mode="before")
    @classmethod
    def _normalize_day(cls, v):
        return normalize_day(v)


class FacultyLeave(BaseModel):
    teacher_id: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_recurring: bool = False
    recurring_day: Optional[str] = None
    recurring_start_time: Optional[time] = None
    recurring_end_time: Optional[time] = None
    status: str = "approved"

    @field_validator("recurring_day", mode="before")
    @classmethod
    def _normalize_day(cls, v):
        return normalize_day(v)

    @property
    def is_approved(self) -> bool:
        return self.status.lower() == "approved"


class SpecialClass(BaseModel):
    id: str
    name: str = Field(default="", validation_alias=AliasChoices("name", "title"))
    teacher_id: Optional[str] = None
    classroom_id: str
    subject_id: Optional[str] = None
    day: str = Field(validation_alias=AliasChoices("day", "day_of_week"))
    start_time: time
    end_time: time
    priority: int = 1

    @field_validator("day", mode="before")
    @classmethod
    def _normalize_day(cls, v):
        return normalize_day(v)

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_time <= self.start_time:
            raise ValueError(f"Special class {self.id} ends before it starts")
        return self


class Batch(BaseModel):
    id: str
    name: str = ""
    department: Optional[str] = None
    semester: Optional[int] = None
    strength: int = 0
    academic_year: Optional[str] = None


# --- Engine output ---
class ScheduledEntry(BaseModel):
    subject_id: Optional[str] = None
    teacher_id: Optional[str] = None
    classroom_id: Optional[str] = None
    time_slot_id: str
    day: str
    is_lab: bool = False
    is_break: bool = False
    is_lunch: bool = False
    duration: int = 0
    consecutive_slots: int = 1
    special_class_id: Optional[str] = None
    batch_id: Optional[str] = None
    academic_year: Optional[str] = None

    @field_validator("day", mode="before")
    @classmethod
    def _normalize_day(cls, v):
        return normalize_day(v)

    @property
    def is_amenity(self) -> bool:
        return self.is_break or self.is_lunch


class ConflictType(str, Enum):
    TEACHER_CONFLICT = "TEACHER_CONFLICT"
    CLASSROOM_CONFLICT = "CLASSROOM_CONFLICT"
    TEACHER_OVERLOAD = "TEACHER_OVERLOAD"
    INSUFFICIENT_PERIODS = "INSUFFICIENT_PERIODS"
    SPECIAL_CLASS_CONFLICT = "SPECIAL_CLASS_CONFLICT"
    PERSISTENCE_CONFLICT = "PERSISTENCE_CONFLICT"
    SEARCH_BUDGET_EXHAUSTED = "SEARCH_BUDGET_EXHAUSTED"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Conflict(BaseModel):
    type: ConflictType
    severity: Severity
    description: str
    involved_entities: List[str] = []
    teacher_id: Optional[str] = None
    classroom_id: Optional[str] = None
    subject_id: Optional[str] = None
    is_lab: Optional[bool] = None
    day: Optional[str] = None
    time_slot_id: Optional[str] = None

    def key(self):
        """Identity used for de-duplication and stable ordering."""
        return (
            self.type.value,
            self.teacher_id or "",
            self.classroom_id or "",
            self.subject_id or "",
            "" if self.is_lab is None else str(self.is_lab),
            self.day or "",
            self.time_slot_id or "",
            tuple(sorted(self.involved_entities)),
        )


class RunStatus(str, Enum):
    LOADING = "LOADING"
    PLACING_SPECIAL = "PLACING_SPECIAL"
    ALLOCATING = "ALLOCATING"
    INSERTING_BREAKS = "INSERTING_BREAKS"
    VALIDATING = "VALIDATING"
    SUCCEEDED = "SUCCEEDED"
    SUCCEEDED_WITH_CONFLICTS = "SUCCEEDED_WITH_CONFLICTS"
    FAILED = "FAILED"


# --- Request / response models ---
class GenerationConstraints(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    batch_id: Optional[str] = None
    department: Optional[str] = None
    semester: Optional[int] = None
    academic_year: str
    max_teacher_hours_per_day: int = Field(
        default_factory=lambda: settings.DEFAULT_MAX_TEACHER_HOURS_PER_DAY, gt=0
    )
    include_lunch_break: bool = True
    respect_faculty_availability: bool = False
    include_special_classes: bool = True
    clear_existing: bool = False
    # Monday of the target week; enables date-ranged leave checks
    week_start: Optional[date] = None
    working_days: Optional[List[str]] = None

    @field_validator("working_days", mode="before")
    @classmethod
    def _normalize_working_days(cls, v):
        if v is None:
            return None
        return [normalize_day(d) for d in v]

    @model_validator(mode="after")
    def _check_target(self):
        if not self.batch_id and not (self.department and self.semester):
            raise ValueError("Either batch_id or department + semester is required")
        return self

    def days(self) -> List[str]:
        return list(self.working_days or [normalize_day(d) for d in settings.WORKING_DAYS])


class ScheduleInput(BaseModel):
    """Everything one run reads. Mirrors what the repository loads."""

    teachers: List[Teacher] = []
    subjects: List[Subject] = []
    classrooms: List[Classroom] = []
    time_slots: List[TimeSlot] = []
    faculty_availability: List[FacultyAvailability] = []
    faculty_leaves: List[FacultyLeave] = []
    special_classes: List[SpecialClass] = []
    # Entries already persisted for other batches in the same academic year
    existing_entries: List[ScheduledEntry] = []
    batch: Optional[Batch] = None


class GenerationStatistics(BaseModel):
    total_slots: int = 0
    scheduled_slots: int = 0
    utilization: float = 0.0
    conflicts: int = 0
    subjects: int = 0
    teachers: int = 0
    classrooms: int = 0
    breaks: int = 0
    lunches: int = 0
    entries_by_day: Dict[str, int] = {}


class GenerationResult(BaseModel):
    success: bool
    status: RunStatus
    # Includes break and lunch rows (is_break / is_lunch) next to the teaching entries
    entries: List[ScheduledEntry] = []
    conflicts: List[Conflict] = []
    statistics: Optional[GenerationStatistics] = None
    generated_at: datetime
    error: Optional[str] = None
    constraints: Optional[GenerationConstraints] = None


class ValidationRequest(BaseModel):
    entries: List[ScheduledEntry]
    subjects: List[Subject] = []
    teachers: List[Teacher] = []
    max_teacher_hours_per_day: Optional[int] = Field(default=None, gt=0)
    existing_entries: List[ScheduledEntry] = []


class ValidationResult(BaseModel):
    is_valid: bool
    conflicts: List[Conflict] = []
