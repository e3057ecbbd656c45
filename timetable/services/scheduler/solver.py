import logging
import random
from collections import Counter
from datetime import datetime, time, timezone
from typing import List, Optional, Sequence

from postgrest.exceptions import APIError

from timetable.core.config import settings
from timetable.schemas.schedule import (
    Conflict,
    GenerationConstraints,
    GenerationResult,
    GenerationStatistics,
    RunStatus,
    ScheduleInput,
)
from timetable.services.scheduler.allocator import SearchBudget, SlotAllocator
from timetable.services.scheduler.amenities import BreakInserter
from timetable.services.scheduler.constraints import ConstraintChecker
from timetable.services.scheduler.errors import InvalidScheduleInput
from timetable.services.scheduler.grid import ScheduleState
from timetable.services.scheduler.requirements import calculate_requirements
from timetable.services.scheduler.special_classes import SpecialClassPlacer
from timetable.services.scheduler.validator import ScheduleValidator, sort_conflicts

logger = logging.getLogger(__name__)


class AutoSchedulerService:
    def __init__(
        self,
        data: ScheduleInput,
        constraints: GenerationConstraints,
        *,
        rng: Optional[random.Random] = None,
        day_order: Optional[Sequence[str]] = None,
        budget: Optional[SearchBudget] = None,
    ):
        """
        One generation run over an already loaded input snapshot. Every
        piece of mutable state lives on this instance, so separate runs can
        execute side by side.

        :param rng: source for the per-requirement day shuffle (seed it for reproducible runs)
        :param day_order: explicit day visiting order; overrides ``rng``
        :param budget: search bound; defaults to the configured time/step limits
        """
        self.data = data
        self.constraints = constraints
        self.rng = rng
        self.day_order = day_order
        self.budget = budget
        self.status = RunStatus.LOADING
        self.conflicts: List[Conflict] = []

    def solve(self) -> GenerationResult:
        logger.info("=== Starting timetable generation (%s) ===", self._target())
        try:
            return self._run()
        except ValueError as exc:
            # InvalidScheduleInput and malformed values from the helpers land here
            logger.error("Timetable generation failed: %s", exc)
            self._transition(RunStatus.FAILED)
            return failed_result(self.constraints, str(exc))

    def _run(self) -> GenerationResult:
        self._diagnose_data()
        requirements = calculate_requirements(self.data.subjects, self.data.teachers)
        days = self.constraints.days()

        state = ScheduleState(days, self.data.time_slots, self.data.existing_entries)
        checker = ConstraintChecker(
            state,
            self.data.teachers,
            max_teacher_hours_per_day=self.constraints.max_teacher_hours_per_day,
            respect_availability=self.constraints.respect_faculty_availability,
            availability=self.data.faculty_availability,
            leaves=self.data.faculty_leaves,
            week_start=self.constraints.week_start,
            gap_tolerance=settings.LAB_GAP_TOLERANCE_MINUTES,
        )

        self._transition(RunStatus.PLACING_SPECIAL)
        if self.constraints.include_special_classes and self.data.special_classes:
            self.conflicts += SpecialClassPlacer(state, checker).place_all(self.data.special_classes)

        self._transition(RunStatus.ALLOCATING)
        allocator = SlotAllocator(
            state,
            checker,
            self.data.classrooms,
            rng=self.rng,
            day_order=self.day_order,
            budget=self.budget or SearchBudget(settings.ALLOCATOR_MAX_STEPS, settings.ALLOCATOR_TIME_LIMIT_SECONDS),
            batch_size=self.data.batch.strength if self.data.batch else 0,
        )
        self.conflicts += allocator.allocate(requirements)

        self._transition(RunStatus.INSERTING_BREAKS)
        inserter = BreakInserter(
            state,
            max_continuous_minutes=settings.MAX_CONTINUOUS_HOURS * 60,
            break_duration=settings.BREAK_DURATION_MINUTES,
            lunch_window=(time.fromisoformat(settings.LUNCH_WINDOW_START), time.fromisoformat(settings.LUNCH_WINDOW_END)),
            lunch_duration=settings.LUNCH_DURATION_MINUTES,
            gap_tolerance=settings.LAB_GAP_TOLERANCE_MINUTES,
        )
        inserter.insert_all(include_lunch=self.constraints.include_lunch_break)

        self._transition(RunStatus.VALIDATING)
        report = ScheduleValidator(
            state.entries,
            subjects=self.data.subjects,
            teachers=self.data.teachers,
            max_teacher_hours_per_day=self.constraints.max_teacher_hours_per_day,
            external_entries=self.data.existing_entries,
        ).validate()
        # Validator findings first so they win over the allocator's copy of a shortfall
        self.conflicts = sort_conflicts(report.conflicts + self.conflicts)

        entries = self._stamp(state)
        self._transition(RunStatus.SUCCEEDED_WITH_CONFLICTS if self.conflicts else RunStatus.SUCCEEDED)
        logger.info("Generated %d entries with %d conflicts", len(entries), len(self.conflicts))

        return GenerationResult(
            success=True,
            status=self.status,
            entries=entries,
            conflicts=self.conflicts,
            statistics=self._statistics(state, inserter),
            generated_at=datetime.now(timezone.utc),
            constraints=self.constraints,
        )

    def _diagnose_data(self):
        """Reject inputs no schedule can come out of; warn about obvious overload."""
        missing = [
            name
            for name, rows in (
                ("teachers", self.data.teachers),
                ("subjects", self.data.subjects),
                ("classrooms", self.data.classrooms),
                ("time slots", self.data.time_slots),
            )
            if not rows
        ]
        if missing:
            raise InvalidScheduleInput(f"No {', '.join(missing)} available")

        days = self.constraints.days()
        available = sum(
            1 for s in self.data.time_slots if not s.is_break for d in days if s.day is None or s.day == d
        )
        demand = sum(s.hours_per_week + s.lab_hours_per_week for s in self.data.subjects)
        logger.debug("[Diag] %d grid slots for %d required periods", available, demand)
        if demand > available:
            logger.warning("[Diag] Batch needs %d periods but only %d slots exist", demand, available)

        teacher_load = Counter()
        for subject in self.data.subjects:
            if subject.teacher_id:
                teacher_load[subject.teacher_id] += subject.hours_per_week + subject.lab_hours_per_week
        for teacher_id, load in teacher_load.items():
            if load > available:
                logger.warning("[Diag] Teacher %s needs %d periods (max %d)", teacher_id, load, available)

    def _transition(self, status: RunStatus):
        logger.info("Run state %s -> %s", self.status.value, status.value)
        self.status = status

    def _target(self) -> str:
        c = self.constraints
        return c.batch_id or f"{c.department} sem {c.semester}"

    def _stamp(self, state: ScheduleState):
        ordered = sorted(state.entries, key=lambda e: (state.days.index(e.day), state.slot_for(e).start_time))
        batch_id = self.constraints.batch_id or (self.data.batch.id if self.data.batch else None)
        for entry in ordered:
            entry.batch_id = batch_id
            entry.academic_year = self.constraints.academic_year
        return ordered

    def _statistics(self, state: ScheduleState, inserter: BreakInserter) -> GenerationStatistics:
        occupied = [e for e in state.entries if not e.is_amenity]
        total = state.grid_size
        return GenerationStatistics(
            total_slots=total,
            scheduled_slots=len(occupied),
            utilization=round(len(occupied) / total * 100, 2) if total else 0.0,
            conflicts=len(self.conflicts),
            subjects=len(self.data.subjects),
            teachers=len({e.teacher_id for e in occupied if e.teacher_id}),
            classrooms=len({e.classroom_id for e in occupied if e.classroom_id}),
            breaks=inserter.breaks,
            lunches=inserter.lunches,
            entries_by_day={day: sum(1 for e in occupied if e.day == day) for day in state.days},
        )


def failed_result(constraints: Optional[GenerationConstraints], message: str) -> GenerationResult:
    return GenerationResult(
        success=False,
        status=RunStatus.FAILED,
        generated_at=datetime.now(timezone.utc),
        error=message,
        constraints=constraints,
    )


def generate(
    constraints: GenerationConstraints,
    repository,
    *,
    save: bool = False,
    rng: Optional[random.Random] = None,
    day_order: Optional[Sequence[str]] = None,
) -> GenerationResult:
    """Load input, run the engine and (optionally) persist the entries.

    Persistence happens only after a completed run, conflicts or not.
    Rows rejected by the database's uniqueness rules come back as conflicts.
    """
    try:
        data = repository.fetch_generation_data(constraints)
    except (ValueError, APIError) as exc:
        logger.error("Failed to load generation input: %s", exc)
        return failed_result(constraints, str(exc))

    result = AutoSchedulerService(data, constraints, rng=rng, day_order=day_order).solve()

    if save and result.success:
        rejected = repository.save_entries(result.entries, constraints)
        if rejected:
            result.conflicts = sort_conflicts(result.conflicts + rejected)
            result.status = RunStatus.SUCCEEDED_WITH_CONFLICTS
            result.statistics.conflicts = len(result.conflicts)
    return result
