import logging
from typing import List

from postgrest.exceptions import APIError

from timetable.db.supabase import get_supabase_client
from timetable.schemas.schedule import (
    DAY_NAMES,
    Batch,
    Classroom,
    Conflict,
    ConflictType,
    FacultyAvailability,
    FacultyLeave,
    GenerationConstraints,
    ScheduledEntry,
    ScheduleInput,
    Severity,
    SpecialClass,
    Subject,
    Teacher,
    TimeSlot,
)
from timetable.services.scheduler.errors import InvalidScheduleInput

logger = logging.getLogger(__name__)

ENTRIES_TABLE = "timetable_entries"
# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


class ScheduleRepository:
    def __init__(self, client=None):
        self.client = client if client is not None else get_supabase_client()

    def fetch_generation_data(self, constraints: GenerationConstraints) -> ScheduleInput:
        """Read-only snapshot of everything one generation run needs."""
        try:
            batch = self._fetch_batch(constraints)
            batch_id = batch.id if batch else constraints.batch_id

            data = ScheduleInput(
                batch=batch,
                teachers=[Teacher(**row) for row in self._select("teachers")],
                subjects=self._fetch_subjects(constraints, batch_id),
                classrooms=[Classroom(**row) for row in self._select("classrooms")],
                time_slots=[TimeSlot(**row) for row in self._select("time_slots", order="start_time")],
                existing_entries=self._fetch_other_batches(constraints, batch_id),
            )

            if constraints.respect_faculty_availability:
                year = {"academic_year": constraints.academic_year}
                data.faculty_availability = [
                    FacultyAvailability(**row) for row in self._select("faculty_availability", **year)
                ]
                data.faculty_leaves = [
                    FacultyLeave(**row)
                    for row in self._select("faculty_leaves", status="approved", **year)
                ]

            if constraints.include_special_classes:
                data.special_classes = self._fetch_special_classes(constraints, batch_id)
        except APIError as e:
            logger.error("DB Error: %s", e)
            raise

        logger.info(
            "Loaded: %d teachers, %d subjects, %d classrooms, %d time slots",
            len(data.teachers),
            len(data.subjects),
            len(data.classrooms),
            len(data.time_slots),
        )
        return data

    def save_entries(self, entries: List[ScheduledEntry], constraints: GenerationConstraints) -> List[Conflict]:
        """Insert the run's entries; never overwrites existing rows.

        Returns one PERSISTENCE_CONFLICT per row the database rejected as a
        duplicate (classroom or teacher already booked in that slot). Both
        halves of a lab session are kept or rejected together. On any other
        database error the rows written so far are removed, the batch's
        previous entries are put back and the error is re-raised.
        """
        batch_id = entries[0].batch_id if entries else constraints.batch_id
        previous = []
        if constraints.clear_existing and batch_id:
            previous = self._clear_batch(batch_id, constraints.academic_year)

        written = []
        try:
            conflicts = self._insert_entries(entries, written)
        except APIError as e:
            logger.error("Saving entries failed, rolling back: %s", e)
            self._rollback(written, previous)
            raise
        return conflicts

    def _clear_batch(self, batch_id: str, academic_year: str) -> List[dict]:
        previous = self._select(ENTRIES_TABLE, batch_id=batch_id, academic_year=academic_year)
        (
            self.client.table(ENTRIES_TABLE)
            .delete()
            .eq("batch_id", batch_id)
            .eq("academic_year", academic_year)
            .execute()
        )
        logger.info("Cleared %d existing entries for batch %s (%s)", len(previous), batch_id, academic_year)
        return previous

    def _insert_entries(self, entries: List[ScheduledEntry], written: List[dict]) -> List[Conflict]:
        rows = [entry_to_row(e) for e in entries]
        if not rows:
            return []

        try:
            self.client.table(ENTRIES_TABLE).insert(rows).execute()
            written.extend(rows)
            logger.info("Saved %d timetable entries", len(rows))
            return []
        except APIError as e:
            if e.code != UNIQUE_VIOLATION:
                raise
            logger.warning("Bulk insert hit a uniqueness violation, retrying unit by unit")

        conflicts = []
        for unit in save_units(entries):
            unit_rows = [entry_to_row(e) for e in unit]
            try:
                # One request per unit, so a lab pair lands or fails as a whole
                self.client.table(ENTRIES_TABLE).insert(unit_rows).execute()
                written.extend(unit_rows)
            except APIError as e:
                if e.code != UNIQUE_VIOLATION:
                    raise
                conflicts.extend(persistence_conflict(entry, e.message) for entry in unit)
        logger.info("Saved %d timetable entries, %d rejected", len(written), len(conflicts))
        return conflicts

    def _rollback(self, written: List[dict], previous: List[dict]):
        for row in written:
            (
                self.client.table(ENTRIES_TABLE)
                .delete()
                .eq("batch_id", row["batch_id"])
                .eq("academic_year", row["academic_year"])
                .eq("day_of_week", row["day_of_week"])
                .eq("time_slot_id", row["time_slot_id"])
                .execute()
            )
        if previous:
            self.client.table(ENTRIES_TABLE).insert(previous).execute()
            logger.info("Restored %d previous entries", len(previous))

    def _select(self, table: str, order: str = None, **filters) -> List[dict]:
        query = self.client.table(table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        if order:
            query = query.order(order)
        return query.execute().data or []

    def _fetch_batch(self, constraints: GenerationConstraints):
        if constraints.batch_id:
            rows = self._select("batches", id=constraints.batch_id)
            if not rows:
                raise InvalidScheduleInput(f"Batch {constraints.batch_id} not found")
        else:
            rows = self._select(
                "batches",
                department=constraints.department,
                semester=constraints.semester,
                academic_year=constraints.academic_year,
            )
        return Batch(**rows[0]) if rows else None

    def _fetch_subjects(self, constraints: GenerationConstraints, batch_id) -> List[Subject]:
        if not batch_id:
            rows = self._select("subjects", department=constraints.department, semester=constraints.semester)
            return [Subject(**row) for row in rows]

        rows = (
            self.client.table("batch_subjects")
            .select("*, subject:subjects(*)")
            .eq("batch_id", batch_id)
            .execute()
            .data
            or []
        )
        subjects = []
        for row in rows:
            subject = dict(row.get("subject") or {})
            if not subject:
                continue
            # The batch mapping may assign its own teacher
            if row.get("teacher_id"):
                subject["teacher_id"] = row["teacher_id"]
            subjects.append(Subject(**subject))
        return subjects

    def _fetch_special_classes(self, constraints: GenerationConstraints, batch_id) -> List[SpecialClass]:
        query = self.client.table("special_classes").select("*").eq("academic_year", constraints.academic_year)
        # Without a batch only the unassigned special classes belong to this run
        query = query.eq("batch_id", batch_id) if batch_id else query.is_("batch_id", "null")
        return [SpecialClass(**row) for row in query.execute().data or [] if row.get("status", "active") == "active"]

    def _fetch_other_batches(self, constraints: GenerationConstraints, batch_id) -> List[ScheduledEntry]:
        query = self.client.table(ENTRIES_TABLE).select("*").eq("academic_year", constraints.academic_year)
        if batch_id:
            query = query.neq("batch_id", batch_id)
        return [entry_from_row(row) for row in query.execute().data or []]


def entry_to_row(entry: ScheduledEntry) -> dict:
    return {
        "batch_id": entry.batch_id,
        "academic_year": entry.academic_year,
        "subject_id": entry.subject_id,
        "teacher_id": entry.teacher_id,
        "classroom_id": entry.classroom_id,
        "time_slot_id": entry.time_slot_id,
        "day_of_week": DAY_NAMES.index(entry.day),
        "is_lab": entry.is_lab,
        "is_break": entry.is_break,
        "is_lunch": entry.is_lunch,
        "special_class_id": entry.special_class_id,
        "duration_minutes": entry.duration,
        "consecutive_slots": entry.consecutive_slots,
    }


def entry_from_row(row: dict) -> ScheduledEntry:
    return ScheduledEntry(
        subject_id=row.get("subject_id"),
        teacher_id=row.get("teacher_id"),
        classroom_id=row.get("classroom_id"),
        time_slot_id=row["time_slot_id"],
        day=row.get("day_of_week", row.get("day")),
        is_lab=bool(row.get("is_lab")),
        is_break=bool(row.get("is_break")),
        is_lunch=bool(row.get("is_lunch")),
        duration=row.get("duration_minutes") or 0,
        consecutive_slots=row.get("consecutive_slots") or 1,
        special_class_id=row.get("special_class_id"),
        batch_id=row.get("batch_id"),
        academic_year=row.get("academic_year"),
    )


def persistence_conflict(entry: ScheduledEntry, message: str) -> Conflict:
    involved = [i for i in (entry.teacher_id, entry.classroom_id, entry.subject_id) if i]
    return Conflict(
        type=ConflictType.PERSISTENCE_CONFLICT,
        severity=Severity.ERROR,
        description=f"Entry rejected on save ({message})",
        involved_entities=involved,
        teacher_id=entry.teacher_id,
        classroom_id=entry.classroom_id,
        subject_id=entry.subject_id,
        day=entry.day,
        time_slot_id=entry.time_slot_id,
    )


def save_units(entries: List[ScheduledEntry]) -> List[List[ScheduledEntry]]:
    """Split entries into the groups that must be saved together.

    A lab session (``consecutive_slots`` > 1) is one group; every other entry
    stands alone.
    """
    units = []
    open_labs = {}
    for entry in entries:
        if not (entry.is_lab and entry.consecutive_slots > 1):
            units.append([entry])
            continue
        key = (entry.subject_id, entry.day, entry.classroom_id)
        session = open_labs.setdefault(key, [])
        session.append(entry)
        if len(session) == entry.consecutive_slots:
            units.append(open_labs.pop(key))
    units.extend(open_labs.values())
    return units
