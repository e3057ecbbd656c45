import copy
from datetime import time
from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

from timetable.schemas.schedule import (
    Classroom,
    GenerationConstraints,
    ScheduleInput,
    Subject,
    Teacher,
    TimeSlot,
)
from timetable.services.scheduler.constraints import ConstraintChecker
from timetable.services.scheduler.grid import ScheduleState

WEEK = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]


def make_slots(count=5, start=time(9, 0), length=60, gap=0, day=None, prefix="s"):
    """``count`` back-to-back slots; day=None means the slot exists every day."""
    slots = []
    first = start.hour * 60 + start.minute
    for i in range(count):
        begin = first + i * (length + gap)
        end = begin + length
        slots.append(
            TimeSlot(
                id=f"{prefix}{i + 1}",
                day=day,
                start_time=time(begin // 60, begin % 60),
                end_time=time(end // 60, end % 60),
            )
        )
    return slots


def make_constraints(**overrides):
    values = {
        "batch_id": "B1",
        "academic_year": "2024-25",
        "max_teacher_hours_per_day": 8,
        "include_lunch_break": False,
        "respect_faculty_availability": False,
        "include_special_classes": True,
    }
    values.update(overrides)
    return GenerationConstraints(**values)


def make_input(**overrides):
    values = {
        "teachers": [Teacher(id="T1", name="Dr. Rao", department="CSE")],
        "subjects": [Subject(id="S1", name="Algorithms", department="CSE", hours_per_week=3, teacher_id="T1")],
        "classrooms": [Classroom(id="R1", name="Room 101", type="lecture", department="CSE", capacity=60)],
        "time_slots": make_slots(),
    }
    values.update(overrides)
    return ScheduleInput(**values)


def make_checker(state, teachers, **kwargs):
    return ConstraintChecker(state, teachers, **kwargs)


@pytest.fixture
def week():
    return list(WEEK)


@pytest.fixture
def state(week):
    return ScheduleState(week, make_slots())


# --- In-memory stand-in for the Supabase client ---
UNIQUE_KEYS = {
    "timetable_entries": [
        ("classroom_id", "time_slot_id", "day_of_week"),
        ("teacher_id", "time_slot_id", "day_of_week"),
    ]
}


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.order_by = None

    def select(self, *_columns, **_kwargs):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def is_(self, column, value):
        # Only the SQL NULL form is used
        self.filters.append(lambda row: row.get(column) is None)
        return self

    def order(self, column, **_kwargs):
        self.order_by = column
        return self

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        rows = self.db.tables.setdefault(self.table, [])
        self.db.calls.append((self.op, self.table))

        if self.op == "select":
            data = [copy.deepcopy(r) for r in rows if self._matches(r)]
            if self.order_by:
                data.sort(key=lambda r: str(r.get(self.order_by)))
            return SimpleNamespace(data=data)

        if self.op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self.db.tables[self.table] = [r for r in rows if not self._matches(r)]
            return SimpleNamespace(data=removed)

        self.db.inserts += 1
        code = self.db.insert_errors.get(self.db.inserts)
        if code:
            raise APIError({"message": "canceling statement due to statement timeout", "code": code})

        new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
        seen = [dict(r) for r in rows]
        for row in new_rows:
            for key in UNIQUE_KEYS.get(self.table, []):
                if row.get(key[0]) is None:
                    continue
                if any(all(other.get(k) == row.get(k) for k in key) for other in seen):
                    raise APIError({"message": "duplicate key value violates unique constraint", "code": "23505"})
            seen.append(row)
        rows.extend(copy.deepcopy(new_rows))
        return SimpleNamespace(data=new_rows)


class FakeSupabase:
    def __init__(self, tables=None):
        self.tables = copy.deepcopy(tables or {})
        self.calls = []
        # n-th insert request -> error code it fails with
        self.insert_errors = {}
        self.inserts = 0

    def table(self, name):
        return FakeQuery(self, name)


def seed_tables():
    """A small batch: one theory subject and one lab subject."""
    slots = [
        {"id": f"s{i + 1}", "day": None, "start_time": f"{9 + i:02d}:00:00", "end_time": f"{10 + i:02d}:00:00",
         "duration": 60, "is_break": False}
        for i in range(5)
    ]
    return {
        "batches": [
            {"id": "B1", "name": "CSE-A-2024", "department": "CSE", "semester": 3, "strength": 40,
             "academic_year": "2024-25"},
        ],
        "teachers": [
            {"id": "T1", "name": "Dr. Rao", "email": "rao@example.edu", "department": "CSE",
             "max_hours_per_day": 6, "unavailable_slots": None, "preferences": {}},
            {"id": "T2", "name": "Dr. Iyer", "email": "iyer@example.edu", "department": "CSE",
             "max_hours_per_day": 6, "unavailable_slots": [], "preferences": {}},
        ],
        "subjects": [],
        "batch_subjects": [
            {"id": "BS1", "batch_id": "B1", "subject_id": "S1",
             "subject": {"id": "S1", "name": "Algorithms", "code": "CS301", "department": "CSE", "semester": 3,
                         "hours_per_week": 3, "lab_hours_per_week": 0, "teacher_id": "T1"}},
            {"id": "BS2", "batch_id": "B1", "subject_id": "S2", "teacher_id": "T2",
             "subject": {"id": "S2", "name": "Networks", "code": "CS302", "department": "CSE", "semester": 3,
                         "hours_per_week": 2, "lab_hours_per_week": 2, "teacher_id": None}},
        ],
        "classrooms": [
            {"id": "R1", "name": "Room 101", "type": "lecture", "department": "CSE", "capacity": 60},
            {"id": "L1", "name": "Lab 1", "type": "lab", "department": "CSE", "capacity": 40},
        ],
        "time_slots": slots,
        "faculty_availability": [],
        "faculty_leaves": [],
        "special_classes": [
            {"id": "SC1", "name": "Guest Lecture", "classroom_id": "R1", "teacher_id": None, "batch_id": "B1",
             "day_of_week": 5, "start_time": "09:00", "end_time": "10:00", "priority": 1,
             "academic_year": "2024-25", "status": "active"},
            {"id": "SC2", "name": "Cancelled Workshop", "classroom_id": "R1", "teacher_id": None, "batch_id": "B1",
             "day_of_week": 5, "start_time": "10:00", "end_time": "11:00", "priority": 1,
             "academic_year": "2024-25", "status": "cancelled"},
        ],
        "timetable_entries": [],
    }


@pytest.fixture
def fake_db():
    return FakeSupabase(seed_tables())
