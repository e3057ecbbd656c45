import pytest

from timetable.schemas.schedule import Subject, Teacher
from timetable.services.scheduler.errors import InvalidScheduleInput
from timetable.services.scheduler.requirements import calculate_requirements, required_periods

TEACHERS = [Teacher(id="T1"), Teacher(id="T2")]


def test_theory_and_lab_split():
    subjects = [Subject(id="S1", hours_per_week=3, lab_hours_per_week=3, teacher_id="T1")]

    reqs = calculate_requirements(subjects, TEACHERS)

    assert [(r.subject.id, r.is_lab, r.periods_required) for r in reqs] == [("S1", True, 2), ("S1", False, 3)]
    assert reqs[0].teacher.id == "T1"


def test_labs_first_then_most_periods_first():
    subjects = [
        Subject(id="A", hours_per_week=2, teacher_id="T1"),
        Subject(id="B", hours_per_week=4, teacher_id="T2"),
        Subject(id="C", lab_hours_per_week=2, teacher_id="T1"),
        Subject(id="D", hours_per_week=4, lab_hours_per_week=6, teacher_id="T2"),
    ]

    reqs = calculate_requirements(subjects, TEACHERS)

    assert [r.key for r in reqs] == [("D", True), ("C", True), ("B", False), ("D", False), ("A", False)]


def test_subject_without_hours_has_no_requirement():
    reqs = calculate_requirements([Subject(id="S1", teacher_id="T1")], TEACHERS)
    assert reqs == []


def test_subject_without_teacher_is_fatal():
    subjects = [Subject(id="S1", hours_per_week=2, teacher_id="T1"), Subject(id="S2", hours_per_week=2)]

    with pytest.raises(InvalidScheduleInput, match="no assigned teacher"):
        calculate_requirements(subjects, TEACHERS)


def test_unknown_teacher_is_fatal():
    with pytest.raises(InvalidScheduleInput, match="unknown teacher"):
        calculate_requirements([Subject(id="S1", hours_per_week=2, teacher_id="T9")], TEACHERS)


@pytest.mark.parametrize("lab_hours,sessions", [(1, 1), (2, 1), (3, 2), (4, 2)])
def test_lab_sessions_round_up(lab_hours, sessions):
    assert required_periods(Subject(id="S1", lab_hours_per_week=lab_hours), is_lab=True) == sessions
