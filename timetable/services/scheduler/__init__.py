from timetable.services.scheduler.errors import InvalidScheduleInput, SearchBudgetExceeded
from timetable.services.scheduler.solver import AutoSchedulerService, generate
from timetable.services.scheduler.validator import ScheduleValidator

__all__ = [
    "AutoSchedulerService",
    "InvalidScheduleInput",
    "ScheduleValidator",
    "SearchBudgetExceeded",
    "generate",
]
