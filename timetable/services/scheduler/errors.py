class InvalidScheduleInput(ValueError):
    """Input data that makes a run impossible (aborts with success=False)."""


class SearchBudgetExceeded(RuntimeError):
    """Raised inside the allocator loops once the step or time budget runs out."""
