import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from timetable.db.repository import ScheduleRepository
from timetable.schemas.schedule import GenerationConstraints, GenerationResult, ValidationRequest, ValidationResult
from timetable.services.scheduler import ScheduleValidator, generate

logger = logging.getLogger(__name__)

router = APIRouter()


def get_repository() -> ScheduleRepository:
    return ScheduleRepository()


@router.post("/generate", response_model=GenerationResult)
def generate_schedule(
    constraints: GenerationConstraints,
    save: bool = Query(False, description="Save result to database when the run completes"),
    repo: ScheduleRepository = Depends(get_repository),
):
    try:
        # Failed runs come back as success=False with the reason, not as a 500
        return generate(constraints, repo, save=save)
    except Exception as e:
        logger.exception("Server Error: %s", e)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/validate", response_model=ValidationResult)
def validate_schedule(request: ValidationRequest):
    validator = ScheduleValidator(
        request.entries,
        subjects=request.subjects,
        teachers=request.teachers,
        max_teacher_hours_per_day=request.max_teacher_hours_per_day,
        external_entries=request.existing_entries,
    )
    return validator.validate()
