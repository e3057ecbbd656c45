from fastapi import APIRouter

from timetable.api.v1.endpoints import schedule

api_router = APIRouter()
api_router.include_router(schedule.router, prefix="/schedule", tags=["schedule"])
