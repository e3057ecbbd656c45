from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Timetable Generation API"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: Optional[str] = None
    # Per-placement DEBUG lines of the scheduler; raise to INFO to keep only run phases
    SCHEDULER_LOG_LEVEL: Optional[str] = None
    LOG_FILE: str = "timetable.log"
    FRONTEND_URL: str = "http://localhost:3000"

    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # Scheduling week
    WORKING_DAYS: List[str] = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]
    DEFAULT_MAX_TEACHER_HOURS_PER_DAY: int = 8

    # Two slots count as consecutive when the gap between them is at most this
    LAB_GAP_TOLERANCE_MINUTES: int = 10

    # Breaks and lunch
    MAX_CONTINUOUS_HOURS: int = 3
    BREAK_DURATION_MINUTES: int = 25
    LUNCH_WINDOW_START: str = "12:00"
    LUNCH_WINDOW_END: str = "13:30"
    LUNCH_DURATION_MINUTES: int = 30

    # Allocator search budget (None disables the bound)
    ALLOCATOR_TIME_LIMIT_SECONDS: Optional[float] = 60.0
    ALLOCATOR_MAX_STEPS: Optional[int] = None

    class Config:
        env_file = ".env"


settings = Settings()
