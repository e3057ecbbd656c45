from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from timetable.api.v1 import api_router
from timetable.core.config import settings
from timetable.core.logging import setup_logging

setup_logging(
    environment=settings.ENVIRONMENT,
    level=settings.LOG_LEVEL,
    scheduler_level=settings.SCHEDULER_LOG_LEVEL,
    filename=settings.LOG_FILE,
)

app = FastAPI(title=settings.PROJECT_NAME)

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    settings.FRONTEND_URL.strip().rstrip("/"),
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
def read_root():
    return {
        "status": "online",
        "message": "Timetable generation engine is running",
        "version": "1.0.0",
    }
