import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOGS_DIR = Path(__file__).resolve().parents[2] / "logs"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
SCHEDULER_LOGGER = "timetable.services.scheduler"


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


def _file_handler(filename: str) -> logging.Handler:
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        LOGS_DIR / filename, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )


def setup_logging(
    *,
    environment: str,
    level: Optional[str] = None,
    scheduler_level: Optional[str] = None,
    filename: str = "timetable.log",
) -> None:
    """Attach the service's handlers to the root logger once.

    Development logs everything at DEBUG to the console. Production logs at
    INFO and also writes ``logs/<filename>``. The scheduler logger gets its own
    level because allocation logs every placement at DEBUG.
    """
    root = logging.getLogger()
    if any(getattr(h, "_timetable", False) for h in root.handlers):
        return

    production = (environment or "").strip().lower() == "production"
    root_level = _level(level, logging.INFO if production else logging.DEBUG)

    handlers = [logging.StreamHandler()]
    if production:
        handlers.append(_file_handler(filename))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._timetable = True
        root.addHandler(handler)
    root.setLevel(root_level)

    logging.getLogger(SCHEDULER_LOGGER).setLevel(_level(scheduler_level, root_level))
    # supabase goes through httpx, which logs each request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
