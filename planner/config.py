from __future__ import annotations
import os, logging, pathlib

DB_PATH = pathlib.Path(os.getenv("PLANNER_DB_PATH", pathlib.Path(__file__).resolve().parent / "planner_data.sqlite"))

DATE_FMT = "%Y-%m-%d"
TIME_FMT = "%H:%M"

# templates created without an end date run this many months
DEFAULT_SPAN_MONTHS = 3

UPCOMING_LIMIT = 5

LOG_LEVEL = os.getenv("PLANNER_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=getattr(logging, level or LOG_LEVEL, logging.INFO), format=LOG_FORMAT)
