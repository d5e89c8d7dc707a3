"""
Structured logs for clinic-desk.

Every record goes out as one JSON object per line, both to a daily file
under LOG_DIR and to the console. Services log with a `[operation]` prefix
in the message (e.g. `[import_json] Data imported: ...`), so the file can be
grepped per operation without parsing.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FILENAME = "clinic_desk.log"
BACKUP_DAYS = 14


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            # when the event happened, not when it was formatted
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False)


def _has_json_handler(logger: logging.Logger) -> bool:
    return any(isinstance(h.formatter, JsonFormatter) for h in logger.handlers)


def setup_logger(log_dir: str = LOG_DIR, level: int = logging.INFO) -> logging.Logger:
    """
    Attach the JSON file and console handlers to the root logger.

    The app factory calls this on every create_app(); under the Flask
    reloader that happens twice per process, so a second call only adjusts
    the level instead of stacking another pair of handlers (which would
    write every line twice).
    """
    logger = logging.getLogger()
    logger.setLevel(level)

    if _has_json_handler(logger):
        return logger

    os.makedirs(log_dir, exist_ok=True)

    handler = TimedRotatingFileHandler(
        filename=os.path.join(log_dir, LOG_FILENAME),
        when="midnight",
        backupCount=BACKUP_DAYS,
        encoding="utf-8",
    )
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(JsonFormatter())
    logger.addHandler(console)

    return logger
