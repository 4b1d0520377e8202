"""
Structured Logging

Every ledger module logs through a child of the ``debt_ledger`` logger.
State changes go through ``log_action`` so each line carries the workspace,
the action name and the affected record id as JSON fields.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Record attributes copied into the JSON line when set
CONTEXT_FIELDS = ("workspace_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line; unset context fields are left out"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "debt_ledger",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger

    Calling it again replaces the previous handler, so the API entry point
    and tests can reconfigure freely.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Logger to configure; module loggers are its children
        log_format: "json" for structured lines, anything else for plain text
        log_file: Append to this file instead of writing to stderr
    """
    logger = logging.getLogger(logger_name)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def get_logger(name: str = "debt_ledger") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               workspace_id: Optional[str] = None, extra: Optional[dict] = None) -> None:
    """
    Log one ledger action with its context fields

    Args:
        logger: Module logger
        level: Level name, e.g. "info" or "warning"
        message: Human-readable message
        action: Operation name, e.g. "auto_allocate_payment"
        resource: Id of the record acted on
        workspace_id: Owning workspace
        extra: Additional JSON-serializable details
    """
    context = {
        "action": action,
        "resource": resource,
        "workspace_id": workspace_id,
        "extra": extra or None,
    }
    logger.log(logging.getLevelName(level.upper()), message, extra=context)
