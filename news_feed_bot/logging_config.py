"""JSON log lines for the fetch and publish loops.

Every record is one JSON object on stdout. Components log through a
``ComponentLogger`` that stamps the run id and component name on each
record; keyword arguments become extra top-level fields.
"""

import json
import logging
import sys
import time
from datetime import UTC, datetime

ROOT_LOGGER = "news_feed_bot"
QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "openai", "httpx")

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in entry
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ComponentLogger:
    """Logger bound to one component and one process run."""

    def __init__(self, component: str, execution_id: str):
        self.component = component
        self.execution_id = execution_id
        self.logger = logging.getLogger(f"{ROOT_LOGGER}.{component}")
        self._cycle_started: float | None = None

    def log(self, level: int, message: str, **fields) -> None:
        fields.setdefault("component", self.component)
        fields.setdefault("execution_id", self.execution_id)
        self.logger.log(level, message, extra=fields)

    def debug(self, message: str, **fields) -> None:
        self.log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields) -> None:
        self.log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields) -> None:
        self.log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields) -> None:
        self.log(logging.ERROR, message, **fields)

    def cycle_started(self, **fields) -> None:
        """Mark the start of a loop cycle."""
        self._cycle_started = time.monotonic()
        self.debug(f"{self.component} cycle started", **fields)

    def cycle_finished(self, success: bool = True, **fields) -> None:
        """Log the outcome of the current cycle with its duration."""
        duration = None
        if self._cycle_started is not None:
            duration = round(time.monotonic() - self._cycle_started, 3)
            self._cycle_started = None
        self.info(
            f"{self.component} cycle finished",
            cycle_success=success,
            cycle_seconds=duration,
            **fields,
        )

    def source_processed(self, source_id: int, items_count: int, stored: int) -> None:
        self.info(
            f"Source {source_id}: {stored} of {items_count} items stored",
            source_id=source_id,
            items_count=items_count,
            stored_count=stored,
        )

    def article_event(self, title: str, action: str) -> None:
        self.info(f"Article {action}: {title}", article_title=title, action=action)


def setup_logging(level: str = "INFO") -> None:
    """Send every log record to stdout as JSON.

    Args:
        level: Name of the level for this package's loggers
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=logging.WARNING, handlers=[handler], force=True)

    logging.getLogger(ROOT_LOGGER).setLevel(level.upper())
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(component: str, execution_id: str | None = None) -> ComponentLogger:
    """Logger for ``component``; a fresh run id is generated when none is given."""
    if not execution_id:
        execution_id = f"exec_{datetime.now(UTC):%Y%m%d_%H%M%S_%f}"
    return ComponentLogger(component, execution_id)
