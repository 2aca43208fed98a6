"""JSON logging for digest runs.

Every record is a single JSON line. Context passed as keyword arguments to an
``ExecutionLogger`` call lands as top-level fields, next to the execution id
and the component that emitted it.
"""

import json
import logging
import sys
import time
from datetime import UTC, datetime
from typing import Any

LOGGER_NAMESPACE = "newsletter_digest"

# Keys every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in entry
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class ExecutionLogger:
    """Component logger bound to one digest run.

    Keyword arguments must not reuse LogRecord attribute names
    (``name``, ``module``, ``msg`` ...); ``logging`` rejects them.
    """

    def __init__(self, execution_id: str, component: str = "main"):
        self.execution_id = execution_id
        self.component = component
        self.logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{component}")
        self._started: float | None = None

    def _emit(self, level: int, message: str, **context) -> None:
        if not self.logger.isEnabledFor(level):
            return
        extra = {"execution_id": self.execution_id, "component": self.component}
        extra.update(context)
        self.logger.log(level, message, extra=extra)

    def debug(self, message: str, **context) -> None:
        self._emit(logging.DEBUG, message, **context)

    def info(self, message: str, **context) -> None:
        self._emit(logging.INFO, message, **context)

    def warning(self, message: str, **context) -> None:
        self._emit(logging.WARNING, message, **context)

    def error(self, message: str, **context) -> None:
        self._emit(logging.ERROR, message, **context)

    def log_execution_start(self, **context) -> None:
        self._started = time.monotonic()
        self.info(f"Starting {self.component} execution", **context)

    def log_execution_end(self, success: bool = True, **context) -> None:
        duration = None
        if self._started is not None:
            duration = round(time.monotonic() - self._started, 3)
        self.info(
            f"Completed {self.component} execution",
            execution_success=success,
            execution_duration_seconds=duration,
            **context,
        )

    def log_feed_processing(self, source_name: str, items_count: int) -> None:
        self.info(
            f"Processed feed: {items_count} items found",
            source_name=source_name,
            items_count=items_count,
        )

    def log_model_attempt(
        self, model: str, attempt: int, total_attempts: int, success: bool, **context
    ) -> None:
        """One model call; failures are logged at WARNING."""
        outcome = "succeeded" if success else "failed"
        self._emit(
            logging.INFO if success else logging.WARNING,
            f"Model {model} {outcome} on attempt {attempt}/{total_attempts}",
            model=model,
            attempt=attempt,
            total_attempts=total_attempts,
            success=success,
            **context,
        )

    def log_metrics(self, metrics: dict[str, Any]) -> None:
        self.info("Execution metrics", metrics=metrics)


def setup_structured_logging(log_level: str = "INFO") -> None:
    """Route all logging to stdout as JSON lines.

    Safe to call more than once: previously installed root handlers are
    replaced, not stacked.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger(LOGGER_NAMESPACE).setLevel(level)


def create_execution_logger(
    component: str, execution_id: str | None = None
) -> ExecutionLogger:
    """Return an ExecutionLogger, generating an ``exec_`` id when none is given."""
    if not execution_id:
        execution_id = f"exec_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    return ExecutionLogger(execution_id, component)
