import contextvars
import json
import logging
import uuid
from contextlib import contextmanager

current_request_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default="-"
)
current_job_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "job_id", default="-"
)


class StructuredFormatter(logging.Formatter):
    """JSON structured logging with correlation IDs."""

    def format(self, record):
        log_data = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "request_id": current_request_id.get(),
            "job_id": current_job_id.get(),
            "msg": record.getMessage(),
            "module": record.module,
        }
        duration_ms = getattr(record, "duration_ms", None)
        if duration_ms is not None:
            log_data["duration_ms"] = duration_ms
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(level: str = "INFO") -> None:
    """Install the JSON formatter on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # python-binance / urllib3 are chatty at DEBUG
    for noisy in ("urllib3", "binance"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@contextmanager
def job_context(name: str):
    """Tag every log record emitted inside the block with a job id like ``backfill-1a2b3c``."""
    token = current_job_id.set(f"{name}-{uuid.uuid4().hex[:6]}")
    try:
        yield current_job_id.get()
    finally:
        current_job_id.reset(token)
