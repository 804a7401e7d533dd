from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

EXTRA_KEYS = (
    "role",
    "service",
    "run_id",
    "worker_id",
    "job_id",
    "document_id",
    "application_id",
    "submission_id",
    "status",
    "retry_status",
    "attempt",
    "error",
    "error_code",
    "url",
    "switch",
    "cleared_locks",
    "ticks_total",
    "errors_total",
    "action",
    "target_type",
    "target_id",
    "success",
    "actor_user_id",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key in EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
