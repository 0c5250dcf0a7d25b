from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO


class JsonAuditLogger:
    """Structured logger for audit and operational events.

    Logs one JSON object per event to stdout. Fields passed to :meth:`bind`
    (run id, tenant id) are merged into every event emitted afterwards.
    """

    def __init__(
        self,
        name: str = "label_enablement",
        level: int = logging.INFO,
        stream: Optional[TextIO] = None,
    ):
        self.logger = logging.getLogger(name)
        if not self.logger.handlers:
            handler = logging.StreamHandler(stream or sys.stdout)
            handler.setFormatter(_JsonFormatter())
            self.logger.addHandler(handler)
        self.logger.setLevel(level)
        self.logger.propagate = False
        self.context: Dict[str, Any] = {}

    def bind(self, **kwargs: Any) -> None:
        self.context.update({k: v for k, v in kwargs.items() if v is not None})

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        fields = {**self.context, **kwargs}
        self.logger.log(level, message, extra={"extra": fields})

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def close(self) -> None:
        for handler in list(self.logger.handlers):
            handler.flush()
            self.logger.removeHandler(handler)


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }

        extra: Optional[Dict[str, Any]] = getattr(record, "extra", None)  # type: ignore[attr-defined]
        if extra:
            payload.update(extra)

        return json.dumps(payload, default=str)
