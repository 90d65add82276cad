"""
Structured logging.

Modules log through ``logging.getLogger(__name__)``; configure_logging()
installs a formatter on the package logger that renders JSON or text
lines and stamps the active TaskContext on every record.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO, Union

from .context import get_current_context

PACKAGE_LOGGER = "memory_intelligence"


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs structured JSON or text log lines."""

    def __init__(self, json_output: bool = True):
        super().__init__()
        self.json_output = json_output

    def build_record(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Collect the fields of a log line."""
        result: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        context = get_current_context()
        if context is not None:
            result.update(context.to_dict())

        attributes = getattr(record, "attributes", None)
        if attributes:
            result["attributes"] = attributes
        if record.exc_info:
            result["exception"] = self.formatException(record.exc_info)
        return result

    def format(self, record: logging.LogRecord) -> str:
        data = self.build_record(record)
        if self.json_output:
            return json.dumps(data, default=str)
        return self._to_text(data)

    @staticmethod
    def _to_text(data: Dict[str, Any]) -> str:
        timestamp = data["timestamp"].replace("T", " ")[:23]
        parts = [timestamp, f"[{data['level']}]", data["logger"], "-", data["message"]]

        context_keys = ("task_id", "task_kind", "owner_id", "request_id")
        context = " ".join(f"{key}={data[key]}" for key in context_keys if key in data)
        if context:
            parts.append(f"({context})")
        if data.get("attributes"):
            attrs = " ".join(f"{k}={v}" for k, v in data["attributes"].items())
            parts.append(f"[{attrs}]")

        text = " ".join(parts)
        if data.get("exception"):
            text += f"\n{data['exception']}"
        return text


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
    output: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the package logger.

    Replaces any handler installed by a previous call, so it is safe to
    call more than once.

    Args:
        level: Log level name or number
        json_output: Whether to output JSON lines
        output: Output stream (defaults to stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_memory_intelligence", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(output or sys.stderr)
    handler.setFormatter(StructuredFormatter(json_output))
    handler._memory_intelligence = True
    logger.addHandler(handler)
    return logger
