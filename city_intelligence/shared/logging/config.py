"""
Structured logging configuration.

Log lines across the service carry bracketed context prefixes such as
``[session=abc] [graph=city_loop] [node=execute] [city=lyon]``. In JSON
mode those prefixes are lifted out of the message into a ``context``
object so log pipelines can filter by session or city.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s"

_CONTEXT_PREFIX = re.compile(r"\[(session|graph|node|city|agent|api)=([^\]]*)\]\s*")


def split_context(message: str) -> Tuple[Dict[str, str], str]:
    """Split a log message into its context prefixes and the remaining text."""
    context = dict(_CONTEXT_PREFIX.findall(message))
    return context, _CONTEXT_PREFIX.sub("", message).strip()


class StructuredFormatter(logging.Formatter):
    """
    Formats records as one JSON object per line.

    Fields: timestamp, level, logger, message, plus ``context`` (the
    bracketed prefixes), ``phase`` (state transitions) and ``exception``
    when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        context, message = split_context(record.getMessage())
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        if context:
            log_entry["context"] = context

        transition = getattr(record, "transition", None)
        if transition is not None:
            log_entry["phase"] = transition

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> logging.Logger:
    """
    Configure root logging for the service.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional path to log file. If not provided, logs to stdout only.
        json_format: Emit StructuredFormatter JSON instead of LOG_FORMAT text

    Returns:
        The configured root logger.
    """
    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # Quiet noisy third-party loggers
    for name in ("httpcore", "httpx", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()


def log_state_transition(
    phase: str,
    session_id: str,
    city_id: Optional[str] = None,
    iteration: Optional[int] = None,
    logger: Optional[logging.Logger] = None,
    **details: Any,
) -> None:
    """
    Log an orchestrator phase change for one city.

    The phase is attached to the record as ``transition`` so the JSON
    formatter can expose it as a field; text logs get it in the message.
    """
    if logger is None:
        logger = logging.getLogger("city_intelligence")

    prefix = f"[session={session_id}] [graph=city_loop]"
    if city_id is not None:
        prefix += f" [city={city_id}]"

    summary = f"Phase -> {phase}"
    if iteration is not None:
        summary += f" | iteration={iteration}"
    if details:
        summary += ", " + ", ".join(f"{k}={v}" for k, v in details.items())

    logger.info(f"{prefix} {summary}", extra={"transition": phase})
