import datetime
import json
import logging
import sys
from typing import Any, Dict, Optional

from shardstream.settings import settings

# Context keys consumers attach through `extra=shard_context(...)`
_CONTEXT_FIELDS = ("stream", "shard")

# Third-party loggers that flood DEBUG output with wire-level detail
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer", "aiosqlite")

# A library must not print anything until the application configures logging
logging.getLogger("shardstream").addHandler(logging.NullHandler())


def shard_context(stream_name: str, shard_id: Optional[str] = None) -> Dict[str, str]:
    """`extra=` mapping that tags a log record with its stream and shard."""
    context = {"stream": stream_name}
    if shard_id is not None:
        context["shard"] = shard_id
    return context


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line. Stream and shard context, when present,
    become top-level keys so log pipelines can filter on them.
    """
    def format(self, record: logging.LogRecord) -> str:
        created = datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload)


class ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # 2024-05-01T10:00:00 INFO shardstream.ShardReader orders/1: message
        timestamp = datetime.datetime.fromtimestamp(record.created).strftime('%Y-%m-%dT%H:%M:%S')
        location = "/".join(
            str(getattr(record, field)) for field in _CONTEXT_FIELDS if getattr(record, field, None) is not None
        )
        prefix = f"{timestamp} {record.levelname:<7} {record.name}"
        line = f"{prefix} {location}: {record.getMessage()}" if location else f"{prefix}: {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Route logs to stderr so stdout stays clean for CLI output.

    `level` applies to the shardstream namespace; third-party loggers stay at
    WARNING. Defaults come from SHARDSTREAM_LOG_LEVEL and SHARDSTREAM_LOG_FORMAT.
    """
    level = (level or settings.LOG_LEVEL).upper()
    log_format = (log_format or settings.LOG_FORMAT).lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if log_format == "json" else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.WARNING)

    logging.getLogger("shardstream").setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Returns a logger instance for a given component."""
    return logging.getLogger(f"shardstream.{name}")
