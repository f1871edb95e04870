"""
Structured logging with key=value and JSON output support.

Wraps the standard library ``logging`` module so that every log call is an
event name plus keyword fields::

    logger.info("unit_enqueued", job="pool_delegators", keys=1, retry_count=0)
    # info pool_delegators unit_enqueued job=pool_delegators keys=1 retry_count=0

Two output modes are supported: key=value pairs rendered by
[StructuredFormatter][chainmirror.core.logger.StructuredFormatter] (default)
and one JSON object per line for log aggregators.

Values containing whitespace, equals signs, or quotes are escaped and
quoted. Long values are truncated so that an oversized exception message or
key list cannot flood the log.
"""

import datetime
import json
import logging
from typing import Any, ClassVar


_TRUNCATION_MARKER = "...<truncated {} chars>"


def _truncate(value: str, limit: int | None) -> str:
    if limit and len(value) > limit:
        return value[:limit] + _TRUNCATION_MARKER.format(len(value) - limit)
    return value


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Format a dictionary as space-separated key=value pairs.

    Args:
        kwargs: Key-value pairs to format.
        max_value_length: Maximum characters per value before truncation.
            Pass None to disable truncation.
        prefix: String prepended to the output (default: single space).

    Returns:
        Formatted string, e.g. ``' job=pool_list error="too many clients"'``.
        Returns an empty string if kwargs is empty.
    """
    if not kwargs:
        return ""

    parts = []
    for k, v in kwargs.items():
        s = _truncate(str(v), max_value_length)
        if not s or any(ch in s for ch in ' ="\''):
            escaped = s.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{k}="{escaped}"')
        else:
            parts.append(f"{k}={s}")

    return prefix + " ".join(parts)


class StructuredFormatter(logging.Formatter):
    """Render every record as ``level name message key=value ...``.

    Structured fields are read from the ``structured_kv`` extra attached by
    [Logger][chainmirror.core.logger.Logger]. Records from plain
    ``logging.getLogger()`` calls (asyncpg, aiohttp) get the same prefix so
    the whole process log shares one shape. Tracebacks are appended when
    the record carries ``exc_info``.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        extra: dict[str, Any] = getattr(record, "structured_kv", {})
        if extra:
            line += format_kv_pairs(extra)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class Logger:
    """Structured logger that appends keyword arguments as fields.

    All public methods mirror the standard logging API with an added
    ``**kwargs`` parameter carrying the structured fields.

    Examples:
        ```python
        logger = Logger("executor")
        logger.warning("source_retry", source="primary", attempt=2, delay_s=2.0)

        json_logger = Logger("executor", json_output=True)
        json_logger.info("source_recovered", source="primary")
        # {"timestamp": "...", "level": "info", "logger": "executor", ...}
        ```
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = None,
    ) -> None:
        """Initialize a structured logger.

        Args:
            name: Logger name, typically the job or component name.
            json_output: Emit JSON objects instead of key=value pairs.
            max_value_length: Maximum characters per value before
                truncation. Defaults to 1000.
        """
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = (
            self._DEFAULT_MAX_VALUE_LENGTH if max_value_length is None else max_value_length
        )

    @property
    def name(self) -> str:
        """Name of the wrapped stdlib logger."""
        return self._logger.name

    def _emit(self, level: int, msg: str, kwargs: dict[str, Any], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if self._json_output:
            payload = {
                "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
                "level": logging.getLevelName(level).lower(),
                "logger": self._logger.name,
                "message": msg,
                **{k: _truncate(str(v), self._max_value_length) for k, v in kwargs.items()},
            }
            self._logger.log(level, json.dumps(payload, default=str), exc_info=exc_info)
            return
        extra = {
            "structured_kv": {
                k: _truncate(str(v), self._max_value_length) if isinstance(v, str) else v
                for k, v in kwargs.items()
            }
        }
        self._logger.log(level, msg, extra=extra, exc_info=exc_info)

    def debug(self, msg: str, **kwargs: Any) -> None:
        """Log a DEBUG level event."""
        self._emit(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        """Log an INFO level event."""
        self._emit(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        """Log a WARNING level event."""
        self._emit(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        """Log an ERROR level event."""
        self._emit(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        """Log a CRITICAL level event."""
        self._emit(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log an ERROR level event with the active exception's traceback."""
        self._emit(logging.ERROR, msg, kwargs, exc_info=True)
