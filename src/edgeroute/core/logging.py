"""Structured logging for the edge router.

Records carry the correlation ID of the request being handled. JSON output
redacts configured header names wherever they appear in a record's fields.
Routing decisions and upstream calls are logged as typed events so they can
be filtered on ``event_type``.
"""

import json
import logging
import sys
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from edgeroute.core.config import LoggingConfig
from edgeroute.core.middleware import RequestContext
from edgeroute.core.request import EdgeRequest

ROOT_LOGGER = "edgeroute"
REDACTED = "***REDACTED***"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"

_correlation_id: ContextVar[str | None] = ContextVar("edgeroute_correlation_id", default=None)

# Everything a bare LogRecord carries; the rest came in through extra=
_STANDARD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
    "correlation_id",
    "extra_fields",
}


class CorrelationIdFilter(logging.Filter):
    """Stamps records with the correlation ID of the current task."""

    def set_correlation_id(self, correlation_id: str) -> None:
        _correlation_id.set(correlation_id)

    def clear_correlation_id(self) -> None:
        _correlation_id.set(None)

    def filter(self, record: logging.LogRecord) -> bool:
        # An ID passed explicitly with extra= wins
        if not getattr(record, "correlation_id", None):
            record.correlation_id = _correlation_id.get() or "none"  # type: ignore
        return True


class JsonFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def __init__(self, redact_patterns: list[str] | None = None):
        """Initialize the JSON formatter.

        Args:
            redact_patterns: Field names whose values are replaced in output
        """
        super().__init__()
        self.redact_patterns = [p.lower() for p in redact_patterns or []]

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "none"),
        }

        fields = getattr(record, "extra_fields", None)
        if isinstance(fields, Mapping):
            payload.update(fields)
        payload.update(
            {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRIBUTES}
        )

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(self._redact(payload), default=str)

    def _is_sensitive(self, key: Any) -> bool:
        name = str(key).lower()
        return any(pattern in name for pattern in self.redact_patterns)

    def _redact(self, value: Any) -> Any:
        """Recursively redact sensitive fields.

        Mappings are redacted by key. Lists of ``(name, value)`` pairs, the
        shape multi-valued headers are logged in, are redacted by name.
        """
        if isinstance(value, Mapping):
            return {
                k: REDACTED if self._is_sensitive(k) else self._redact(v) for k, v in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [
                (item[0], REDACTED)
                if isinstance(item, (list, tuple)) and len(item) == 2 and self._is_sensitive(item[0])
                else self._redact(item)
                for item in value
            ]
        return value


class TextFormatter(logging.Formatter):
    """Human-readable single-line format with UTC timestamps."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(fmt=TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "none"  # type: ignore
        return super().format(record)


def _build_handler(output: str) -> logging.Handler:
    if output == "stdout":
        return logging.StreamHandler(sys.stdout)
    if output == "stderr":
        return logging.StreamHandler(sys.stderr)
    return logging.FileHandler(output)


class EdgeLogger:
    """Configures the ``edgeroute`` logger tree and emits request events.

    Module loggers under ``edgeroute.*`` share the handler installed here, so
    plain ``logging.getLogger(__name__)`` calls elsewhere get the same format
    and correlation IDs.
    """

    def __init__(self, config: LoggingConfig):
        self.config = config
        self.correlation_filter = CorrelationIdFilter()
        self._setup_logging()

    def _setup_logging(self) -> None:
        logger = logging.getLogger(ROOT_LOGGER)
        logger.setLevel(self.config.level)
        logger.handlers.clear()

        handler = _build_handler(self.config.output)
        if self.config.format == "json":
            handler.setFormatter(JsonFormatter(redact_patterns=self.config.redact_headers))
        else:
            handler.setFormatter(TextFormatter())
        handler.addFilter(self.correlation_filter)

        logger.addHandler(handler)
        logger.propagate = False

    @contextmanager
    def correlation(self, correlation_id: str) -> Iterator[str]:
        """Bind a correlation ID to every record logged inside the block.

        Args:
            correlation_id: ID of the request being handled

        Yields:
            The bound correlation ID
        """
        self.correlation_filter.set_correlation_id(correlation_id)
        try:
            yield correlation_id
        finally:
            self.correlation_filter.clear_correlation_id()

    def get_logger(self, name: str = ROOT_LOGGER) -> logging.Logger:
        return logging.getLogger(name)

    def _emit(self, level: int, event_type: str, message: str, **fields: Any) -> None:
        self.get_logger().log(
            level, message, extra={"extra_fields": {"event_type": event_type, **fields}}
        )

    def log_request(self, request: EdgeRequest, context: RequestContext) -> None:
        """Log a request as it enters a forwarding chain.

        Args:
            request: Inbound request
            context: Context with the parameters bound by matching
        """
        forwarded_for = request.headers.get("X-Forwarded-For", "")
        self._emit(
            logging.INFO,
            "request_received",
            f"{request.method} {request.url}",
            request={
                "method": request.method,
                "url": str(request.url),
                "client_ip": forwarded_for.split(",")[0].strip() or None,
                "user_agent": request.headers.get("User-Agent"),
                "headers": list(request.headers.items()),
            },
            params=dict(context.params),
            environment=dict(context.environment),
        )

    def log_response(
        self,
        request: EdgeRequest,
        context: RequestContext,
        status_code: int,
        response_size: int | None = None,
    ) -> None:
        """Log the response a forwarding chain produced.

        Server errors log at ERROR and client errors at WARNING.

        Args:
            request: Inbound request
            context: Request context, used for latency
            status_code: Response status
            response_size: Body size in bytes, if known
        """
        latency_ms = context.elapsed_ms()
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        self._emit(
            level,
            "request_completed",
            f"{request.method} {request.url} -> {status_code} ({latency_ms:.2f}ms)",
            response={
                "status_code": status_code,
                "latency_ms": latency_ms,
                "body_size": response_size,
            },
        )

    def log_upstream_event(
        self,
        request: EdgeRequest,
        correlation_id: str | None = None,
        status_code: int | None = None,
        latency_ms: float | None = None,
        error: str | None = None,
    ) -> None:
        """Log a call to an origin.

        Args:
            request: Rewritten request that was sent
            correlation_id: Request correlation ID
            status_code: Origin status, when a response arrived
            latency_ms: Time spent waiting on the origin
            error: Transport error, when none did
        """
        message = f"Upstream {request.method} {request.url}"
        if status_code is not None:
            message += f" -> {status_code}"
        if error:
            message += f" failed: {error}"

        upstream: dict[str, Any] = {
            "authority": request.authority,
            "status_code": status_code,
            "latency_ms": latency_ms,
        }
        if error:
            upstream["error"] = error

        self.get_logger().log(
            logging.ERROR if error else logging.DEBUG,
            message,
            extra={
                "extra_fields": {"event_type": "upstream_request", "upstream": upstream},
                "correlation_id": correlation_id,
            },
        )
