"""
SPOT Observability

Structured logging for the accounting core. Every component logs through a
SpotLogger bound to its layer; events carry the correlation id of the
current context so that a vault call and the perp calls it makes can be
stitched together.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                  Accounting Components                   │
    │  logger.info("msg", asset=x)    @timed_operation(...)   │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                       SpotLogger                         │
    │     layer tagging, correlation ids, structured context   │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                        Handlers                          │
    │        StructuredHandler (json) │ StreamHandler (text)   │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class SpotLayer(Enum):
    """Accounting layers for categorization."""
    QUEUE = "queue"
    RESERVE = "reserve"
    PERP = "perp"
    VAULT = "vault"
    BONDS = "bonds"
    FEES = "fees"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _build_handler(log_format: str) -> logging.Handler:
    if log_format == "text":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
        return handler
    return StructuredHandler()


class SpotLogger:
    """
    Structured logger for SPOT components.

    Adds the layer, the current correlation id and keyword context to every
    record. Level and format default to the ``observability`` config section.
    """

    def __init__(
        self,
        name: str,
        layer: SpotLayer,
        level: Optional[LogLevel] = None,
        log_format: Optional[str] = None,
    ):
        if level is None or log_format is None:
            from spot.config import get_config
            obs = get_config().observability
            level = level or LogLevel(obs.log_level.get())
            log_format = log_format or obs.log_format.get()

        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"spot.{layer.value}.{name}")
        self._logger.setLevel(getattr(logging, level.value.upper()))

        if not any(getattr(h, "_spot_handler", False) for h in self._logger.handlers):
            handler = _build_handler(log_format)
            handler._spot_handler = True  # type: ignore[attr-defined]
            self._logger.addHandler(handler)

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        error_code: str = "",
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            error_code=error_code,
            **context,
        )


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str, layer: SpotLayer) -> SpotLogger:
    """Get a logger for a SPOT component."""
    return SpotLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: SpotLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            get_correlation_id()
            start = time.monotonic()
            error_code = ""
            try:
                return func(*args, **kwargs)
            except Exception as e:
                error_code = type(e).__name__
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                logger.operation(
                    operation_name, duration_ms, success=not error_code, error_code=error_code,
                )
        return wrapper
    return decorator
