from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Mapping, MutableMapping, Optional, Tuple, Union

from .errors import ErrorSeverity, StandardError

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

_SEVERITY_LEVELS = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every record with the session and user it belongs to."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        kwargs["extra"] = {**extra, **(kwargs.get("extra") or {})}
        scope = f"session={extra.get('session_id')}"
        if extra.get("user_id"):
            scope += f" user={extra['user_id']}"
        return f"[{scope}] {msg}", kwargs


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def session_logger(
    name: str = "librarium",
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> SessionLoggerAdapter:
    return SessionLoggerAdapter(
        logging.getLogger(name),
        {"session_id": session_id or new_session_id(), "user_id": user_id},
    )


class ErrorLogger:
    """
    Writes classified errors to an injected logger. The level follows the
    error's severity so LOW warnings stay out of error dashboards.
    """

    def __init__(self, logger: Optional[LoggerLike] = None):
        self.logger = logger or logging.getLogger("librarium.errors")

    def log_error(self, error: StandardError, context: Optional[Mapping[str, Any]] = None) -> None:
        level = _SEVERITY_LEVELS.get(error.severity, logging.ERROR)
        merged = dict(error.context)
        merged.update(context or {})
        self.logger.log(
            level,
            "%s [%s/%s] %s context=%s",
            error.id,
            error.category.value,
            error.severity.value,
            error.message,
            merged,
            exc_info=error.original_error if level >= logging.ERROR else None,
        )

    def log_warning(self, message: str, context: Optional[Mapping[str, Any]] = None) -> None:
        self.logger.warning("%s context=%s", message, dict(context or {}))

    def log_info(self, message: str, context: Optional[Mapping[str, Any]] = None) -> None:
        self.logger.info("%s context=%s", message, dict(context or {}))

    def log_user_action(self, action: str, details: Optional[Mapping[str, Any]] = None) -> None:
        self.logger.info("user action: %s details=%s", action, dict(details or {}))
