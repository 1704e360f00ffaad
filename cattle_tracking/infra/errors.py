"""Error hierarchy for the data-access layer.

Errors carry a message, an optional context mapping and the exception that
caused them. ``log_safe_context`` masks secret-bearing keys so the context can
be attached to log events as-is.
"""

from __future__ import annotations

from typing import Any, Mapping, cast

_SENSITIVE_KEYS: tuple[str, ...] = (
    "password",
    "passwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "auth",
)


def _sanitize_context(context: Mapping[str, Any] | None) -> dict[str, Any]:
    """Mask values whose key names look sensitive, recursing into dicts."""
    if not context:
        return {}

    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            mapping = cast(Mapping[str, Any], value)
            sanitized_inner: dict[str, Any] = {}
            for k, v in mapping.items():
                key_lower = str(k).lower()
                sanitized_inner[k] = _sanitize(
                    "***redacted***" if any(sk in key_lower for sk in _SENSITIVE_KEYS) else v
                )
            return sanitized_inner
        return value

    sanitized: dict[str, Any] = {}
    for key, value in context.items():
        key_lower = str(key).lower()
        if any(sk in key_lower for sk in _SENSITIVE_KEYS):
            sanitized[key] = "***redacted***"
        else:
            sanitized[key] = _sanitize(value)
    return sanitized


class Error(Exception):
    """Base error carrying a message, optional context and cause."""

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        self.cause: BaseException | None = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "context": dict(self.context),
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    def __str__(self) -> str:  # pragma: no cover - delegates to message
        return self.message

    def log_safe_context(self) -> dict[str, Any]:
        """Return the context with sensitive values masked."""
        return _sanitize_context(self.context)


class DatabaseError(Error):
    """Failure reported by the database while running a statement."""


class SystemError(Error):
    """Infrastructure failure, e.g. pool exhaustion or a dropped connection."""


class PoolNotInitializedError(SystemError):
    """Raised when an operation runs before ``initialize_database()``."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message or "Database pool not initialised. Call initialize_database() first.",
            context={"pool_initialised": False},
        )


__all__ = [
    "DatabaseError",
    "Error",
    "PoolNotInitializedError",
    "SystemError",
]
