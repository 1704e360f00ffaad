from __future__ import annotations

import logging
import os
import sys
from typing import Any, Mapping, MutableMapping, Sequence, cast

import structlog

_configured: bool = False


def _add_msg_from_event(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
    """Mirror structlog's ``event`` into ``msg`` so every line carries both keys."""

    if "msg" not in event_dict and isinstance(event_dict.get("event"), str):
        event_dict["msg"] = event_dict["event"]
    return event_dict


_SENSITIVE_KEYS = {
    "password",
    "db_password",
    "dsn",
    "database_url",
    "token",
    "authorization",
    "secret",
    "api_key",
}


def _mask_sensitive_values(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any]:
    """Redact sensitive values from the log dictionary, recursing into dicts and lists."""

    def mask_value(key: str, value: Any) -> Any:
        if isinstance(value, Mapping):
            typed_mapping = cast(Mapping[str, Any], value)
            return {
                nested_key: mask_value(nested_key, nested_value)
                for nested_key, nested_value in typed_mapping.items()
            }
        if isinstance(value, list):
            return [mask_value(key, item) for item in cast(list[Any], value)]
        if key.lower() in _SENSITIVE_KEYS:
            return "[REDACTED]"
        return value

    return {key: mask_value(key, value) for key, value in event_dict.items()}


def _summarize_bound_params(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any]:
    """Replace bound statement values with their type names.

    ``params`` on ``db.query.failed`` / ``db.mock.query`` carry column values
    taken from requests (tag numbers, owner names, coordinates). Only the
    shape of the bind list is logged: ``["str", "float", "NoneType"]``.
    """

    params = event_dict.get("params")
    if isinstance(params, (list, tuple)):
        event_dict["params"] = [type(value).__name__ for value in cast(Sequence[Any], params)]
    elif params is not None:
        event_dict["params"] = type(params).__name__
    return event_dict


def configure_logging(level: str | None = None) -> None:
    """Configure structlog/stdlib logging for JSON Lines output.

    - Keys: ts, level, msg, event
    - Bound statement values: logged as type names only
    - Timestamp: UTC ISO-8601
    - Output: one JSON object per line on stdout
    """

    global _configured

    raw_level: str = level if level is not None else os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, raw_level.upper(), logging.INFO)

    # force=True lets capsys-based tests swap stdout and reconfigure.
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            _add_msg_from_event,
            _summarize_bound_params,
            _mask_sensitive_values,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True
