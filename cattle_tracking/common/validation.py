from __future__ import annotations

import re
from typing import Any

_STRIPPED_CHARS = re.compile(r"[<>'\"]")


def sanitize_input(value: Any) -> Any:
    """Trim a string and drop angle brackets and quotes; other values pass through."""
    if isinstance(value, str):
        return _STRIPPED_CHARS.sub("", value.strip())
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_coordinates(latitude: Any, longitude: Any) -> bool:
    """True iff both values are numbers inside the WGS84 latitude/longitude ranges."""
    return (
        _is_number(latitude)
        and _is_number(longitude)
        and -90 <= latitude <= 90
        and -180 <= longitude <= 180
    )


__all__ = ["sanitize_input", "validate_coordinates"]
