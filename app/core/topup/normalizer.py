"""Turn any error raised during a top-up into one user-facing sentence."""

from __future__ import annotations

import json
from typing import Any, Mapping

from .errors import SideShiftError, TopupError

FALLBACK_MESSAGE = "An unknown error occurred. Please try again or contact support."

_PLACEHOLDERS = {"[object Object]", "Error", "{}"}


def _usable(text: Any) -> bool:
    return isinstance(text, str) and bool(text.strip()) and text.strip() not in _PLACEHOLDERS


def _from_details(details: Any) -> str | None:
    if isinstance(details, str):
        return details if _usable(details) else None
    if not isinstance(details, Mapping) or not details:
        return None

    for key in ("message", "error"):
        value = details.get(key)
        if _usable(value):
            return value
        # SideShift nests errors as {"error": {"message": "..."}}
        if isinstance(value, Mapping) and _usable(value.get("message")):
            return value["message"]

    try:
        dumped = json.dumps(details, default=str)
    except (TypeError, ValueError):
        return None
    if dumped and dumped != "{}":
        return f"API Error: {dumped}"
    return None


def normalize(error: Any) -> str:
    """Return a non-empty message describing ``error``.

    Priority: provider error body, exception message, domain message, raw
    string, then a fixed fallback.
    """

    if isinstance(error, SideShiftError):
        from_body = _from_details(error.details)
        if from_body:
            return from_body

    if isinstance(error, BaseException):
        message = str(error)
        if _usable(message):
            return message

    if isinstance(error, (TopupError, SideShiftError)) and _usable(error.message):
        return error.message

    if _usable(error):
        return error

    return FALLBACK_MESSAGE
