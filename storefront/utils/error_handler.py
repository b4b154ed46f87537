"""
User-Facing Error Translation.

Turns exceptions and raw backend messages into short, translated
phrases suitable for a notice.  This is what screens call instead of
showing ``str(exc)``.
"""

from __future__ import annotations

import json
from typing import Optional, Union

import httpx

from storefront.errors import NetworkUnavailableError
from storefront.models.auth_models import BACKEND_ERROR_MAP, AuthErrorCode

__all__ = ["classify_message", "extract_message", "friendly_error_message"]


def extract_message(error: Union[BaseException, str, None]) -> str:
    """Pull the most useful raw message out of *error*."""
    if error is None:
        return "Unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        try:
            body = json.dumps(error.response.json(), ensure_ascii=False)
        except ValueError:
            body = error.response.text
        return f"{error.response.status_code} {body}"
    message = str(error)
    return message or type(error).__name__


def classify_message(message: str) -> tuple[Optional[AuthErrorCode], str]:
    """Map a raw message to ``(error_code, friendly_text)``.

    Unknown messages pass through unchanged with a ``None`` code.
    """
    lower = message.lower()
    for fragments, code, friendly in BACKEND_ERROR_MAP:
        if all(fragment in lower for fragment in fragments):
            return code, friendly
    return None, message


def friendly_error_message(
    error: Union[BaseException, str, None],
    user_message: Optional[str] = None,
) -> str:
    """Return the text a notice should display for *error*.

    Network failures keep their own (already friendly) message unless the
    caller overrides it with *user_message*.
    """
    if isinstance(error, NetworkUnavailableError):
        return user_message or error.message
    if user_message:
        return user_message
    _, friendly = classify_message(extract_message(error))
    return friendly
