"""General Utility Functions."""

from __future__ import annotations

import re

__all__ = ["is_valid_email", "strip_html_tags"]


_HTML_TAG_RE: re.Pattern[str] = re.compile(r"</?[^>]+(>|$)")

# Deliberately loose: the backend is the authority on account existence.
_EMAIL_RE: re.Pattern[str] = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def strip_html_tags(text: str) -> str:
    """Remove anything that looks like an HTML tag and trim whitespace."""
    return _HTML_TAG_RE.sub("", text).strip()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))
