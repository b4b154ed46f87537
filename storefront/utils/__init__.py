"""Shared utility functions for the storefront session engine.

Convenience re-exports so consumers can import directly from
``storefront.utils``.
"""

from storefront.utils.error_handler import (
    classify_message,
    extract_message,
    friendly_error_message,
)
from storefront.utils.general import is_valid_email, strip_html_tags

__all__ = [
    "classify_message",
    "extract_message",
    "friendly_error_message",
    "is_valid_email",
    "strip_html_tags",
]
