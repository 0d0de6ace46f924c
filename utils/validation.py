"""
Input validation utilities for client contact data and API inputs.
"""

import re
from typing import Optional


def validate_phone(phone: str) -> bool:
    """
    Validate phone number format.
    Accepts international format with optional + prefix.

    Args:
        phone: Phone number string

    Returns:
        True if valid format, False otherwise
    """
    if not phone or not isinstance(phone, str):
        return False

    cleaned = normalize_phone(phone)

    pattern = r"^\+?\d{8,15}$"
    return bool(re.match(pattern, cleaned))


def normalize_phone(phone: str) -> str:
    """Remove spaces, dashes, dots and parentheses."""
    return re.sub(r"[\s\-\(\)\.]", "", phone or "")


def sanitize_text(text: str, max_length: Optional[int] = None) -> str:
    """
    Sanitize user input text.

    Args:
        text: Input text
        max_length: Optional maximum length

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    # Remove control characters except newlines and tabs
    sanitized = re.sub(r"[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]", "", str(text))

    sanitized = sanitized.strip()

    if max_length and len(sanitized) > max_length:
        sanitized = sanitized[:max_length]

    return sanitized
