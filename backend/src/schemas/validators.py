"""
Shared validation functions for Pydantic schemas.

Length limits come from settings so that deployments can tune them without code changes.
"""
import re

from core.config import get_settings

# Rejects only values that could never match a signed-in user's email
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")


def normalize_email(email: str) -> str:
    """
    Trim and validate a collaborator email.

    Matching against identities is exact, so the address is not lowercased.

    Raises:
        ValueError: If the email is empty or malformed.
    """
    trimmed = email.strip()
    if not trimmed:
        raise ValueError("Email cannot be empty")
    if not EMAIL_PATTERN.match(trimmed):
        raise ValueError(f"Invalid email address: '{trimmed}'")
    return trimmed


def validate_title_length(title: str | None) -> str | None:
    """Validate that title doesn't exceed maximum length."""
    settings = get_settings()
    if title is not None and len(title) > settings.max_title_length:
        raise ValueError(
            f"Title exceeds maximum length of {settings.max_title_length:,} characters "
            f"(got {len(title):,} characters).",
        )
    return title


def validate_content_length(content: str | None) -> str | None:
    """Validate that content doesn't exceed maximum length."""
    settings = get_settings()
    if content is not None and len(content) > settings.max_content_length:
        max_len = settings.max_content_length
        raise ValueError(
            f"Content exceeds maximum length of {max_len:,} characters "
            f"(got {len(content):,} characters).",
        )
    return content
