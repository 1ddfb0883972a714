"""Utility helper functions for the file service."""

import uuid
from urllib.parse import quote
from datetime import datetime, timezone


def generate_uuid() -> str:
    """
    Generate a new UUID4 string.

    Returns:
        UUID4 string
    """
    return str(uuid.uuid4())


def get_current_timestamp() -> str:
    """
    Get current UTC timestamp in ISO format.

    Returns:
        Current timestamp as ISO format string
    """
    return datetime.now(timezone.utc).isoformat()


def content_disposition(filename: str) -> str:
    """
    Build an attachment Content-Disposition header value.

    Non-ASCII names are sent in the RFC 5987 filename* form with an ASCII fallback.
    """
    fallback = filename.encode('ascii', 'replace').decode('ascii').replace('"', "'")
    if fallback == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
