"""Configuration settings for the file service."""

import os
from common.constants import (
    CHUNK_SIZE_BYTES,
    DEFAULT_CHUNK_STORAGE_PATH,
    DEFAULT_FILES_DB_PATH,
)


def _int_from_env(name: str, default: int) -> int:
    try:
        value = int(os.environ.get(name, default))
    except ValueError:
        return default
    return value if value >= 1 else default


CHUNK_SIZE = _int_from_env("CHUNK_SIZE", CHUNK_SIZE_BYTES)

CHUNK_STORAGE_PATH = os.environ.get("CHUNK_STORAGE_PATH", DEFAULT_CHUNK_STORAGE_PATH)

FILES_DB_PATH = os.environ.get("FILES_DB_PATH", DEFAULT_FILES_DB_PATH)

# Unset or empty selects DEFAULT_ENCRYPTION_KEY at derivation time
ENCRYPTION_KEY = os.environ.get("ENCRYPTION_KEY") or None

SERVER_HOST = os.environ.get("HOST", "0.0.0.0")

SERVER_PORT = _int_from_env("PORT", 3000)
