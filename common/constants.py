"""Project-wide constants (chunk size, wire format, storage defaults)."""

CHUNK_SIZE_BYTES: int = 1024 * 1024  # 1 MiB default chunk size

DEFAULT_CHUNK_STORAGE_PATH: str = "./uploads"
DEFAULT_FILES_DB_PATH: str = "./data/files.json"

# Used when no secret is configured
DEFAULT_ENCRYPTION_KEY: str = "default-key"

KEY_SIZE_BYTES: int = 32
IV_SIZE_BYTES: int = 16
AES_BLOCK_SIZE_BITS: int = 128

# Chunk wire format: [marker(1)][iv(16)][ciphertext]
FORMAT_LEGACY: int = 0
FORMAT_CURRENT: int = 1
CURRENT_FORMAT_MARKER: int = 1
CURRENT_FORMAT_MIN_LENGTH: int = 1 + IV_SIZE_BYTES + 1

CHUNK_FILE_PREFIX: str = "chunk-"

DIAGNOSTIC_PREFIX_BYTES: int = 5
