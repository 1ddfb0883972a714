"""Error taxonomy for the chunk encryption engine."""

from typing import List, Optional


class ChunkEngineError(Exception):
    """
    Base exception class for all chunk engine errors.
    """
    pass


class EncodeFailure(ChunkEngineError):
    """
    Raised when a chunk cannot be encrypted (cipher rejected the key, entropy unavailable).
    """
    pass


class DecodeFailure(ChunkEngineError):
    """
    Raised when a chunk cannot be decrypted: empty input, corrupt data,
    wrong key or an unrecognized legacy chunk.
    """
    pass


class StoreFailure(ChunkEngineError):
    """
    Raised when a blob cannot be written, read or deleted.

    Attributes:
        index: Sequence index of the offending chunk, if known
        remaining: Locations still present after a failed delete
    """

    def __init__(self, message: str, index: Optional[int] = None, remaining: Optional[List[str]] = None):
        super().__init__(message)
        self.index = index
        self.remaining = list(remaining or [])


class IngestFailure(ChunkEngineError):
    """
    Raised when ingest fails; all chunks written so far have been rolled back
    unless `remaining` lists locations the rollback could not remove.
    """

    def __init__(self, message: str, file_id: str, cause: Optional[BaseException] = None,
                 remaining: Optional[List[str]] = None):
        super().__init__(message)
        self.file_id = file_id
        self.cause = cause
        self.remaining = list(remaining or [])


class RetrieveFailure(ChunkEngineError):
    """
    Raised when a chunk cannot be fetched or decrypted during retrieval.
    The stream is aborted and cannot be resumed.
    """

    def __init__(self, message: str, index: int, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.index = index
        self.cause = cause
