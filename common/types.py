"""Shared data type definitions (ChunkReference, FileRecord)."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class ChunkReference:
    """
    Location of one encrypted chunk of a file.

    Attributes:
        file_id: Identifier of the owning file
        index: Zero-based sequence index within the file
        location: Opaque handle understood by the chunk store
        size: Plaintext length in bytes, if known
        format_version: Wire format the chunk was written with (None if unknown)
    """
    file_id: str
    index: int
    location: str
    size: Optional[int] = None
    format_version: Optional[int] = None


@dataclass
class FileRecord:
    """
    Metadata entry for an uploaded file.
    """
    file_id: str
    original_name: str
    size: int
    mime_type: str
    chunks: List[ChunkReference] = field(default_factory=list)
    uploaded_at: str = ""
