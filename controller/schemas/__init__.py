"""Pydantic schemas for API requests and responses."""

from controller.schemas.files import (
    UploadFileResponse,
    FileSummaryResponse,
    FileListResponse,
    MessageResponse,
)
from controller.schemas.common import ErrorResponse

__all__ = [
    "UploadFileResponse",
    "FileSummaryResponse",
    "FileListResponse",
    "MessageResponse",
    "ErrorResponse",
]
