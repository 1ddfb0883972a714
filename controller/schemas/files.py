"""Pydantic schemas for file operation endpoints."""

from typing import List
from pydantic import BaseModel, Field


class UploadFileResponse(BaseModel):
    """Response model for file upload."""
    message: str
    file_id: str = Field(..., alias="fileId")


class FileSummaryResponse(BaseModel):
    """Response model for one entry of the file listing."""
    id: str
    original_name: str = Field(..., alias="originalName")
    size: int
    mime_type: str = Field(..., alias="mimeType")
    uploaded_at: str = Field(..., alias="uploadedAt")


class MessageResponse(BaseModel):
    """Response model for operations that only report a message."""
    message: str


FileListResponse = List[FileSummaryResponse]
