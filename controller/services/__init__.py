"""Service layer for business logic."""

from controller.services.file_service import FileService

__all__ = [
    "FileService",
]
