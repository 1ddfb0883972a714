"""File operation API routes."""

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import StreamingResponse

from controller.exceptions import NoFileUploadedError
from controller.schemas.common import ErrorResponse
from controller.schemas.files import (
    FileListResponse,
    FileSummaryResponse,
    MessageResponse,
    UploadFileResponse,
)
from controller.services.file_service import FileService
from controller.utils import content_disposition

router = APIRouter(prefix="/files", tags=["Files"])

_file_service: Optional[FileService] = None


def get_file_service() -> FileService:
    """
    Provide the process-wide FileService, created on first use.
    """
    global _file_service
    if _file_service is None:
        _file_service = FileService()
        _file_service.initialize()
    return _file_service


@router.post(
    "/upload",
    response_model=UploadFileResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def upload_file(
    file: Optional[UploadFile] = File(None),
    file_service: FileService = Depends(get_file_service),
):
    """
    Upload a file; it is split into encrypted chunks before anything is recorded.

    Parameters:
        - file: File to upload (multipart/form-data)

    Returns:
        - message: Confirmation text
        - fileId: Id of the stored file

    Raises:
        - 400: No file in the request
        - 500: Chunks could not be stored
    """
    if file is None:
        raise NoFileUploadedError("No file uploaded")

    try:
        record = await file_service.upload_file(
            file_name=file.filename or "upload",
            mime_type=file.content_type,
            stream=file,
        )
    finally:
        await file.close()

    return UploadFileResponse(message="File uploaded successfully", fileId=record.file_id)


@router.get(
    "/download/{file_id}",
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def download_file(
    file_id: str,
    file_service: FileService = Depends(get_file_service),
):
    """
    Stream a file's decrypted contents.

    Raises:
        - 404: File not found
        - 500: First chunk unreadable (later failures truncate the body)
    """
    record, stream = await file_service.download_file(file_id)

    headers = {
        "Content-Disposition": content_disposition(record.original_name),
        "Content-Length": str(record.size),
    }

    return StreamingResponse(stream, media_type=record.mime_type, headers=headers)


@router.get("/list", response_model=FileListResponse)
async def list_files(file_service: FileService = Depends(get_file_service)):
    """
    List stored files without their chunk locations.
    """
    return [
        FileSummaryResponse(
            id=record.file_id,
            originalName=record.original_name,
            size=record.size,
            mimeType=record.mime_type,
            uploadedAt=record.uploaded_at,
        )
        for record in file_service.list_files()
    ]


@router.delete(
    "/{file_id}",
    response_model=MessageResponse,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def delete_file(
    file_id: str,
    file_service: FileService = Depends(get_file_service),
):
    """
    Delete a file's chunks and then its record.

    Raises:
        - 404: File not found
        - 500: Some chunks could not be deleted; the file stays listed
    """
    await file_service.delete_file(file_id)
    return MessageResponse(message="File deleted successfully")
