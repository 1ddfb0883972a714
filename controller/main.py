"""Entry point for the encrypted file service."""

import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from chunkserver.exceptions import (
    ChunkEngineError,
    IngestFailure,
    RetrieveFailure,
    StoreFailure,
)
from controller.config import SERVER_HOST, SERVER_PORT
from controller.exceptions import (
    DFSException,
    FileNotFoundError,
    NoFileUploadedError,
)
from controller.routes.file_routes import router as file_router, get_file_service

logger = setup_logging('controller')
setup_logging('chunkserver')

app = FastAPI(
    title="ChunkVault",
    description="Chunked, encrypted file storage service",
    version="1.0.0"
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(f"Request started: {request.method} {request.url.path} [request_id={request_id}]")

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Prepare chunk storage and the record store on startup.
    """
    service = get_file_service()
    logger.info(
        f"File service starting: storage={service.storage.root} records={service.file_repo.db_path} "
        f"chunk_size={service.chunk_size}"
    )


@app.exception_handler(FileNotFoundError)
async def file_not_found_handler(request: Request, exc: FileNotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"File not found error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc), "code": "FILE_NOT_FOUND"}
    )


@app.exception_handler(NoFileUploadedError)
async def no_file_uploaded_handler(request: Request, exc: NoFileUploadedError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"No file uploaded: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "code": "NO_FILE_UPLOADED"}
    )


@app.exception_handler(IngestFailure)
async def ingest_failure_handler(request: Request, exc: IngestFailure):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Upload failed: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Error uploading file", "code": "UPLOAD_FAILED"}
    )


@app.exception_handler(RetrieveFailure)
async def retrieve_failure_handler(request: Request, exc: RetrieveFailure):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Download failed at chunk {exc.index}: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Failed to download file", "code": "DOWNLOAD_FAILED"}
    )


@app.exception_handler(StoreFailure)
async def store_failure_handler(request: Request, exc: StoreFailure):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Chunk storage error: {exc} remaining={len(exc.remaining)} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "code": "STORAGE_ERROR"}
    )


@app.exception_handler(ChunkEngineError)
async def chunk_engine_error_handler(request: Request, exc: ChunkEngineError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Chunk engine error: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal error", "code": "INTERNAL_ERROR"}
    )


@app.exception_handler(DFSException)
async def dfs_exception_handler(request: Request, exc: DFSException):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"File service exception: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "code": "INTERNAL_ERROR"}
    )


app.include_router(file_router)


@app.get("/")
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "ChunkVault API", "status": "running"}


@app.get("/health")
async def health_check():
    """
    Health check endpoint for container healthchecks.
    """
    return {"status": "healthy", "service": "chunkvault"}


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "controller.main:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
    )


if __name__ == "__main__":
    main()
