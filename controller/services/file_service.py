"""File service for business logic."""

import logging
from typing import AsyncIterator, List, Optional, Tuple

from chunkserver.chunk_storage import ChunkStorage
from chunkserver.chunking_engine import ChunkingEngine
from chunkserver.key_derivation import Secret
from common.types import FileRecord
from controller import config
from controller.exceptions import FileNotFoundError
from controller.repositories.file_repository import FileRepository
from controller.utils import generate_uuid, get_current_timestamp

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class FileService:
    """
    Composes the chunking engine with the file record store.

    A record is written only after its chunks are fully stored, and removed
    only after its chunks are fully deleted.
    """

    def __init__(
        self,
        storage: Optional[ChunkStorage] = None,
        file_repo: Optional[FileRepository] = None,
        secret: Optional[Secret] = None,
        chunk_size: Optional[int] = None,
    ):
        self.storage = storage or ChunkStorage(config.CHUNK_STORAGE_PATH)
        self.file_repo = file_repo or FileRepository(config.FILES_DB_PATH)
        self.engine = ChunkingEngine(self.storage)
        self.secret = secret if secret is not None else config.ENCRYPTION_KEY
        self.chunk_size = chunk_size or config.CHUNK_SIZE

    def initialize(self) -> None:
        """Create the storage root and the record store if missing."""
        self.storage.ensure_root()
        self.file_repo.ensure_exists()

    async def upload_file(self, file_name: str, mime_type: Optional[str], stream) -> FileRecord:
        """
        Encrypt and store an uploaded stream, then record it.

        Args:
            file_name: Original filename
            mime_type: Declared content type
            stream: Binary input (sync file object or async reader)

        Returns:
            The persisted FileRecord

        Raises:
            IngestFailure: If the chunks could not be stored (nothing is recorded)
            MetadataError: If the record could not be saved (chunks are purged)
        """
        file_id = generate_uuid()

        chunks = await self.engine.ingest(file_id, stream, self.secret, self.chunk_size)

        record = FileRecord(
            file_id=file_id,
            original_name=file_name,
            size=sum(chunk.size for chunk in chunks),
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            chunks=chunks,
            uploaded_at=get_current_timestamp(),
        )

        try:
            self.file_repo.add(record)
        except Exception as e:
            logger.error(f"Saving record for file {file_id} failed, purging its chunks: {e}")
            await self.engine.purge(file_id, chunks)
            raise

        logger.info(f"Uploaded file {file_id} ({record.size} bytes, {len(chunks)} chunks)")
        return record

    async def download_file(self, file_id: str) -> Tuple[FileRecord, AsyncIterator[bytes]]:
        """
        Open a decrypted stream of a stored file.

        The first chunk is decrypted before returning so that an unreadable file
        fails before any response body is sent.

        Returns:
            Tuple of (FileRecord, async iterator of plaintext pieces)

        Raises:
            FileNotFoundError: If no record exists for file_id
            RetrieveFailure: If the first chunk cannot be read or decrypted
        """
        record = self.get_file(file_id)

        logger.info(f"Starting download of file {file_id} ({len(record.chunks)} chunks, {record.size} bytes)")
        chunks = self.engine.retrieve(record.chunks, self.secret)

        try:
            first = await chunks.__anext__()
        except StopAsyncIteration:
            first = None
        except BaseException:
            await chunks.aclose()
            raise

        async def stream_file_data():
            bytes_streamed = 0
            try:
                if first is not None:
                    bytes_streamed += len(first)
                    yield first
                async for piece in chunks:
                    bytes_streamed += len(piece)
                    yield piece
            except Exception as e:
                logger.error(
                    f"Download of file {file_id} aborted after {bytes_streamed}/{record.size} bytes: {e}"
                )
                raise
            finally:
                await chunks.aclose()

            logger.info(f"Successfully streamed file {file_id}: {bytes_streamed} bytes total")

        return record, stream_file_data()

    def get_file(self, file_id: str) -> FileRecord:
        """
        Raises:
            FileNotFoundError: If no record exists for file_id
        """
        record = self.file_repo.get_by_id(file_id)
        if record is None:
            raise FileNotFoundError(f"File {file_id} not found")
        return record

    def list_files(self) -> List[FileRecord]:
        return self.file_repo.list_files()

    async def delete_file(self, file_id: str) -> None:
        """
        Delete a file's chunks, then its record.

        Raises:
            FileNotFoundError: If no record exists for file_id
            StoreFailure: If chunks remain; the record is kept so the delete can be retried
        """
        record = self.get_file(file_id)

        await self.engine.purge(file_id, record.chunks)
        self.file_repo.delete(file_id)

        logger.info(f"Deleted file {file_id}")
