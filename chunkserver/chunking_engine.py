"""Splits input streams into encrypted chunks and reassembles them on retrieval."""

import asyncio
import inspect
import logging
from typing import AsyncIterator, List, Optional, Sequence

from common.constants import CHUNK_SIZE_BYTES, FORMAT_CURRENT
from common.types import ChunkReference
from chunkserver.chunk_codec import decode_chunk, encode_chunk
from chunkserver.chunk_storage import ChunkStorage
from chunkserver.exceptions import (
    ChunkEngineError,
    IngestFailure,
    RetrieveFailure,
    StoreFailure,
)
from chunkserver.key_derivation import Secret

logger = logging.getLogger(__name__)


async def read_window(stream, size: int) -> bytes:
    """
    Read up to `size` bytes, accumulating short reads until the window is full or EOF.

    Args:
        stream: Binary file object, or an object whose read(n) is a coroutine

    Returns:
        Window bytes; shorter than size only at end of stream
    """
    parts = []
    remaining = size
    while remaining > 0:
        data = stream.read(remaining)
        if inspect.isawaitable(data):
            data = await data
        if not data:
            break
        parts.append(bytes(data))
        remaining -= len(data)
    return b''.join(parts)


class ChunkingEngine:
    """
    Orchestrates chunk ingest, retrieval and purge over a ChunkStorage.

    The engine keeps no state between calls. A file id's chunk set must be
    owned by a single ingest or purge at a time; callers enforce that.
    """

    def __init__(self, storage: ChunkStorage):
        self.storage = storage

    async def ingest(
        self,
        file_id: str,
        stream,
        secret: Optional[Secret],
        chunk_size: int = CHUNK_SIZE_BYTES,
    ) -> List[ChunkReference]:
        """
        Encrypt and store a stream as an ordered sequence of chunks.

        All-or-nothing: on any failure or cancellation every chunk written by
        this call is deleted before the error propagates.

        Args:
            file_id: Id the chunks are stored under
            stream: Binary input (sync file object or async reader)
            secret: Configured secret
            chunk_size: Window size in bytes (>= 1)

        Returns:
            ChunkReferences in ascending index order (empty for empty input)

        Raises:
            ValueError: If chunk_size < 1
            IngestFailure: If reading, encoding or storing any chunk fails
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")

        refs: List[ChunkReference] = []
        index = 0

        try:
            while True:
                window = await read_window(stream, chunk_size)
                if not window:
                    break

                encoded = encode_chunk(window, secret)
                location = await self.storage.put(file_id, index, encoded)
                refs.append(ChunkReference(
                    file_id=file_id,
                    index=index,
                    location=location,
                    size=len(window),
                    format_version=FORMAT_CURRENT,
                ))
                logger.debug(f"Stored chunk {index} of file {file_id} ({len(window)} bytes)")

                index += 1
                if len(window) < chunk_size:
                    break
        except asyncio.CancelledError:
            logger.warning(f"Ingest of file {file_id} cancelled after {len(refs)} chunk(s), rolling back")
            await self._rollback(file_id, refs)
            raise
        except Exception as e:
            logger.error(f"Ingest of file {file_id} failed at chunk {index}: {e}")
            remaining = await self._rollback(file_id, refs)
            raise IngestFailure(
                f"Failed to ingest file {file_id} at chunk {index}: {e}",
                file_id=file_id,
                cause=e,
                remaining=remaining,
            ) from e

        logger.info(f"Ingested file {file_id}: {len(refs)} chunk(s), {sum(r.size for r in refs)} bytes")
        return refs

    async def _rollback(self, file_id: str, written: List[ChunkReference]) -> List[str]:
        """
        Delete the chunks written by a failed ingest attempt.

        Only the attempt's own chunks are removed; blobs already stored under
        file_id by someone else are left in place.

        Returns:
            Locations that are still present afterwards
        """
        remaining = []
        try:
            if written:
                remaining = await self.storage.delete_chunks(ref.location for ref in written)
        except StoreFailure as e:
            logger.error(f"Rollback of file {file_id} failed: {e}")
            remaining = [ref.location for ref in written]
        except OSError as e:
            logger.error(f"Rollback of file {file_id} failed: {e}")
            remaining = [ref.location for ref in written]

        if remaining:
            logger.error(f"Rollback of file {file_id} left {len(remaining)} chunk(s) behind")
        else:
            logger.info(f"Rolled back {len(written)} chunk(s) of file {file_id}")
        return remaining

    async def retrieve(
        self,
        refs: Sequence[ChunkReference],
        secret: Optional[Secret],
    ) -> AsyncIterator[bytes]:
        """
        Lazily fetch and decrypt chunks, yielding one plaintext window per reference.

        Single-pass and not restartable. Closing the iterator early stops further
        reads; no blob handle is held between yields.

        Args:
            refs: ChunkReferences in ascending index order
            secret: Configured secret

        Yields:
            Decrypted chunk payloads in order

        Raises:
            RetrieveFailure: If any chunk is out of order, missing or undecryptable
        """
        previous_index = None
        for position, ref in enumerate(refs):
            if previous_index is not None and ref.index <= previous_index:
                raise RetrieveFailure(
                    f"Chunk index {ref.index} follows {previous_index}; references must be in ascending order",
                    index=ref.index,
                )
            previous_index = ref.index

            try:
                wire = await self.storage.get(ref.location)
                plaintext = decode_chunk(wire, secret, ref.format_version)
            except ChunkEngineError as e:
                logger.error(f"Failed to retrieve chunk {ref.index} ({position + 1}/{len(refs)}) of file {ref.file_id}: {e}")
                raise RetrieveFailure(
                    f"Failed to retrieve chunk {ref.index} of file {ref.file_id}: {e}",
                    index=ref.index,
                    cause=e,
                ) from e

            logger.debug(f"Decrypted chunk {ref.index} of file {ref.file_id} ({len(plaintext)} bytes)")
            yield plaintext

    async def purge(self, file_id: str, refs: Optional[Sequence[ChunkReference]] = None) -> None:
        """
        Delete every chunk of a file. Idempotent.

        Args:
            file_id: File whose chunk directory is removed
            refs: Known references, deleted first so chunks stored outside the
                  file's own directory are removed too

        Raises:
            StoreFailure: If chunks remain; the caller must keep the file's record
        """
        remaining = []
        if refs:
            remaining = await self.storage.delete_chunks(ref.location for ref in refs)
        await self.storage.delete_all(file_id)
        if remaining:
            raise StoreFailure(
                f"Failed to delete {len(remaining)} chunk(s) of file {file_id}",
                remaining=remaining,
            )
        logger.info(f"Purged chunks of file {file_id}")
