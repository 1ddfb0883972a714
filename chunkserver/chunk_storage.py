"""Manages encrypted chunk blobs on disk: write-once put, get and delete."""

import asyncio
import logging
import re
from pathlib import Path
from typing import Iterable, List, Union

from common.constants import CHUNK_FILE_PREFIX, DEFAULT_CHUNK_STORAGE_PATH
from chunkserver.exceptions import StoreFailure

logger = logging.getLogger(__name__)

_FILE_ID_PATTERN = re.compile(r'[A-Za-z0-9][A-Za-z0-9._-]*')


class ChunkStorage:
    """
    Directory-backed blob store keyed by (file_id, index).

    Layout: <root>/<file_id>/chunk-<index>. The location handed back by put()
    is the blob's path as a string. Blocking file I/O runs in the default
    executor so callers on the event loop are never stalled.
    """

    def __init__(self, root: Union[str, Path, None] = None):
        """
        Initialize storage rooted at a directory.

        Args:
            root: Storage root (default: DEFAULT_CHUNK_STORAGE_PATH)
        """
        self.root = Path(root or DEFAULT_CHUNK_STORAGE_PATH).resolve()

    def ensure_root(self) -> None:
        """Ensure the storage root exists."""
        self.root.mkdir(parents=True, exist_ok=True)

    def chunk_dir(self, file_id: str) -> Path:
        """
        Get directory holding a file's chunks.

        Raises:
            StoreFailure: If file_id is not a safe single path component
        """
        if not _FILE_ID_PATTERN.fullmatch(file_id or ''):
            raise StoreFailure(f"Invalid file id {file_id!r}")
        return self.root / file_id

    def get_chunk_path(self, file_id: str, index: int) -> Path:
        """
        Get blob path for a chunk.

        Args:
            file_id: Owning file id
            index: Chunk sequence index

        Returns:
            Path object for chunk blob
        """
        if index < 0:
            raise StoreFailure(f"Invalid chunk index {index}", index=index)
        return self.chunk_dir(file_id) / f"{CHUNK_FILE_PREFIX}{index}"

    def resolve_location(self, location: str) -> Path:
        """
        Turn a location handle back into a path inside the storage root.

        Raises:
            StoreFailure: If the location points outside the root
        """
        path = Path(location)
        if not path.is_absolute():
            path = self.root / path
        path = path.resolve()
        if path == self.root or self.root not in path.parents:
            raise StoreFailure(f"Chunk location {location} is outside storage root")
        return path

    def list_chunks(self, file_id: str) -> List[str]:
        """
        List stored chunk locations for a file, ordered by index.

        Returns:
            Locations of every blob present for file_id (empty if none)
        """
        directory = self.chunk_dir(file_id)
        if not directory.is_dir():
            return []

        def sort_key(path: Path) -> int:
            suffix = path.name[len(CHUNK_FILE_PREFIX):]
            return int(suffix) if suffix.isdigit() else -1

        blobs = sorted(directory.glob(f"{CHUNK_FILE_PREFIX}*"), key=sort_key)
        return [str(path) for path in blobs]

    @staticmethod
    def _write_blob(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'xb') as f:
            try:
                f.write(data)
            except OSError:
                f.close()
                path.unlink(missing_ok=True)
                raise

    @staticmethod
    def _read_blob(path: Path) -> bytes:
        with open(path, 'rb') as f:
            return f.read()

    async def put(self, file_id: str, index: int, data: bytes) -> str:
        """
        Write a chunk blob. Each (file_id, index) may be written once.

        Args:
            file_id: Owning file id
            index: Chunk sequence index
            data: Encoded chunk bytes

        Returns:
            Location of the written blob

        Raises:
            StoreFailure: If the blob exists already or the write fails
        """
        path = self.get_chunk_path(file_id, index)
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._write_blob, path, data)

        try:
            await asyncio.shield(future)
        except asyncio.CancelledError:
            # The worker thread still finishes the write; remove what it produced.
            await asyncio.wait([future])
            if not future.cancelled() and future.exception() is None:
                path.unlink(missing_ok=True)
            raise
        except FileExistsError as e:
            raise StoreFailure(f"Chunk {index} of file {file_id} already exists", index=index) from e
        except OSError as e:
            raise StoreFailure(f"Failed to write chunk {index} of file {file_id}: {e}", index=index) from e

        logger.debug(f"Wrote chunk {index} of file {file_id} ({len(data)} bytes)")
        return str(path)

    async def get(self, location: str) -> bytes:
        """
        Read a chunk blob.

        Args:
            location: Location returned by put()

        Returns:
            Stored chunk bytes

        Raises:
            StoreFailure: If the blob is missing or unreadable
        """
        path = self.resolve_location(location)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read_blob, path)
        except FileNotFoundError as e:
            raise StoreFailure(f"Chunk not found at {location}") from e
        except OSError as e:
            raise StoreFailure(f"Failed to read chunk at {location}: {e}") from e

    def _delete_paths(self, paths: Iterable[Path]) -> List[str]:
        remaining = []
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to delete chunk {path}: {e}")
                remaining.append(str(path))
        return remaining

    @staticmethod
    def _remove_dir_if_empty(directory: Path) -> None:
        try:
            directory.rmdir()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove chunk directory {directory}: {e}")

    async def delete_chunks(self, locations: Iterable[str]) -> List[str]:
        """
        Delete specific chunk blobs and their directories once empty.

        Missing blobs are not an error.

        Args:
            locations: Locations returned by put()

        Returns:
            Locations that could not be deleted
        """
        paths = [self.resolve_location(location) for location in locations]
        loop = asyncio.get_running_loop()

        def _delete() -> List[str]:
            remaining = self._delete_paths(paths)
            for directory in sorted({path.parent for path in paths}):
                if directory != self.root and directory.is_dir() and not any(directory.iterdir()):
                    self._remove_dir_if_empty(directory)
            return remaining

        return await loop.run_in_executor(None, _delete)

    async def delete_all(self, file_id: str) -> None:
        """
        Delete every chunk blob stored for a file.

        Idempotent: a file with no chunks is a no-op.

        Args:
            file_id: Owning file id

        Raises:
            StoreFailure: If some blobs could not be deleted; `remaining` lists them
        """
        directory = self.chunk_dir(file_id)
        loop = asyncio.get_running_loop()

        def _delete() -> List[str]:
            if not directory.is_dir():
                return []
            remaining = self._delete_paths(sorted(directory.iterdir()))
            if not remaining:
                self._remove_dir_if_empty(directory)
            return remaining

        remaining = await loop.run_in_executor(None, _delete)
        if remaining:
            raise StoreFailure(
                f"Failed to delete {len(remaining)} chunk(s) of file {file_id}",
                remaining=remaining,
            )
        logger.debug(f"Deleted all chunks of file {file_id}")

    def chunk_exists(self, location: str) -> bool:
        """
        Check if a chunk blob exists.

        Returns:
            True if blob exists, False otherwise
        """
        return self.resolve_location(location).exists()
