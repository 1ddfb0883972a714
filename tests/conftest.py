"""Shared pytest fixtures for all tests."""

import io
import os

import pytest

from chunkserver.chunk_storage import ChunkStorage
from chunkserver.chunking_engine import ChunkingEngine
from controller.repositories.file_repository import FileRepository
from controller.services.file_service import FileService

TEST_SECRET = "correct horse battery staple"


@pytest.fixture
def secret():
    """Secret used to encrypt test chunks."""
    return TEST_SECRET


@pytest.fixture
def storage(tmp_path):
    """
    Create chunk storage rooted in a temporary directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        ChunkStorage instance
    """
    chunk_storage = ChunkStorage(tmp_path / 'uploads')
    chunk_storage.ensure_root()
    return chunk_storage


@pytest.fixture
def engine(storage):
    """ChunkingEngine over the temporary storage."""
    return ChunkingEngine(storage)


@pytest.fixture
def file_repo(tmp_path):
    """FileRepository backed by a temporary JSON document."""
    repo = FileRepository(tmp_path / 'data' / 'files.json')
    repo.ensure_exists()
    return repo


@pytest.fixture
def file_service(storage, file_repo, secret):
    """FileService wired to temporary storage with a small chunk size."""
    return FileService(storage=storage, file_repo=file_repo, secret=secret, chunk_size=1024)


@pytest.fixture
def random_payload():
    """
    Build random payloads of a given size.

    Returns:
        Function taking a byte count and returning random bytes
    """
    def _make(size: int) -> bytes:
        return os.urandom(size)
    return _make


async def collect(stream) -> bytes:
    """Drain an async byte iterator into one bytes object."""
    parts = []
    async for piece in stream:
        parts.append(piece)
    return b''.join(parts)


def as_stream(data: bytes) -> io.BytesIO:
    return io.BytesIO(data)
