"""Tests for chunk ingest, retrieval and purge."""

import asyncio

import pytest

from common.constants import CHUNK_SIZE_BYTES, FORMAT_CURRENT
from common.types import ChunkReference
from chunkserver import chunking_engine
from chunkserver.chunk_codec import encode_legacy_chunk
from chunkserver.chunk_storage import ChunkStorage
from chunkserver.exceptions import (
    DecodeFailure,
    EncodeFailure,
    IngestFailure,
    RetrieveFailure,
    StoreFailure,
)
from chunkserver.key_derivation import secret_to_bytes
from conftest import as_stream, collect


class AsyncTrickleReader:
    """Async reader that returns at most `piece` bytes per read."""

    def __init__(self, data: bytes, piece: int):
        self._data = data
        self._pos = 0
        self._piece = piece

    async def read(self, size: int = -1) -> bytes:
        await asyncio.sleep(0)
        size = min(size, self._piece)
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk


class StallingReader:
    """Sync-looking reader that blocks forever on a given read."""

    def __init__(self, data: bytes, stall_on_read: int):
        self._stream = as_stream(data)
        self._reads = 0
        self._stall_on_read = stall_on_read
        self.stalled = asyncio.Event()

    async def read(self, size: int) -> bytes:
        self._reads += 1
        if self._reads == self._stall_on_read:
            self.stalled.set()
            await asyncio.Event().wait()
        return self._stream.read(size)


class TestIngest:
    """Test splitting and storing streams."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size,chunk_size,expected_chunks", [
        (0, 16, 0),
        (1, 1, 1),
        (15, 16, 1),
        (16, 16, 1),
        (17, 16, 2),
        (1000, 7, 143),
        (4096, 1024, 4),
    ])
    async def test_round_trip(self, engine, secret, random_payload, size, chunk_size, expected_chunks):
        payload = random_payload(size)

        refs = await engine.ingest("file-1", as_stream(payload), secret, chunk_size)

        assert len(refs) == expected_chunks
        assert await collect(engine.retrieve(refs, secret)) == payload

    @pytest.mark.asyncio
    async def test_references_are_ordered_and_sized(self, engine, storage, secret, random_payload):
        payload = random_payload(2500)

        refs = await engine.ingest("file-1", as_stream(payload), secret, 1000)

        assert [ref.index for ref in refs] == [0, 1, 2]
        assert [ref.size for ref in refs] == [1000, 1000, 500]
        assert sum(ref.size for ref in refs) == len(payload)
        assert all(ref.file_id == "file-1" for ref in refs)
        assert all(ref.format_version == FORMAT_CURRENT for ref in refs)
        assert [ref.location for ref in refs] == storage.list_chunks("file-1")

    @pytest.mark.asyncio
    async def test_stored_chunks_are_encrypted(self, engine, secret):
        payload = b"plain text that must not hit the disk " * 10

        refs = await engine.ingest("file-1", as_stream(payload), secret, 64)

        for ref in refs:
            with open(ref.location, "rb") as f:
                wire = f.read()
            assert wire[0] == 1
            assert b"plain text" not in wire

    @pytest.mark.asyncio
    async def test_async_reader_with_short_reads(self, engine, secret, random_payload):
        payload = random_payload(3000)

        refs = await engine.ingest("file-1", AsyncTrickleReader(payload, 100), secret, 1024)

        assert [ref.size for ref in refs] == [1024, 1024, 952]
        assert await collect(engine.retrieve(refs, secret)) == payload

    @pytest.mark.asyncio
    @pytest.mark.parametrize("total", [2_621_440, 2_500_000])
    async def test_default_chunk_size_scenario(self, engine, secret, random_payload, total):
        payload = random_payload(total)

        refs = await engine.ingest("big-file", as_stream(payload), secret, CHUNK_SIZE_BYTES)

        assert len(refs) == 3
        pieces = [piece async for piece in engine.retrieve(refs, secret)]
        assert [len(piece) for piece in pieces] == [
            CHUNK_SIZE_BYTES,
            CHUNK_SIZE_BYTES,
            total - 2 * CHUNK_SIZE_BYTES,
        ]
        assert b"".join(pieces) == payload

    @pytest.mark.asyncio
    async def test_invalid_chunk_size(self, engine, secret):
        with pytest.raises(ValueError):
            await engine.ingest("file-1", as_stream(b"data"), secret, 0)


class TestIngestRollback:
    """Test that failed ingests leave no chunks behind."""

    @pytest.mark.asyncio
    async def test_store_failure_rolls_back(self, engine, storage, secret, random_payload, monkeypatch):
        def failing_write(path, data):
            if path.name == "chunk-2":
                raise OSError("disk full")
            ChunkStorage._write_blob(path, data)

        monkeypatch.setattr(storage, "_write_blob", failing_write)

        with pytest.raises(IngestFailure) as exc_info:
            await engine.ingest("file-1", as_stream(random_payload(500)), secret, 100)

        assert isinstance(exc_info.value.cause, StoreFailure)
        assert exc_info.value.cause.index == 2
        assert exc_info.value.file_id == "file-1"
        assert exc_info.value.remaining == []
        assert storage.list_chunks("file-1") == []
        assert not (storage.root / "file-1").exists()

    @pytest.mark.asyncio
    async def test_encode_failure_rolls_back(self, engine, storage, secret, monkeypatch):
        real_encode = chunking_engine.encode_chunk
        calls = []

        def failing_encode(plaintext, key):
            calls.append(plaintext)
            if len(calls) == 3:
                raise EncodeFailure("entropy exhausted")
            return real_encode(plaintext, key)

        monkeypatch.setattr(chunking_engine, "encode_chunk", failing_encode)

        with pytest.raises(IngestFailure) as exc_info:
            await engine.ingest("file-1", as_stream(b"x" * 50), secret, 10)

        assert isinstance(exc_info.value.cause, EncodeFailure)
        assert storage.list_chunks("file-1") == []

    @pytest.mark.asyncio
    async def test_read_failure_rolls_back(self, engine, storage, secret):
        class BrokenStream:
            def __init__(self):
                self.reads = 0

            def read(self, size):
                self.reads += 1
                if self.reads > 2:
                    raise OSError("connection reset")
                return b"y" * size

        with pytest.raises(IngestFailure):
            await engine.ingest("file-1", BrokenStream(), secret, 10)

        assert storage.list_chunks("file-1") == []

    @pytest.mark.asyncio
    async def test_cancellation_rolls_back(self, engine, storage, secret):
        reader = StallingReader(b"z" * 100, stall_on_read=3)

        task = asyncio.create_task(engine.ingest("file-1", reader, secret, 10))
        await reader.stalled.wait()

        assert len(storage.list_chunks("file-1")) == 2

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert storage.list_chunks("file-1") == []

    @pytest.mark.asyncio
    async def test_failed_rollback_reports_remaining(self, engine, storage, secret, monkeypatch):
        def failing_write(path, data):
            if path.name == "chunk-1":
                raise OSError("disk full")
            ChunkStorage._write_blob(path, data)

        async def stuck_delete_chunks(locations):
            return list(locations)

        monkeypatch.setattr(storage, "_write_blob", failing_write)
        monkeypatch.setattr(storage, "delete_chunks", stuck_delete_chunks)

        with pytest.raises(IngestFailure) as exc_info:
            await engine.ingest("file-1", as_stream(b"w" * 30), secret, 10)

        assert exc_info.value.remaining == [str(storage.get_chunk_path("file-1", 0))]

    @pytest.mark.asyncio
    async def test_failed_ingest_leaves_existing_chunks_alone(self, engine, storage, secret):
        committed = await engine.ingest("file-1", as_stream(b"k" * 30), secret, 10)

        with pytest.raises(IngestFailure) as exc_info:
            await engine.ingest("file-1", as_stream(b"m" * 30), secret, 10)

        assert isinstance(exc_info.value.cause, StoreFailure)
        assert exc_info.value.cause.index == 0
        assert storage.list_chunks("file-1") == [ref.location for ref in committed]
        assert await collect(engine.retrieve(committed, secret)) == b"k" * 30

    @pytest.mark.asyncio
    async def test_rollback_only_removes_chunks_of_the_attempt(self, engine, storage, secret, monkeypatch):
        foreign = await storage.put("file-1", 7, b"blob from elsewhere")

        def failing_write(path, data):
            if path.name == "chunk-2":
                raise OSError("disk full")
            ChunkStorage._write_blob(path, data)

        monkeypatch.setattr(storage, "_write_blob", failing_write)

        with pytest.raises(IngestFailure) as exc_info:
            await engine.ingest("file-1", as_stream(b"n" * 50), secret, 10)

        assert exc_info.value.remaining == []
        assert storage.list_chunks("file-1") == [foreign]
        assert await storage.get(foreign) == b"blob from elsewhere"


class TestRetrieve:
    """Test streaming reassembly."""

    @pytest.mark.asyncio
    async def test_missing_chunk_aborts_with_index(self, engine, storage, secret):
        refs = await engine.ingest("file-1", as_stream(b"a" * 30), secret, 10)
        storage.get_chunk_path("file-1", 1).unlink()

        received = []
        with pytest.raises(RetrieveFailure) as exc_info:
            async for piece in engine.retrieve(refs, secret):
                received.append(piece)

        assert exc_info.value.index == 1
        assert isinstance(exc_info.value.cause, StoreFailure)
        assert received == [b"a" * 10]

    @pytest.mark.asyncio
    async def test_corrupt_chunk_aborts_with_index(self, engine, storage, secret):
        refs = await engine.ingest("file-1", as_stream(b"b" * 30), secret, 10)
        path = storage.get_chunk_path("file-1", 2)
        path.write_bytes(path.read_bytes()[:-1])

        with pytest.raises(RetrieveFailure) as exc_info:
            await collect(engine.retrieve(refs, secret))

        assert exc_info.value.index == 2
        assert isinstance(exc_info.value.cause, DecodeFailure)

    @pytest.mark.asyncio
    async def test_wrong_secret_never_yields_original(self, engine, secret, random_payload):
        payload = random_payload(64)
        refs = await engine.ingest("file-1", as_stream(payload), secret, 16)

        try:
            result = await collect(engine.retrieve(refs, "wrong secret"))
        except RetrieveFailure:
            return
        assert result != payload

    @pytest.mark.asyncio
    async def test_out_of_order_references_rejected(self, engine, secret):
        refs = await engine.ingest("file-1", as_stream(b"c" * 30), secret, 10)

        with pytest.raises(RetrieveFailure) as exc_info:
            await collect(engine.retrieve([refs[1], refs[0], refs[2]], secret))

        assert exc_info.value.index == 0

    @pytest.mark.asyncio
    async def test_retrieve_is_lazy_and_stops_when_closed(self, engine, storage, secret, monkeypatch):
        refs = await engine.ingest("file-1", as_stream(b"d" * 50), secret, 10)

        fetched = []
        real_get = storage.get

        async def counting_get(location):
            fetched.append(location)
            return await real_get(location)

        monkeypatch.setattr(storage, "get", counting_get)

        stream = engine.retrieve(refs, secret)
        assert fetched == []

        assert await stream.__anext__() == b"d" * 10
        await stream.aclose()

        assert fetched == [refs[0].location]
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_empty_reference_list(self, engine, secret):
        assert await collect(engine.retrieve([], secret)) == b""

    @pytest.mark.asyncio
    async def test_mixed_legacy_and_current_chunks(self, engine, storage, secret):
        refs = await engine.ingest("file-1", as_stream(b"new-data"), secret, 8)
        legacy = encode_legacy_chunk(b"old-data", secret_to_bytes(secret))
        legacy_location = await storage.put("file-1", 1, legacy)

        mixed = refs + [ChunkReference(file_id="file-1", index=1, location=legacy_location, format_version=0)]

        assert await collect(engine.retrieve(mixed, secret)) == b"new-dataold-data"


class TestPurge:
    """Test chunk deletion."""

    @pytest.mark.asyncio
    async def test_purge_removes_chunks(self, engine, storage, secret):
        refs = await engine.ingest("file-1", as_stream(b"e" * 30), secret, 10)

        await engine.purge("file-1", refs)

        assert storage.list_chunks("file-1") == []
        assert not any(storage.chunk_exists(ref.location) for ref in refs)

    @pytest.mark.asyncio
    async def test_purge_is_idempotent(self, engine, secret):
        await engine.ingest("file-1", as_stream(b"f" * 30), secret, 10)

        await engine.purge("file-1")
        await engine.purge("file-1")
        await engine.purge("never-ingested")

    @pytest.mark.asyncio
    async def test_purge_leaves_other_files(self, engine, storage, secret):
        await engine.ingest("file-1", as_stream(b"g" * 30), secret, 10)
        other = await engine.ingest("file-2", as_stream(b"h" * 30), secret, 10)

        await engine.purge("file-1")

        assert storage.list_chunks("file-2") == [ref.location for ref in other]

    @pytest.mark.asyncio
    async def test_purge_deletes_chunks_outside_file_directory(self, engine, storage, secret):
        legacy_location = await storage.put("upload-dir", 0, b"legacy blob")
        ref = ChunkReference(file_id="1700000000000", index=0, location=legacy_location)

        await engine.purge("1700000000000", [ref])

        assert not storage.chunk_exists(legacy_location)
        assert not (storage.root / "upload-dir").exists()


@pytest.mark.asyncio
async def test_concurrent_ingests_do_not_interfere(engine, secret, random_payload):
    payloads = {f"file-{i}": random_payload(777 + i) for i in range(5)}

    results = await asyncio.gather(*(
        engine.ingest(file_id, as_stream(data), secret, 100)
        for file_id, data in payloads.items()
    ))

    for (file_id, data), refs in zip(payloads.items(), results):
        assert await collect(engine.retrieve(refs, secret)) == data
