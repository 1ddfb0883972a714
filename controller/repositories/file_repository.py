"""File record repository persisted as a JSON document."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from common.constants import DEFAULT_FILES_DB_PATH
from common.types import ChunkReference, FileRecord
from controller.exceptions import MetadataError

logger = logging.getLogger(__name__)


def chunk_to_dict(chunk: ChunkReference) -> Dict[str, Any]:
    return {
        "index": chunk.index,
        "location": chunk.location,
        "size": chunk.size,
        "formatVersion": chunk.format_version,
    }


def chunk_from_dict(file_id: str, position: int, data: Union[str, Dict[str, Any]]) -> ChunkReference:
    """
    Build a ChunkReference from its stored form.

    Records written before chunk metadata was tracked store bare paths; their
    format is unknown and is detected from the chunk bytes on read.
    """
    if isinstance(data, str):
        return ChunkReference(file_id=file_id, index=position, location=data)

    return ChunkReference(
        file_id=file_id,
        index=data.get("index", position),
        location=data["location"],
        size=data.get("size"),
        format_version=data.get("formatVersion"),
    )


def record_to_dict(record: FileRecord) -> Dict[str, Any]:
    return {
        "id": record.file_id,
        "originalName": record.original_name,
        "size": record.size,
        "mimeType": record.mime_type,
        "chunks": [chunk_to_dict(chunk) for chunk in record.chunks],
        "uploadedAt": record.uploaded_at,
    }


def record_from_dict(data: Dict[str, Any]) -> FileRecord:
    file_id = str(data["id"])
    return FileRecord(
        file_id=file_id,
        original_name=data.get("originalName", ""),
        size=int(data.get("size", 0)),
        mime_type=data.get("mimeType") or "application/octet-stream",
        chunks=[chunk_from_dict(file_id, i, c) for i, c in enumerate(data.get("chunks", []))],
        uploaded_at=data.get("uploadedAt", ""),
    )


class FileRepository:
    """
    Thread-safe store of FileRecords in a single JSON file.

    Document shape: {"files": [record, ...]}. Every write replaces the whole
    document atomically through a temporary file.
    """

    def __init__(self, db_path: Union[str, Path, None] = None):
        """
        Initialize repository.

        Args:
            db_path: Path to JSON document (default: DEFAULT_FILES_DB_PATH)
        """
        self._db_path = Path(db_path or DEFAULT_FILES_DB_PATH)
        self._lock = threading.RLock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def ensure_exists(self) -> None:
        """Create an empty document if none exists."""
        with self._lock:
            if not self._db_path.exists():
                self._write({"files": []})
                logger.info(f"Created file record store at {self._db_path}")

    def _read(self) -> Dict[str, Any]:
        if not self._db_path.exists():
            return {"files": []}
        try:
            with open(self._db_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise MetadataError(f"Failed to read file records from {self._db_path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("files"), list):
            raise MetadataError(f"File record store {self._db_path} is malformed")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._db_path.parent, prefix=".files-", suffix=".json")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_name, self._db_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise MetadataError(f"Failed to write file records to {self._db_path}: {e}") from e

    def list_files(self) -> List[FileRecord]:
        """
        Get all file records in upload order.

        Returns:
            List of FileRecords
        """
        with self._lock:
            return [record_from_dict(item) for item in self._read()["files"]]

    def get_by_id(self, file_id: str) -> Optional[FileRecord]:
        """
        Get a file record by id.

        Returns:
            FileRecord if found, None otherwise
        """
        with self._lock:
            for item in self._read()["files"]:
                if str(item.get("id")) == file_id:
                    return record_from_dict(item)
        return None

    def add(self, record: FileRecord) -> FileRecord:
        """
        Append a file record.

        Raises:
            MetadataError: If a record with the same id exists or the write fails
        """
        with self._lock:
            data = self._read()
            if any(str(item.get("id")) == record.file_id for item in data["files"]):
                raise MetadataError(f"File record {record.file_id} already exists")
            data["files"].append(record_to_dict(record))
            self._write(data)

        logger.info(f"Saved file record {record.file_id} ({len(record.chunks)} chunks)")
        return record

    def delete(self, file_id: str) -> bool:
        """
        Remove a file record.

        Returns:
            True if the record was removed, False if it did not exist
        """
        with self._lock:
            data = self._read()
            files = [item for item in data["files"] if str(item.get("id")) != file_id]
            if len(files) == len(data["files"]):
                return False
            data["files"] = files
            self._write(data)

        logger.info(f"Deleted file record {file_id}")
        return True
