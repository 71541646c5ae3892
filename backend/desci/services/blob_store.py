"""Blob storage for uploaded paper files.

MongoDB GridFS (bucket ``papers``) in production, a dict in tests. Writes are
chunked so the size ceiling is enforced while streaming.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Dict, Optional, Protocol, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket
from pymongo.errors import PyMongoError

from desci.core.exceptions import BlobNotFoundError, FileTooLargeError, StorageError
from desci.models.schemas import utcnow
from desci.utils.logger import log_file_operation, log_performance

BUCKET_NAME = "papers"
CHUNK_SIZE = 256 * 1024


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


@dataclass
class StoredFile:
    file_id: str
    filename: str
    original_name: str
    content_type: str
    size: int
    upload_date: datetime = field(default_factory=utcnow)


def stored_filename(original_name: str) -> str:
    return f"{int(time.time() * 1000)}-{original_name}"


class BlobStore(Protocol):
    async def put(
        self, original_name: str, source: AsyncReadable, content_type: str, max_bytes: int
    ) -> StoredFile: ...

    def open_stream(self, file_id: str) -> AsyncIterator[bytes]: ...

    async def read(self, file_id: str) -> bytes: ...

    async def delete(self, file_id: str) -> None: ...


class InMemoryBlobStore:
    def __init__(self):
        self._files: Dict[str, Tuple[bytes, StoredFile]] = {}

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._files

    def __len__(self) -> int:
        return len(self._files)

    async def put(self, original_name, source, content_type, max_bytes) -> StoredFile:
        buf = bytearray()
        while True:
            chunk = await source.read(CHUNK_SIZE)
            if not chunk:
                break
            buf.extend(chunk)
            if len(buf) > max_bytes:
                log_file_operation("upload", original_name, False, error="too large")
                raise FileTooLargeError(max_bytes)

        info = StoredFile(
            file_id=uuid.uuid4().hex,
            filename=stored_filename(original_name),
            original_name=original_name,
            content_type=content_type,
            size=len(buf),
        )
        self._files[info.file_id] = (bytes(buf), info)
        log_file_operation("upload", info.filename, True, file_size_bytes=info.size)
        return info

    async def open_stream(self, file_id: str) -> AsyncIterator[bytes]:
        data = await self.read(file_id)
        for i in range(0, len(data), CHUNK_SIZE):
            yield data[i : i + CHUNK_SIZE]

    async def read(self, file_id: str) -> bytes:
        if file_id not in self._files:
            raise BlobNotFoundError(f"File {file_id} not found")
        return self._files[file_id][0]

    async def delete(self, file_id: str) -> None:
        self._files.pop(file_id, None)


def _object_id(file_id: str) -> ObjectId:
    try:
        return ObjectId(file_id)
    except (InvalidId, TypeError) as e:
        raise BlobNotFoundError(f"File {file_id} not found") from e


class GridFSBlobStore:
    def __init__(self, db: AsyncIOMotorDatabase, bucket_name: str = BUCKET_NAME):
        self._bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name)

    async def put(self, original_name, source, content_type, max_bytes) -> StoredFile:
        start = time.time()
        filename = stored_filename(original_name)
        grid_in = self._bucket.open_upload_stream(
            filename,
            metadata={"originalName": original_name, "contentType": content_type},
        )
        size = 0
        try:
            while True:
                chunk = await source.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    await grid_in.abort()
                    log_file_operation("upload", filename, False, error="too large")
                    raise FileTooLargeError(max_bytes)
                await grid_in.write(chunk)
            await grid_in.close()
        except PyMongoError as e:
            await grid_in.abort()
            log_file_operation("upload", filename, False, error=str(e))
            raise StorageError(f"Blob write failed: {e}") from e

        log_performance(
            "gridfs_upload",
            (time.time() - start) * 1000,
            success=True,
            metadata={"filename": filename, "size": size},
        )
        log_file_operation("upload", filename, True, file_size_bytes=size)
        return StoredFile(
            file_id=str(grid_in._id),
            filename=filename,
            original_name=original_name,
            content_type=content_type,
            size=size,
        )

    async def open_stream(self, file_id: str) -> AsyncIterator[bytes]:
        try:
            grid_out = await self._bucket.open_download_stream(_object_id(file_id))
        except NoFile as e:
            raise BlobNotFoundError(f"File {file_id} not found") from e
        while True:
            chunk = await grid_out.readchunk()
            if not chunk:
                break
            yield chunk

    async def read(self, file_id: str) -> bytes:
        try:
            grid_out = await self._bucket.open_download_stream(_object_id(file_id))
            return await grid_out.read()
        except NoFile as e:
            raise BlobNotFoundError(f"File {file_id} not found") from e
        except PyMongoError as e:
            raise StorageError(f"Blob read failed: {e}") from e

    async def delete(self, file_id: str) -> None:
        try:
            await self._bucket.delete(_object_id(file_id))
        except NoFile:
            return
        log_file_operation("delete", file_id, True)


async def prime_stream(stream: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Pull the first chunk so a missing blob raises before the response starts."""
    try:
        first: Optional[bytes] = await stream.__anext__()
    except StopAsyncIteration:
        first = None

    async def _chained() -> AsyncIterator[bytes]:
        if first:
            yield first
        async for chunk in stream:
            yield chunk

    return _chained()
