"""Single-item and text/bytes helpers over any BlobStoragePort.

Why: The port only speaks batches and streams; most callers handle one blob
     at a time and want bytes or text.
"""

from __future__ import annotations

import asyncio
import io

from spaces_blobstore.application.ports.blob_storage_port import BlobStoragePort
from spaces_blobstore.domain.errors import BatchPartialFailure, DomainError, StorageTransportError
from spaces_blobstore.domain.models import Blob
from spaces_blobstore.domain.types import Result


def _unwrap_single(error: DomainError) -> DomainError:
    # A one-item batch failure is reported as the item's own error.
    if isinstance(error, BatchPartialFailure) and len(error.failures) == 1:
        return error.failures[0].error
    return error


async def exists_one(storage: BlobStoragePort, path: str) -> Result[bool, DomainError]:
    r = await storage.exists([path])
    if not r.ok:
        assert r.error is not None
        return Result.failure(_unwrap_single(r.error))
    assert r.value is not None
    return Result.success(r.value[0])


async def delete_one(storage: BlobStoragePort, path: str) -> Result[None, DomainError]:
    r = await storage.delete([path])
    if not r.ok:
        assert r.error is not None
        return Result.failure(_unwrap_single(r.error))
    return Result.success(None)


async def get_blob(storage: BlobStoragePort, path: str) -> Result[Blob, DomainError]:
    r = await storage.get_blobs([path])
    if not r.ok:
        assert r.error is not None
        return Result.failure(r.error)
    assert r.value is not None
    return Result.success(r.value[0])


async def read_bytes(storage: BlobStoragePort, path: str) -> Result[bytes, DomainError]:
    """Read the whole blob into memory.

    The stream is drained in a worker thread and always closed.
    """
    r = await storage.open_read(path)
    if not r.ok:
        assert r.error is not None
        return Result.failure(r.error)
    assert r.value is not None
    stream = r.value
    try:
        data = await asyncio.to_thread(stream.read)
    except Exception as ex:
        return Result.failure(StorageTransportError(operation="read", path=path, cause=ex))
    finally:
        stream.close()
    return Result.success(data)


async def read_text(
    storage: BlobStoragePort, path: str, encoding: str = "utf-8"
) -> Result[str, DomainError]:
    r = await read_bytes(storage, path)
    if not r.ok:
        assert r.error is not None
        return Result.failure(r.error)
    assert r.value is not None
    return Result.success(r.value.decode(encoding))


async def write_bytes(
    storage: BlobStoragePort, path: str, data: bytes
) -> Result[None, DomainError]:
    return await storage.write(path, io.BytesIO(data))


async def write_text(
    storage: BlobStoragePort, path: str, text: str, encoding: str = "utf-8"
) -> Result[None, DomainError]:
    return await write_bytes(storage, path, text.encode(encoding))


async def set_metadata(
    storage: BlobStoragePort, path: str, metadata: dict[str, str]
) -> Result[None, DomainError]:
    """Replace the user metadata of one blob (no merge with what is stored).

    The blob record carries no content type, so the backend keeps the stored one.
    """
    r = await get_blob(storage, path)
    if not r.ok:
        assert r.error is not None
        return Result.failure(r.error)
    assert r.value is not None
    r_set = await storage.set_blobs([r.value.with_metadata(metadata)])
    if not r_set.ok:
        assert r_set.error is not None
        return Result.failure(_unwrap_single(r_set.error))
    return Result.success(None)
