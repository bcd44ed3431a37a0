"""DigitalOcean Spaces blob storage adapter.

Why: Spaces speaks the S3 API, so the adapter maps the blob contract onto
     minio's S3 primitives and converts every client exception into a
     domain error. Batch verbs fan out one request per item and always
     attempt every item before reporting.
"""

from __future__ import annotations

import asyncio
import io
import logging
import mimetypes
from collections.abc import Awaitable, Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from importlib import import_module
from itertools import islice
from typing import Any, BinaryIO, TypeVar, cast

from spaces_blobstore.application.ports.blob_storage_port import (
    BlobStoragePort,
    BlobTransactionPort,
)
from spaces_blobstore.domain.errors import (
    BatchItemFailure,
    BatchPartialFailure,
    BlobNotFoundError,
    BucketNotFoundError,
    DomainError,
    StorageClosedError,
    StorageError,
    StorageTransportError,
    UnsupportedOperationError,
    ValidationError,
)
from spaces_blobstore.domain.models import (
    Blob,
    BlobKind,
    ListOptions,
    normalize_path,
    user_metadata,
)
from spaces_blobstore.domain.types import Result

logger = logging.getLogger(__name__)

T = TypeVar("T")

SPACES_DOMAIN = "digitaloceanspaces.com"
CANNED_ACLS = frozenset({"private", "public-read"})
# S3 codes meaning "the object is absent". minio also reports a HEAD on a missing
# bucket as NoSuchKey, so head-based operations check the bucket first.
NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchObject", "NotFound", "ResourceNotFound"})
MIN_PART_SIZE = 5 * 1024 * 1024
LIST_CHUNK_SIZE = 1000
DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class SpacesConfig:
    """Configuration for the Spaces client; fixed for the adapter's lifetime."""

    access_key: str
    secret_key: str = field(repr=False)
    bucket_name: str = ""
    region: str = "ams3"
    default_acl: str = "private"
    secure: bool = True
    max_concurrency: int = 16
    part_size: int = 10 * 1024 * 1024
    timeout_s: int = 300

    def __post_init__(self) -> None:
        if not self.bucket_name:
            raise ValidationError("bucket_name must not be empty")
        if not self.region:
            raise ValidationError("region must not be empty")
        if self.default_acl not in CANNED_ACLS:
            raise ValidationError(
                f"unsupported canned ACL {self.default_acl!r}, expected one of {sorted(CANNED_ACLS)}"
            )
        if self.max_concurrency < 1:
            raise ValidationError("max_concurrency must be >= 1")
        if self.part_size < MIN_PART_SIZE:
            raise ValidationError(f"part_size must be >= {MIN_PART_SIZE} bytes")

    @property
    def endpoint(self) -> str:
        return f"{self.region}.{SPACES_DOMAIN}"


class BlobReadStream(io.RawIOBase):
    """Readable stream over a get_object response.

    Closing it closes the response and hands the connection back to the pool.
    """

    def __init__(self, response: Any) -> None:
        super().__init__()
        self._response = response

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        data = self._response.read(len(buffer))
        size = len(data)
        buffer[:size] = data
        return size

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._response.close()
            self._response.release_conn()
        finally:
            super().close()


def _is_not_found(ex: BaseException) -> bool:
    return getattr(ex, "code", None) in NOT_FOUND_CODES


def _take(objects: Iterator[Any], n: int) -> list[Any]:
    # Runs in a worker thread: advancing minio's iterator fetches the next page.
    return list(islice(objects, n))


def _close_iterator(objects: Iterator[Any], page: asyncio.Future[Any] | None = None) -> None:
    # minio's iterator is a generator; it can only be closed once no thread is inside it.
    if page is not None and not page.cancelled():
        page.exception()
    close = getattr(objects, "close", None)
    if close is not None:
        close()


def _to_blob(obj: Any, path: str | None = None) -> Blob:
    full_path = path or obj.object_name
    if getattr(obj, "is_dir", False):
        return Blob(full_path=full_path, kind=BlobKind.FOLDER)
    etag = getattr(obj, "etag", None)
    return Blob(
        full_path=full_path,
        size=getattr(obj, "size", None),
        last_modified=getattr(obj, "last_modified", None),
        md5=etag.strip('"') if etag else None,
        content_type=getattr(obj, "content_type", None),
        metadata=user_metadata(getattr(obj, "metadata", None)),
    )


class SpacesBlobStorageAdapter(BlobStoragePort):
    """DigitalOcean Spaces (S3-compatible) adapter for the blob contract.

    Features:
    - Streaming uploads (multipart, no full buffering) with a default canned ACL
    - Streaming downloads handed to the caller
    - Concurrent per-item batches (exists/delete/set_blobs), order-preserving
    - Metadata replacement via copy-onto-self
    - No transactions: open_transaction() yields None

    Why: Object stores replace whole objects and have no atomic multi-object
         writes; the adapter reports those gaps as values or typed errors
         instead of silently degrading.
    """

    def __init__(self, cfg: SpacesConfig) -> None:
        """Initialize Spaces blob storage adapter.

        Args:
            cfg: SpacesConfig with bucket, region, credentials and ACL

        Raises:
            StorageError: If minio-py is not available or init fails
        """
        self._cfg = cfg
        self._http: Any = None
        self._client = self._init_client(cfg)
        self._closed = False
        self._bucket_checked = False

    @property
    def config(self) -> SpacesConfig:
        return self._cfg

    @property
    def closed(self) -> bool:
        return self._closed

    def _init_client(self, cfg: SpacesConfig) -> Any:
        """Initialize minio client with lazy import and an adapter-owned pool.

        Args:
            cfg: SpacesConfig with connection parameters

        Returns:
            Minio client instance

        Raises:
            StorageError: If minio-py not available or init fails
        """
        try:
            urllib3 = import_module("urllib3")
            minio = import_module("minio")
            self._http = urllib3.PoolManager(
                maxsize=cfg.max_concurrency,
                timeout=urllib3.Timeout(connect=cfg.timeout_s, read=cfg.timeout_s),
                retries=urllib3.Retry(
                    total=5, backoff_factor=0.2, status_forcelist=[500, 502, 503, 504]
                ),
            )
            client = minio.Minio(
                cfg.endpoint,
                access_key=cfg.access_key,
                secret_key=cfg.secret_key,
                secure=cfg.secure,
                region=cfg.region,
                http_client=self._http,
            )
        except Exception as ex:
            raise StorageError(f"Spaces client init failed: {ex}") from ex
        logger.info("Spaces client ready for bucket %s at %s", cfg.bucket_name, cfg.endpoint)
        return client

    # ===== Contract =====

    async def list_blobs(
        self, options: ListOptions | None = None
    ) -> Result[list[Blob], DomainError]:
        """List blobs in the bucket.

        Pages are pulled in chunks; between chunks the task may be cancelled,
        after which no further page is requested. A chunk already being
        fetched finishes in its thread, then the iterator is closed.

        Args:
            options: Prefix/recursion/limit filters (None = everything)

        Returns:
            Result with the blobs or StorageTransportError
        """
        if self._closed:
            return self._closed_failure("list")
        opts = options or ListOptions()
        kwargs: dict[str, Any] = {"prefix": opts.prefix, "recursive": opts.recurse}
        if opts.include_attributes:
            kwargs["include_user_meta"] = True

        blobs: list[Blob] = []
        objects: Iterator[Any] | None = None
        page: asyncio.Future[list[Any]] | None = None
        try:
            objects = self._client.list_objects(bucket_name=self._cfg.bucket_name, **kwargs)
            while not opts.is_full(len(blobs)):
                # Shielded so a cancelled caller leaves the worker thread to finish its page.
                page = asyncio.ensure_future(asyncio.to_thread(_take, objects, LIST_CHUNK_SIZE))
                chunk = await asyncio.shield(page)
                if not chunk:
                    break
                for obj in chunk:
                    blob = _to_blob(obj)
                    if opts.accepts(blob):
                        blobs.append(blob)
                        if opts.is_full(len(blobs)):
                            break
        except Exception as ex:
            return Result.failure(self._transport_error("list", opts.prefix, ex))
        finally:
            if objects is not None:
                if page is not None and not page.done():
                    page.add_done_callback(lambda done: _close_iterator(objects, done))
                else:
                    _close_iterator(objects)

        logger.debug("Listed %d blob(s) under prefix %r", len(blobs), opts.prefix)
        return Result.success(blobs)

    async def write(
        self, path: str, data: BinaryIO, append: bool = False
    ) -> Result[None, DomainError]:
        """Upload the whole stream to path with the default canned ACL.

        Args:
            path: Destination object key
            data: Readable binary stream, consumed in one pass
            append: Must be False; object stores only replace whole objects

        Returns:
            Result with None, ValidationError, UnsupportedOperationError
            or StorageTransportError
        """
        if self._closed:
            return self._closed_failure("write")
        key = normalize_path(path)
        if not key:
            return Result.failure(ValidationError("blob path must not be empty"))
        if append:
            return Result.failure(
                UnsupportedOperationError("append write", "objects can only be replaced whole")
            )

        content_type = mimetypes.guess_type(key)[0] or DEFAULT_CONTENT_TYPE
        try:
            await asyncio.to_thread(
                self._client.put_object,
                bucket_name=self._cfg.bucket_name,
                object_name=key,
                data=data,
                length=-1,
                content_type=content_type,
                metadata={"x-amz-acl": self._cfg.default_acl},
                part_size=self._cfg.part_size,
            )
        except Exception as ex:
            return Result.failure(self._transport_error("write", key, ex))

        logger.debug("Wrote %s (%s, acl=%s)", key, content_type, self._cfg.default_acl)
        return Result.success(None)

    async def open_read(self, path: str) -> Result[BinaryIO, DomainError]:
        """Open a streaming read of path; the caller must close the stream.

        Returns:
            Result with a readable stream, BlobNotFoundError or StorageTransportError
        """
        if self._closed:
            return self._closed_failure("open_read")
        key = normalize_path(path)
        if not key:
            return Result.failure(ValidationError("blob path must not be empty"))

        try:
            response = await asyncio.to_thread(
                self._client.get_object, bucket_name=self._cfg.bucket_name, object_name=key
            )
        except Exception as ex:
            if _is_not_found(ex):
                return Result.failure(self._not_found(key, ex))
            return Result.failure(self._transport_error("open_read", key, ex))

        logger.debug("Opened %s for reading", key)
        return Result.success(cast(BinaryIO, BlobReadStream(response)))

    async def delete(self, paths: Sequence[str]) -> Result[None, DomainError]:
        """Delete every path (duplicates once); absent objects count as deleted.

        Returns:
            Result with None, or BatchPartialFailure naming the failed paths
        """
        if self._closed:
            return self._closed_failure("delete")
        r_keys = self._keys(paths)
        if not r_keys.ok:
            assert r_keys.error is not None
            return Result.failure(r_keys.error)
        assert r_keys.value is not None
        keys = list(dict.fromkeys(r_keys.value))

        async def remove(key: str) -> Result[None, DomainError]:
            try:
                await asyncio.to_thread(
                    self._client.remove_object, bucket_name=self._cfg.bucket_name, object_name=key
                )
            except Exception as ex:
                if _is_not_found(ex):
                    return Result.success(None)
                return Result.failure(self._transport_error("delete", key, ex))
            return Result.success(None)

        results = await self._fan_out(keys, remove)
        r_batch = self._collect("delete", keys, results)
        if not r_batch.ok:
            assert r_batch.error is not None
            return Result.failure(r_batch.error)

        logger.debug("Deleted %d blob(s)", len(keys))
        return Result.success(None)

    async def exists(self, paths: Sequence[str]) -> Result[list[bool], DomainError]:
        """Check each path with a head request.

        Returns:
            Result with flags aligned to paths, or BatchPartialFailure if any
            head request failed for a reason other than "not found"
        """
        if self._closed:
            return self._closed_failure("exists")
        r_keys = self._keys(paths)
        if not r_keys.ok:
            assert r_keys.error is not None
            return Result.failure(r_keys.error)
        assert r_keys.value is not None
        keys = r_keys.value
        if not keys:
            return Result.success([])
        r_bucket = await self._check_bucket("exists")
        if not r_bucket.ok:
            assert r_bucket.error is not None
            return Result.failure(r_bucket.error)

        async def check(key: str) -> Result[bool, DomainError]:
            try:
                await asyncio.to_thread(
                    self._client.stat_object, bucket_name=self._cfg.bucket_name, object_name=key
                )
            except Exception as ex:
                if _is_not_found(ex):
                    return Result.success(False)
                return Result.failure(self._transport_error("exists", key, ex))
            return Result.success(True)

        results = await self._fan_out(keys, check)
        return self._collect("exists", keys, results)

    async def get_blobs(self, paths: Sequence[str]) -> Result[list[Blob], DomainError]:
        """Identity-only blob records; nothing is fetched or verified.

        Use stat() for records carrying real metadata.
        """
        if self._closed:
            return self._closed_failure("get_blobs")
        r_keys = self._keys(paths)
        if not r_keys.ok:
            assert r_keys.error is not None
            return Result.failure(r_keys.error)
        assert r_keys.value is not None
        return Result.success([Blob(full_path=key) for key in r_keys.value])

    async def stat(self, path: str) -> Result[Blob, DomainError]:
        """Fetch size, timestamps, etag, content type and user metadata of path."""
        if self._closed:
            return self._closed_failure("stat")
        key = normalize_path(path)
        if not key:
            return Result.failure(ValidationError("blob path must not be empty"))
        r_bucket = await self._check_bucket("stat")
        if not r_bucket.ok:
            assert r_bucket.error is not None
            return Result.failure(r_bucket.error)
        return await self._head("stat", key)

    async def set_blobs(self, blobs: Iterable[Blob]) -> Result[None, DomainError]:
        """Replace each blob's stored metadata by copying the object onto itself.

        The blob's metadata fully replaces what is stored (no merge) and the
        default canned ACL is re-applied. A REPLACE copy also resets the
        content type, so a blob without one gets the stored value re-sent.

        Returns:
            Result with None, or BatchPartialFailure naming the failed paths
        """
        if self._closed:
            return self._closed_failure("set_blobs")
        items = list(blobs)
        if not items:
            return Result.success(None)
        try:
            commonconfig = import_module("minio.commonconfig")
        except Exception as ex:
            return Result.failure(self._transport_error("set_blobs", None, ex))
        r_bucket = await self._check_bucket("set_blobs")
        if not r_bucket.ok:
            assert r_bucket.error is not None
            return Result.failure(r_bucket.error)

        async def replace(blob: Blob) -> Result[None, DomainError]:
            content_type = blob.content_type
            if not content_type:
                r_head = await self._head("set_blobs", blob.full_path)
                if not r_head.ok:
                    assert r_head.error is not None
                    return Result.failure(r_head.error)
                assert r_head.value is not None
                content_type = r_head.value.content_type
            metadata = {f"x-amz-meta-{k}": str(v) for k, v in blob.metadata.items()}
            metadata["x-amz-acl"] = self._cfg.default_acl
            if content_type:
                metadata["Content-Type"] = content_type
            try:
                await asyncio.to_thread(
                    self._client.copy_object,
                    bucket_name=self._cfg.bucket_name,
                    object_name=blob.full_path,
                    source=commonconfig.CopySource(self._cfg.bucket_name, blob.full_path),
                    metadata=metadata,
                    metadata_directive=commonconfig.REPLACE,
                )
            except Exception as ex:
                if _is_not_found(ex):
                    return Result.failure(self._not_found(blob.full_path, ex))
                return Result.failure(self._transport_error("set_blobs", blob.full_path, ex))
            return Result.success(None)

        results = await self._fan_out(items, replace)
        r_batch = self._collect("set_blobs", [b.full_path for b in items], results)
        if not r_batch.ok:
            assert r_batch.error is not None
            return Result.failure(r_batch.error)

        logger.debug("Replaced metadata of %d blob(s)", len(items))
        return Result.success(None)

    async def open_transaction(self) -> Result[BlobTransactionPort | None, DomainError]:
        """Spaces has no multi-object transactions: always None, never a failure."""
        return Result.success(None)

    async def close(self) -> None:
        """Release the HTTP connection pool. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._http is not None:
            self._http.clear()
        logger.info("Spaces client for bucket %s closed", self._cfg.bucket_name)

    async def __aenter__(self) -> SpacesBlobStorageAdapter:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ===== Helpers =====

    async def _check_bucket(self, operation: str) -> Result[None, DomainError]:
        """Verify once that the bucket exists before relying on head results.

        Only a positive answer is cached, so a bucket created later is picked up.
        """
        if self._bucket_checked:
            return Result.success(None)
        bucket = self._cfg.bucket_name
        try:
            found = await asyncio.to_thread(self._client.bucket_exists, bucket_name=bucket)
        except Exception as ex:
            return Result.failure(self._transport_error(operation, None, ex))
        if not found:
            logger.warning("%s: bucket %s does not exist", operation, bucket)
            return Result.failure(BucketNotFoundError(bucket))
        self._bucket_checked = True
        return Result.success(None)

    async def _head(self, operation: str, key: str) -> Result[Blob, DomainError]:
        try:
            obj = await asyncio.to_thread(
                self._client.stat_object, bucket_name=self._cfg.bucket_name, object_name=key
            )
        except Exception as ex:
            if _is_not_found(ex):
                return Result.failure(self._not_found(key, ex))
            return Result.failure(self._transport_error(operation, key, ex))
        return Result.success(_to_blob(obj, path=key))

    async def _fan_out(
        self, items: Sequence[T], worker: Callable[[T], Awaitable[Result[Any, DomainError]]]
    ) -> list[Result[Any, DomainError]]:
        """Run worker for every item, at most max_concurrency at a time.

        Workers return failures as values, so one failing item never stops
        the others. Cancelling the caller cancels all pending workers.
        """
        semaphore = asyncio.Semaphore(self._cfg.max_concurrency)

        async def run(item: T) -> Result[Any, DomainError]:
            async with semaphore:
                return await worker(item)

        return list(await asyncio.gather(*(run(item) for item in items)))

    def _collect(
        self,
        operation: str,
        items: Sequence[str],
        results: Sequence[Result[Any, DomainError]],
    ) -> Result[list[Any], DomainError]:
        failures = tuple(
            BatchItemFailure(item=item, error=r.error)
            for item, r in zip(items, results)
            if not r.ok and r.error is not None
        )
        if failures:
            logger.warning(
                "%s: %d of %d item(s) failed", operation, len(failures), len(results)
            )
            return Result.failure(BatchPartialFailure(operation=operation, failures=failures))
        return Result.success([r.value for r in results])

    @staticmethod
    def _keys(paths: Sequence[str]) -> Result[list[str], DomainError]:
        keys = [normalize_path(p) for p in paths]
        if any(not k for k in keys):
            return Result.failure(ValidationError("blob path must not be empty"))
        return Result.success(keys)

    def _closed_failure(self, operation: str) -> Result[Any, DomainError]:
        return Result.failure(
            StorageClosedError(f"{operation} on closed adapter for bucket {self._cfg.bucket_name}")
        )

    @staticmethod
    def _not_found(path: str, ex: BaseException) -> BlobNotFoundError:
        err = BlobNotFoundError(path)
        err.__cause__ = ex
        return err

    @staticmethod
    def _transport_error(
        operation: str, path: str | None, ex: BaseException
    ) -> StorageTransportError:
        logger.debug("%s %s failed: %s", operation, path or "", ex)
        return StorageTransportError(operation=operation, path=path, cause=ex)
