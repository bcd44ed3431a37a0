"""Shared fakes: an in-memory stand-in for the minio and urllib3 modules.

The fakes are installed into sys.modules so the adapter's lazy imports pick
them up; no network and no real minio install are needed.
"""

import io
import sys
import threading
import time
import types
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pytest


class FakeS3Error(Exception):
    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code


@dataclass
class FakeObject:
    object_name: str
    size: int | None = None
    last_modified: datetime | None = None
    etag: str | None = None
    content_type: str | None = None
    metadata: dict[str, str] | None = None
    is_dir: bool = False


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    metadata: dict[str, str] = field(default_factory=dict)
    acl: str | None = None
    last_modified: datetime = field(default_factory=lambda: datetime(2025, 1, 1, tzinfo=UTC))


class FakeResponse:
    def __init__(self, data: bytes) -> None:
        self._buf = io.BytesIO(data)
        self.closed = False
        self.released = False

    def read(self, amt: int | None = None) -> bytes:
        return self._buf.read(amt)

    def close(self) -> None:
        self.closed = True

    def release_conn(self) -> None:
        self.released = True


class FakePoolManager:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.clear_count = 0

    def clear(self) -> None:
        self.clear_count += 1


class FakeTimeout:
    def __init__(self, connect: float | None = None, read: float | None = None) -> None:
        self.connect = connect
        self.read = read


class FakeRetry:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs


@dataclass(frozen=True)
class FakeCopySource:
    bucket_name: str
    object_name: str


class FakeMinio:
    """In-memory S3 bucket speaking the subset of minio.Minio the adapter uses.

    - failures: {(op, key): exception} raised when that call is made
    - delays:   {key: seconds} slept inside stat_object (completion reordering)
    - gate:     threading.Event every stat_object waits on, if set
    - list_gate: threading.Event the list iterator waits on before its first page
    - bucket_present: False makes bucket_exists report a missing bucket
    """

    def __init__(self, endpoint: str, **kwargs: Any) -> None:
        self.endpoint = endpoint
        self.kwargs = kwargs
        self.objects: dict[str, StoredObject] = {}
        self.calls: list[tuple[str, str]] = []
        self.requests: list[dict[str, Any]] = []
        self.responses: list[FakeResponse] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.delays: dict[str, float] = {}
        self.gate: threading.Event | None = None
        self.list_gate: threading.Event | None = None
        self.list_entered = threading.Event()
        self.list_closed = False
        self.bucket_present = True
        self.bucket_checks = 0
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def seed(self, key: str, data: bytes = b"", content_type: str = "text/plain", **meta: str) -> None:
        self.objects[key] = StoredObject(data=data, content_type=content_type, metadata=dict(meta))

    def _record(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        failure = self.failures.get((op, key))
        if failure is not None:
            raise failure

    def list_objects(
        self,
        bucket_name: str,
        prefix: str | None = None,
        recursive: bool = False,
        include_user_meta: bool = False,
    ):
        self._record("list", prefix or "")
        self.requests.append(
            {"op": "list", "bucket": bucket_name, "include_user_meta": include_user_meta}
        )
        self.list_entered.set()
        if self.list_gate is not None:
            self.list_gate.wait(5)
        seen_dirs: set[str] = set()
        try:
            for key in sorted(self.objects):
                if prefix and not key.startswith(prefix):
                    continue
                rest = key[len(prefix or ""):]
                if not recursive and "/" in rest:
                    folder = (prefix or "") + rest.split("/", 1)[0] + "/"
                    if folder not in seen_dirs:
                        seen_dirs.add(folder)
                        yield FakeObject(object_name=folder, is_dir=True)
                    continue
                stored = self.objects[key]
                yield FakeObject(
                    object_name=key,
                    size=len(stored.data),
                    last_modified=stored.last_modified,
                    etag=f'"etag-{key}"',
                    content_type=stored.content_type,
                    metadata=(
                        {f"X-Amz-Meta-{k}": v for k, v in stored.metadata.items()}
                        if include_user_meta
                        else None
                    ),
                )
        finally:
            self.list_closed = True

    def bucket_exists(self, bucket_name: str) -> bool:
        self.bucket_checks += 1
        return self.bucket_present

    def put_object(
        self,
        bucket_name: str,
        object_name: str,
        data: Any,
        length: int,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
        part_size: int = 0,
    ) -> None:
        self._record("put", object_name)
        self.requests.append(
            {
                "op": "put",
                "bucket": bucket_name,
                "key": object_name,
                "length": length,
                "content_type": content_type,
                "metadata": metadata,
                "part_size": part_size,
            }
        )
        acl = (metadata or {}).get("x-amz-acl")
        self.objects[object_name] = StoredObject(
            data=data.read(), content_type=content_type, acl=acl
        )

    def get_object(self, bucket_name: str, object_name: str) -> FakeResponse:
        self._record("get", object_name)
        stored = self.objects.get(object_name)
        if stored is None:
            raise FakeS3Error("NoSuchKey", "Object does not exist")
        response = FakeResponse(stored.data)
        self.responses.append(response)
        return response

    def remove_object(self, bucket_name: str, object_name: str) -> None:
        self._record("remove", object_name)
        self.objects.pop(object_name, None)

    def stat_object(self, bucket_name: str, object_name: str) -> FakeObject:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self._record("stat", object_name)
            if self.gate is not None:
                self.gate.wait(5)
            time.sleep(self.delays.get(object_name, 0))
            stored = self.objects.get(object_name)
            if stored is None:
                raise FakeS3Error("NoSuchKey", "Object does not exist")
            headers = {f"X-Amz-Meta-{k}": v for k, v in stored.metadata.items()}
            headers["Content-Type"] = stored.content_type
            return FakeObject(
                object_name=object_name,
                size=len(stored.data),
                last_modified=stored.last_modified,
                etag=f"etag-{object_name}",
                content_type=stored.content_type,
                metadata=headers,
            )
        finally:
            with self._lock:
                self.active -= 1

    def copy_object(
        self,
        bucket_name: str,
        object_name: str,
        source: FakeCopySource,
        metadata: dict[str, str] | None = None,
        metadata_directive: str | None = None,
    ) -> None:
        self._record("copy", object_name)
        self.requests.append(
            {
                "op": "copy",
                "bucket": bucket_name,
                "key": object_name,
                "source": source,
                "metadata": metadata,
                "metadata_directive": metadata_directive,
            }
        )
        stored = self.objects.get(source.object_name)
        if stored is None:
            raise FakeS3Error("NoSuchKey", "Object does not exist")
        metadata = metadata or {}
        prefix = "x-amz-meta-"
        self.objects[object_name] = StoredObject(
            data=stored.data,
            content_type=metadata.get("Content-Type", "binary/octet-stream"),
            metadata={k[len(prefix):]: v for k, v in metadata.items() if k.startswith(prefix)},
            acl=metadata.get("x-amz-acl"),
        )


@pytest.fixture
def fake_minio(monkeypatch: pytest.MonkeyPatch) -> types.ModuleType:
    """Install fake minio, minio.commonconfig and urllib3 modules."""
    minio = types.ModuleType("minio")
    minio.Minio = FakeMinio  # type: ignore[attr-defined]

    commonconfig = types.ModuleType("minio.commonconfig")
    commonconfig.CopySource = FakeCopySource  # type: ignore[attr-defined]
    commonconfig.REPLACE = "REPLACE"  # type: ignore[attr-defined]

    urllib3 = types.ModuleType("urllib3")
    urllib3.PoolManager = FakePoolManager  # type: ignore[attr-defined]
    urllib3.Timeout = FakeTimeout  # type: ignore[attr-defined]
    urllib3.Retry = FakeRetry  # type: ignore[attr-defined]

    monkeypatch.setitem(sys.modules, "minio", minio)
    monkeypatch.setitem(sys.modules, "minio.commonconfig", commonconfig)
    monkeypatch.setitem(sys.modules, "urllib3", urllib3)
    return minio
