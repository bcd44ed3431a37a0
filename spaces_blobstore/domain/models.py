# spaces_blobstore/domain/models.py
# Domain models must be pure (no I/O, no external libs)
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

PATH_SEPARATOR = "/"


def normalize_path(path: str) -> str:
    """Strip leading/trailing separators so "/a/b/" and "a/b" address the same key."""
    return path.strip().strip(PATH_SEPARATOR)


class BlobKind(str, Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class Blob:
    """
    Immutable domain entity for an addressable object in the bucket.

    - full_path:      object key, the blob's identity (no leading "/")
    - kind:           file, or folder for common prefixes of non-recursive listings
    - size:           content length in bytes (None if the store did not report it)
    - last_modified:  last modification time reported by the store
    - md5:            content hash / etag as reported by the store
    - content_type:   MIME type of the object
    - metadata:       custom user metadata (x-amz-meta-* without the prefix)

    Records built from caller paths carry identity only; every other field is
    populated only when the store returned it.
    """

    full_path: str
    kind: BlobKind = BlobKind.FILE
    size: int | None = None
    last_modified: datetime | None = None
    md5: str | None = None
    content_type: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        path = normalize_path(self.full_path)
        if not path:
            raise ValueError("blob path must not be empty")
        object.__setattr__(self, "full_path", path)

    @property
    def name(self) -> str:
        return self.full_path.rsplit(PATH_SEPARATOR, 1)[-1]

    @property
    def folder_path(self) -> str:
        if PATH_SEPARATOR not in self.full_path:
            return ""
        return self.full_path.rsplit(PATH_SEPARATOR, 1)[0]

    @property
    def is_folder(self) -> bool:
        return self.kind is BlobKind.FOLDER

    def with_metadata(self, metadata: Mapping[str, str]) -> Blob:
        """Copy of this blob carrying ``metadata`` (used before set_blobs)."""
        return Blob(
            full_path=self.full_path,
            kind=self.kind,
            size=self.size,
            last_modified=self.last_modified,
            md5=self.md5,
            content_type=self.content_type,
            metadata=dict(metadata),
        )


@dataclass(frozen=True)
class ListOptions:
    """Enumeration filters for list_blobs(); the defaults mean "everything".

    - folder_path:         only blobs below this folder
    - file_prefix:         only blobs whose name (inside folder_path) starts with this
    - recurse:             descend into sub-folders; False yields FOLDER entries instead
    - max_results:         stop after this many blobs (None = no cap)
    - include_attributes:  ask the store for user metadata while listing
    - browse_filter:       client-side predicate, applied before max_results
    """

    folder_path: str | None = None
    file_prefix: str | None = None
    recurse: bool = True
    max_results: int | None = None
    include_attributes: bool = False
    browse_filter: Callable[[Blob], bool] | None = None

    def __post_init__(self) -> None:
        if self.max_results is not None and self.max_results < 0:
            raise ValueError("max_results must be >= 0")

    @property
    def prefix(self) -> str | None:
        """Object key prefix sent to the store."""
        folder = normalize_path(self.folder_path or "")
        file_prefix = (self.file_prefix or "").lstrip(PATH_SEPARATOR)
        if folder:
            return f"{folder}{PATH_SEPARATOR}{file_prefix}"
        return file_prefix or None

    def accepts(self, blob: Blob) -> bool:
        return self.browse_filter is None or bool(self.browse_filter(blob))

    def is_full(self, count: int) -> bool:
        return self.max_results is not None and count >= self.max_results


def user_metadata(raw: Mapping[str, Any] | None) -> dict[str, str]:
    """Extract user metadata from store headers/metadata mappings.

    Keys are lower-cased and the x-amz-meta- prefix is removed; everything
    else (content-type, etag, ...) is not user metadata and is dropped.
    """
    if not raw:
        return {}
    prefix = "x-amz-meta-"
    return {
        key[len(prefix):]: str(value)
        for key, value in ((str(k).lower(), v) for k, v in raw.items())
        if key.startswith(prefix)
    }
