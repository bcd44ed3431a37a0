"""Blob storage port: the backend-agnostic blob contract.

Why: Callers depend on one capability set; each backend (Spaces, S3, local
     disk, ...) is a separate adapter implementing it.
"""

from collections.abc import Iterable, Sequence
from typing import BinaryIO, Protocol, runtime_checkable

from spaces_blobstore.domain.errors import DomainError
from spaces_blobstore.domain.models import Blob, ListOptions
from spaces_blobstore.domain.types import Result


@runtime_checkable
class BlobTransactionPort(Protocol):
    """Batched/atomic unit of blob operations (optional capability)."""

    async def commit(self) -> Result[None, DomainError]: ...
    async def rollback(self) -> Result[None, DomainError]: ...


@runtime_checkable
class BlobStoragePort(Protocol):
    """Port for blob storage operations.

    All operations are coroutines; cancelling the awaiting task cancels
    every store call the operation still has outstanding.
    """

    async def list_blobs(
        self, options: ListOptions | None = None
    ) -> Result[list[Blob], DomainError]:
        """List blobs; None or ListOptions() means everything."""
        ...

    async def write(
        self, path: str, data: BinaryIO, append: bool = False
    ) -> Result[None, DomainError]:
        """Write the whole stream to path, replacing any existing blob."""
        ...

    async def open_read(self, path: str) -> Result[BinaryIO, DomainError]:
        """Open a readable stream; the caller closes it."""
        ...

    async def delete(self, paths: Sequence[str]) -> Result[None, DomainError]:
        """Delete every path; absent paths are not an error."""
        ...

    async def exists(self, paths: Sequence[str]) -> Result[list[bool], DomainError]:
        """Existence flags aligned with the order of paths."""
        ...

    async def get_blobs(self, paths: Sequence[str]) -> Result[list[Blob], DomainError]:
        """Blob records for paths, aligned with their order."""
        ...

    async def set_blobs(self, blobs: Iterable[Blob]) -> Result[None, DomainError]:
        """Replace the stored metadata of each blob."""
        ...

    async def open_transaction(self) -> Result[BlobTransactionPort | None, DomainError]:
        """Start a transaction; value None means the backend has none."""
        ...

    async def close(self) -> None:
        """Release client resources; idempotent."""
        ...
