"""Domain errors (typed) for blob storage.

Why: One error family for callers of the blob contract, so that no
     client library exception type leaks past the adapter.
"""

from dataclasses import dataclass, field


class DomainError(Exception):
    """Base class for domain-specific errors."""


class ValidationError(DomainError):
    """Invalid input/domain state."""


class StorageError(DomainError):
    """Blob storage operation failed."""


@dataclass(eq=False)
class BlobNotFoundError(StorageError):
    """Requested blob does not exist in the bucket."""

    path: str

    def __str__(self) -> str:
        return f"blob not found: {self.path}"


@dataclass(eq=False)
class BucketNotFoundError(StorageError):
    """Configured bucket does not exist; a setup problem, never "blob absent"."""

    bucket: str

    def __str__(self) -> str:
        return f"bucket not found: {self.bucket}"


@dataclass(eq=False)
class UnsupportedOperationError(StorageError):
    """Backend cannot provide the requested capability."""

    operation: str
    detail: str = ""

    def __str__(self) -> str:
        msg = f"{self.operation} is not supported by this backend"
        return f"{msg}: {self.detail}" if self.detail else msg


@dataclass(eq=False)
class StorageTransportError(StorageError):
    """Object store client failed (network, auth, quota, permission).

    The client exception is kept unchanged in ``cause`` and chained as
    ``__cause__``.
    """

    operation: str
    path: str | None
    cause: BaseException

    def __post_init__(self) -> None:
        self.__cause__ = self.cause

    @property
    def code(self) -> str | None:
        """S3 error code of the underlying failure, if the client set one."""
        return getattr(self.cause, "code", None)

    def __str__(self) -> str:
        target = f" {self.path}" if self.path else ""
        return f"{self.operation}{target} failed: {self.cause}"


@dataclass(frozen=True)
class BatchItemFailure:
    """One failed item of a batch operation."""

    item: str
    error: DomainError


@dataclass(eq=False)
class BatchPartialFailure(StorageError):
    """One or more items of a batch failed; all items were attempted."""

    operation: str
    failures: tuple[BatchItemFailure, ...] = field(default_factory=tuple)

    @property
    def failed_items(self) -> list[str]:
        return [f.item for f in self.failures]

    def __str__(self) -> str:
        return f"{self.operation}: {len(self.failures)} item(s) failed: {', '.join(self.failed_items)}"


class StorageClosedError(StorageError):
    """Operation issued on an adapter that was already closed."""
