"""Application ports package.

Re-exports the blob storage contract.
"""

from spaces_blobstore.application.ports.blob_storage_port import (
    BlobStoragePort,
    BlobTransactionPort,
)

__all__ = [
    "BlobStoragePort",
    "BlobTransactionPort",
]
