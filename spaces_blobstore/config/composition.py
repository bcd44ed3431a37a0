import logging

from spaces_blobstore.application.ports.blob_storage_port import BlobStoragePort
from spaces_blobstore.config.settings import StorageSettings
from spaces_blobstore.domain.errors import ValidationError
from spaces_blobstore.infrastructure.blobstores.spaces_adapter import (
    SpacesBlobStorageAdapter,
    SpacesConfig,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: StorageSettings) -> None:
    """Apply settings.log_level to the package logger.

    Handlers are only installed when the root logger has none, so an
    application's own logging setup always wins.
    """
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        raise ValidationError(f"unknown log level {settings.log_level!r}")
    if not logging.getLogger().handlers:
        logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("spaces_blobstore").setLevel(level)


def build_spaces_config(settings: StorageSettings) -> SpacesConfig:
    """Build the Spaces client configuration.

    Raises:
        ValidationError: If bucket, ACL, concurrency or part size are invalid
    """
    return SpacesConfig(
        access_key=settings.access_key,
        secret_key=settings.secret_key,
        bucket_name=settings.bucket,
        region=settings.region,
        default_acl=settings.default_acl,
        secure=settings.secure,
        max_concurrency=settings.max_concurrency,
        part_size=settings.part_size_mb * 1024 * 1024,
        timeout_s=settings.timeout_s,
    )


def build_blob_storage(settings: StorageSettings | None = None) -> BlobStoragePort:
    """Build the blob storage adapter; the caller owns closing it.

    Returns:
        SpacesBlobStorageAdapter for the configured bucket and region.
    """
    settings = settings or StorageSettings()
    configure_logging(settings)
    return SpacesBlobStorageAdapter(build_spaces_config(settings))
