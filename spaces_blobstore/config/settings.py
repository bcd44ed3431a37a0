"""Storage settings with environment-driven configuration.

Why: Single place that reads the environment; everything else receives
     settings via composition.
"""

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class StorageSettings:
    """Storage settings loaded from environment variables.

    This is the ONLY place where environment variables are read.
    Credentials are excluded from repr so settings can be logged.
    """

    # ===== Credentials =====
    access_key: str = field(
        default_factory=lambda: os.getenv("SPACES_ACCESS_KEY", ""), repr=False
    )
    secret_key: str = field(
        default_factory=lambda: os.getenv("SPACES_SECRET_KEY", ""), repr=False
    )

    # ===== Container Identity =====
    bucket: str = field(default_factory=lambda: os.getenv("SPACES_BUCKET", ""))
    region: str = field(default_factory=lambda: os.getenv("SPACES_REGION", "ams3").lower())
    # Endpoint is derived: <region>.digitaloceanspaces.com

    default_acl: str = field(
        default_factory=lambda: os.getenv("SPACES_DEFAULT_ACL", "private").lower()
    )
    # Supported: "private" | "public-read"

    secure: bool = field(
        default_factory=lambda: os.getenv("SPACES_SECURE", "true").lower() == "true"
    )

    # ===== Transfer Tuning =====
    max_concurrency: int = field(
        default_factory=lambda: int(os.getenv("SPACES_MAX_CONCURRENCY", "16"))
    )
    # Upper bound of parallel requests per batch operation (exists/delete/set_blobs)

    part_size_mb: int = field(default_factory=lambda: int(os.getenv("SPACES_PART_SIZE_MB", "10")))
    # Multipart chunk size for streaming uploads; S3 minimum is 5

    timeout_s: int = field(default_factory=lambda: int(os.getenv("SPACES_TIMEOUT_S", "300")))

    # ===== Logging =====
    log_level: str = field(default_factory=lambda: os.getenv("SPACES_LOG_LEVEL", "INFO").upper())
