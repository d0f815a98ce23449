"""VaultConfig — tunables for a DocVault instance."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class VaultConfig:
    """Configuration for a :class:`~docvault.DocVault`."""

    max_folder_depth: int = 64
    """Longest allowed ``parent_id`` chain; deeper chains are treated as corrupt."""

    version_retry_attempts: int = 3
    """Transactions tried for one version upload before a ``ConflictError``."""

    version_retry_backoff: float = 0.05
    """Base delay in seconds between version attempts, doubled each retry."""

    recent_activity_limit: int = 10
    """Default number of records returned by ``list_recent_activity``."""

    def __post_init__(self) -> None:
        if self.max_folder_depth < 1:
            raise ValueError(f"max_folder_depth must be positive, got {self.max_folder_depth}")
        if self.version_retry_attempts < 1:
            raise ValueError(
                f"version_retry_attempts must be positive, got {self.version_retry_attempts}"
            )
        if self.version_retry_backoff < 0:
            raise ValueError(
                f"version_retry_backoff must not be negative, got {self.version_retry_backoff}"
            )
