"""
Client-side runner for paged shop migrations.

The runner paces fetch and write batches against the migration API, downloads
assets in bounded workloads and keeps sibling processes from running the same
migration at once.
"""

from .config import AssetConfig, CoordinatorConfig, MigrationSettings, ThrottleConfig
from .core.orchestrator import MigrationOrchestrator

__all__ = [
    "AssetConfig",
    "CoordinatorConfig",
    "MigrationOrchestrator",
    "MigrationSettings",
    "ThrottleConfig",
]
