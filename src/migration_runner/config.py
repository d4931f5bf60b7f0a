"""
Tunables for a migration run. Defaults match what the remote side was sized for.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ThrottleConfig:
    """Parameters of one additive increase / additive decrease controller."""
    default: int
    increment: int
    ceiling_ms: float = 10_000.0
    floor: Optional[int] = None
    maximum: Optional[int] = None

    @property
    def effective_floor(self) -> int:
        return self.increment if self.floor is None else self.floor


def _page_size() -> ThrottleConfig:
    return ThrottleConfig(default=50, increment=5)


def _chunk_bytes() -> ThrottleConfig:
    return ThrottleConfig(default=8_000_000, increment=250_000)


@dataclass
class AssetConfig:
    """Configuration for the asset download phase."""
    workload_count: int = 5
    uuid_chunk: int = 100
    error_threshold: int = 3
    chunk_bytes: ThrottleConfig = field(default_factory=_chunk_bytes)
    # None keeps retrying a workload whose request fails outright
    max_transport_failures: Optional[int] = None
    # pause before resending a workload whose request failed outright
    retry_delay_ms: float = 1_000.0


@dataclass
class CoordinatorConfig:
    """Configuration for the cross-context exclusion handshake."""
    wait_window_ms: float = 100.0
    poll_interval_ms: float = 20.0


@dataclass
class MigrationSettings:
    """Main configuration of a migration run."""
    page_size: ThrottleConfig = field(default_factory=_page_size)
    assets: AssetConfig = field(default_factory=AssetConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    request_timeout: float = 60.0
