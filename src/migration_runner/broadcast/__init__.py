"""Cross-context exclusion over a broadcast channel."""

from .channel import BroadcastHub, BroadcastMessage, HubChannel, SpoolFileChannel
from .coordinator import MigrationLock, TabCoordinator

__all__ = [
    "BroadcastHub",
    "BroadcastMessage",
    "HubChannel",
    "MigrationLock",
    "SpoolFileChannel",
    "TabCoordinator",
]
