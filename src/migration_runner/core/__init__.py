"""
Core package: run state, pacing and event reporting of a migration.
The phase state machine itself lives in :mod:`.orchestrator`.
"""

from .errors import (
    MigrationAlreadyRunningError,
    MigrationDeniedError,
    MigrationError,
    MigrationStartError,
    RemoteRequestError,
)
from .events import EventBus, EventChannel, ProgressEvent
from .session import Entity, EntityGroup, MigrationProfile, MigrationSession, MigrationStatus
from .throttle import AdaptiveThrottle

__all__ = [
    "AdaptiveThrottle",
    "Entity",
    "EntityGroup",
    "EventBus",
    "EventChannel",
    "MigrationAlreadyRunningError",
    "MigrationDeniedError",
    "MigrationError",
    "MigrationProfile",
    "MigrationSession",
    "MigrationStartError",
    "MigrationStatus",
    "ProgressEvent",
    "RemoteRequestError",
]
