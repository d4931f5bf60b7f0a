import asyncio
import logging
from typing import Optional, Protocol

from ..config import CoordinatorConfig
from .channel import BroadcastChannel, BroadcastMessage

logger = logging.getLogger(__name__)


class MigrationLock(Protocol):
    """What the orchestrator needs from an exclusion primitive."""

    async def request_permission(self) -> bool: ...

    def announce_start(self) -> None: ...

    def announce_stop(self) -> None: ...


class TabCoordinator:
    """
    Soft mutual exclusion between sibling contexts sharing a broadcast channel.

    A requester broadcasts ``migrationWanted`` and waits a short window. Every
    peer that is migrating answers with ``migrationDenied``, and each denial
    flips a local flag. If the flag differs from its value before the wait,
    somebody else is busy.

    Two contexts asking inside the same window before either has started can
    both be granted. This is a known limitation of the handshake.
    """

    def __init__(self, channel: BroadcastChannel,
                 config: Optional[CoordinatorConfig] = None) -> None:
        self.config = config or CoordinatorConfig()
        self._channel = channel
        self._response_flag = False
        self._migrating = False
        channel.set_receiver(self._on_broadcast_received)
        channel.send(BroadcastMessage.INITIALIZED)

    @property
    def is_migrating(self) -> bool:
        return self._migrating

    async def request_permission(self) -> bool:
        old_flag = self._response_flag
        self._channel.send(BroadcastMessage.MIGRATION_WANTED)
        await asyncio.sleep(self.config.wait_window_ms / 1000.0)
        if self._response_flag != old_flag:
            logger.info("Migration denied: another context is migrating")
            return False
        return True

    def announce_start(self) -> None:
        self._migrating = True

    def announce_stop(self) -> None:
        self._migrating = False

    def close(self) -> None:
        self._channel.close()

    def _on_broadcast_received(self, message: BroadcastMessage) -> None:
        if message == BroadcastMessage.MIGRATION_WANTED and self._migrating:
            logger.debug("Peer wants to migrate while we are running; denying")
            self._channel.send(BroadcastMessage.MIGRATION_DENIED)

        if message == BroadcastMessage.MIGRATION_DENIED:
            self._response_flag = not self._response_flag
