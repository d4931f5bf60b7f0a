"""
Broadcast transports used by the cross-context coordinator.

A channel delivers every message it sends to all *other* channels attached to
the same medium, never to itself. Delivery is asynchronous where an event
loop is running.
"""

import asyncio
import json
import logging
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class BroadcastMessage(str, Enum):
    MIGRATION_WANTED = "migrationWanted"
    MIGRATION_DENIED = "migrationDenied"
    INITIALIZED = "initialized"


Receiver = Callable[[BroadcastMessage], None]


class BroadcastChannel:
    """Base class: keeps the receiver and hands incoming messages to it."""

    def __init__(self) -> None:
        self._receiver: Optional[Receiver] = None

    def set_receiver(self, receiver: Optional[Receiver]) -> None:
        self._receiver = receiver

    def send(self, message: BroadcastMessage) -> None:
        raise NotImplementedError

    def close(self) -> None:
        self._receiver = None

    def _deliver(self, message: BroadcastMessage) -> None:
        if self._receiver is not None:
            self._receiver(message)


# -------------------------------------------------------------------------
# In-process hub
# -------------------------------------------------------------------------

class BroadcastHub:
    """Connects several channels living in the same process."""

    def __init__(self) -> None:
        self._channels: List["HubChannel"] = []

    def channel(self) -> "HubChannel":
        ch = HubChannel(self)
        self._channels.append(ch)
        return ch

    def _detach(self, channel: "HubChannel") -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    def _publish(self, sender: "HubChannel", message: BroadcastMessage) -> None:
        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        for peer in list(self._channels):
            if peer is sender:
                continue
            if loop is not None:
                loop.call_soon(peer._deliver, message)
            else:
                peer._deliver(message)


class HubChannel(BroadcastChannel):
    def __init__(self, hub: BroadcastHub) -> None:
        super().__init__()
        self._hub = hub

    def send(self, message: BroadcastMessage) -> None:
        self._hub._publish(self, BroadcastMessage(message))

    def close(self) -> None:
        super().close()
        self._hub._detach(self)


# -------------------------------------------------------------------------
# Spool file (cross-process)
# -------------------------------------------------------------------------

class SpoolFileChannel(BroadcastChannel):
    """
    Broadcast over a shared JSON-lines file.

    Every process appends its messages to the file and polls it for lines
    written by other senders. Only lines appended after the channel was
    opened are seen.
    """

    def __init__(self, path: Path, poll_interval_ms: float = 20.0) -> None:
        super().__init__()
        self.path = Path(path)
        self.poll_interval = poll_interval_ms / 1000.0
        self.sender_id = uuid.uuid4().hex
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)
        self._offset = self.path.stat().st_size
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Start polling; requires a running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._poll_forever())

    def send(self, message: BroadcastMessage) -> None:
        record = {
            "sender": self.sender_id,
            "message": BroadcastMessage(message).value,
            "sent_at": time.time(),
        }
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record))
            f.write("\n")

    def close(self) -> None:
        super().close()
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def poll(self) -> int:
        """Read lines appended since the last poll and deliver foreign ones."""
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            self._offset = 0
            return 0
        if size < self._offset:
            # truncated by someone else
            self._offset = 0
        if size == self._offset:
            return 0

        with self.path.open("rb") as f:
            f.seek(self._offset)
            chunk = f.read(size - self._offset)

        # keep a partially written last line for the next poll
        end = chunk.rfind(b"\n")
        if end < 0:
            return 0
        self._offset += end + 1

        delivered = 0
        for raw in chunk[:end].splitlines():
            raw = raw.strip()
            if not raw:
                continue
            try:
                record = json.loads(raw)
                message = BroadcastMessage(record["message"])
            except (ValueError, KeyError, TypeError):
                logger.debug("Ignoring malformed broadcast line: %r", raw)
                continue
            if record.get("sender") == self.sender_id:
                continue
            self._deliver(message)
            delivered += 1
        return delivered

    async def _poll_forever(self) -> None:
        failing = False
        while True:
            try:
                self.poll()
                failing = False
            except OSError as exc:
                # warn once per outage, keep polling
                if not failing:
                    logger.warning("Cannot read broadcast spool %s: %s", self.path, exc)
                failing = True
            await asyncio.sleep(self.poll_interval)
