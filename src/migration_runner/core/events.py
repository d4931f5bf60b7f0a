from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

Callback = Callable[[Any], None]


class EventChannel(str, Enum):
    STATUS = "status"
    PROGRESS = "progress"
    ENTITY_COUNT = "entity_count"


@dataclass(frozen=True)
class ProgressEvent:
    entity_name: str
    entity_group_progress_value: int
    entity_count: int


class EventBus:
    """
    Single-slot subscriber registry.

    Every channel holds at most one callback. Subscribing replaces whatever
    was registered before, and emitting calls the callback synchronously.
    """

    def __init__(self) -> None:
        self._slots: Dict[EventChannel, Optional[Callback]] = {c: None for c in EventChannel}

    def subscribe(self, channel: EventChannel, callback: Optional[Callback]) -> None:
        self._slots[EventChannel(channel)] = callback

    def unsubscribe(self, channel: EventChannel) -> None:
        self._slots[EventChannel(channel)] = None

    def subscriber(self, channel: EventChannel) -> Optional[Callback]:
        return self._slots[EventChannel(channel)]

    def emit(self, channel: EventChannel, payload: Any) -> None:
        callback = self._slots[EventChannel(channel)]
        if callback is not None:
            callback(payload)
