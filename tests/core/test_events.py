# tests/core/test_events.py
from __future__ import annotations

from migration_runner.core.events import EventBus, EventChannel, ProgressEvent


def test_emit_without_subscriber_is_noop():
    bus = EventBus()
    bus.emit(EventChannel.STATUS, {"status": 0})


def test_subscribe_replaces_previous_callback():
    bus = EventBus()
    first, second = [], []
    bus.subscribe(EventChannel.PROGRESS, first.append)
    bus.subscribe(EventChannel.PROGRESS, second.append)

    event = ProgressEvent("product", 10, 100)
    bus.emit(EventChannel.PROGRESS, event)

    assert first == []
    assert second == [event]


def test_channels_are_independent():
    bus = EventBus()
    status, counts = [], []
    bus.subscribe(EventChannel.STATUS, status.append)
    bus.subscribe(EventChannel.ENTITY_COUNT, counts.append)

    bus.emit(EventChannel.STATUS, {"status": 1})

    assert status == [{"status": 1}]
    assert counts == []


def test_unsubscribe_clears_slot():
    bus = EventBus()
    seen = []
    bus.subscribe("status", seen.append)
    assert bus.subscriber(EventChannel.STATUS) is not None
    bus.unsubscribe(EventChannel.STATUS)
    bus.emit(EventChannel.STATUS, {"status": 3})
    assert seen == []
    assert bus.subscriber(EventChannel.STATUS) is None
