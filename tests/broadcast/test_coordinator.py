# tests/broadcast/test_coordinator.py
from __future__ import annotations

import asyncio

from migration_runner.broadcast.channel import BroadcastHub, BroadcastMessage, SpoolFileChannel
from migration_runner.broadcast.coordinator import TabCoordinator
from migration_runner.config import CoordinatorConfig

FAST = CoordinatorConfig(wait_window_ms=20, poll_interval_ms=5)


def test_permission_granted_without_peers():
    async def scenario():
        hub = BroadcastHub()
        me = TabCoordinator(hub.channel(), FAST)
        return await me.request_permission()

    assert asyncio.run(scenario()) is True


def test_permission_granted_when_peer_is_idle():
    async def scenario():
        hub = BroadcastHub()
        TabCoordinator(hub.channel(), FAST)
        me = TabCoordinator(hub.channel(), FAST)
        return await me.request_permission()

    assert asyncio.run(scenario()) is True


def test_denied_while_peer_is_migrating():
    async def scenario():
        hub = BroadcastHub()
        busy = TabCoordinator(hub.channel(), FAST)
        me = TabCoordinator(hub.channel(), FAST)
        busy.announce_start()
        denied = await me.request_permission()
        still_busy = busy.is_migrating
        busy.announce_stop()
        granted = await me.request_permission()
        return denied, still_busy, granted

    denied, still_busy, granted = asyncio.run(scenario())
    assert denied is False
    assert still_busy is True
    assert granted is True


def test_requester_does_not_deny_itself():
    async def scenario():
        hub = BroadcastHub()
        me = TabCoordinator(hub.channel(), FAST)
        me.announce_start()
        return await me.request_permission()

    assert asyncio.run(scenario()) is True


def test_simultaneous_first_requests_are_both_granted():
    # known limitation of the handshake: nobody is migrating yet, so nobody denies
    async def scenario():
        hub = BroadcastHub()
        a = TabCoordinator(hub.channel(), FAST)
        b = TabCoordinator(hub.channel(), FAST)
        return await asyncio.gather(a.request_permission(), b.request_permission())

    assert asyncio.run(scenario()) == [True, True]


def test_denial_over_spool_file(tmp_path):
    spool = tmp_path / "broadcast.jsonl"
    config = CoordinatorConfig(wait_window_ms=300, poll_interval_ms=5)

    async def scenario():
        busy_channel = SpoolFileChannel(spool, config.poll_interval_ms)
        my_channel = SpoolFileChannel(spool, config.poll_interval_ms)
        busy_channel.start()
        my_channel.start()
        busy = TabCoordinator(busy_channel, config)
        me = TabCoordinator(my_channel, config)
        try:
            busy.announce_start()
            return await me.request_permission()
        finally:
            busy.close()
            me.close()

    assert asyncio.run(scenario()) is False


def test_spool_channel_skips_own_and_partial_lines(tmp_path):
    spool = tmp_path / "broadcast.jsonl"
    a = SpoolFileChannel(spool)
    b = SpoolFileChannel(spool)
    got_a, got_b = [], []
    a.set_receiver(got_a.append)
    b.set_receiver(got_b.append)

    a.send(BroadcastMessage.MIGRATION_WANTED)
    with spool.open("a", encoding="utf-8") as f:
        f.write('{"sender": "other", "message": "migrationDen')

    assert b.poll() == 1
    assert a.poll() == 0
    assert got_b == [BroadcastMessage.MIGRATION_WANTED]
    assert got_a == []

    with spool.open("a", encoding="utf-8") as f:
        f.write('ied"}\n')
    assert a.poll() == 1
    assert got_a == [BroadcastMessage.MIGRATION_DENIED]


def test_spool_channel_ignores_history(tmp_path):
    spool = tmp_path / "broadcast.jsonl"
    old = SpoolFileChannel(spool)
    old.send(BroadcastMessage.MIGRATION_DENIED)

    late = SpoolFileChannel(spool)
    seen = []
    late.set_receiver(seen.append)
    assert late.poll() == 0
    assert seen == []


def test_spool_polling_survives_unreadable_file(tmp_path):
    spool = tmp_path / "broadcast.jsonl"

    async def scenario():
        channel = SpoolFileChannel(spool, poll_interval_ms=5)
        seen = []
        channel.set_receiver(seen.append)
        real_poll = channel.poll
        failures = [PermissionError("spool not readable")] * 2

        def flaky_poll():
            if failures:
                raise failures.pop()
            return real_poll()

        channel.poll = flaky_poll
        channel.start()
        try:
            await asyncio.sleep(0.03)
            SpoolFileChannel(spool).send(BroadcastMessage.MIGRATION_WANTED)
            await asyncio.sleep(0.05)
            return failures, seen, channel._task.done()
        finally:
            channel.close()

    failures, seen, stopped = asyncio.run(scenario())
    assert failures == []
    assert seen == [BroadcastMessage.MIGRATION_WANTED]
    assert stopped is False
