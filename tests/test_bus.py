"""Tests for cross-session broadcast and loop prevention."""
import asyncio

from payflow.sync.bus import BroadcastChannel, InProcessBus, MessageType


def test_sibling_receives_and_sender_ignores_own_messages():
    async def scenario():
        bus = InProcessBus()
        first = BroadcastChannel(bus, "payflow-sync", "session-a")
        second = BroadcastChannel(bus, "payflow-sync", "session-b")
        seen = {"a": [], "b": []}

        async def on_a(message):
            seen["a"].append(message)

        async def on_b(message):
            seen["b"].append(message)

        first.listen(on_a)
        second.listen(on_b)
        await first.post(MessageType.NEW_REQUEST, {"id": "PAY-1"})
        return seen

    seen = asyncio.run(scenario())

    assert seen["a"] == []
    assert len(seen["b"]) == 1
    assert seen["b"][0].type == MessageType.NEW_REQUEST
    assert seen["b"][0].sender_id == "session-a"
    assert seen["b"][0].payload == {"id": "PAY-1"}


def test_channels_are_isolated_by_name():
    async def scenario():
        bus = InProcessBus()
        received = []

        async def handler(message):
            received.append(message)

        BroadcastChannel(bus, "other", "session-b").listen(handler)
        await BroadcastChannel(bus, "payflow-sync", "session-a").post(MessageType.REFRESH)
        return received

    assert asyncio.run(scenario()) == []


def test_close_unsubscribes():
    async def scenario():
        bus = InProcessBus()
        listener = BroadcastChannel(bus, "payflow-sync", "session-b")
        received = []

        async def handler(message):
            received.append(message)

        listener.listen(handler)
        listener.close()
        await BroadcastChannel(bus, "payflow-sync", "session-a").post(MessageType.STATUS_UPDATE)
        return received

    assert asyncio.run(scenario()) == []


def test_failing_handler_does_not_block_others():
    async def scenario():
        bus = InProcessBus()
        received = []

        async def broken(message):
            raise RuntimeError("handler bug")

        async def healthy(message):
            received.append(message.type)

        BroadcastChannel(bus, "payflow-sync", "session-b").listen(broken)
        BroadcastChannel(bus, "payflow-sync", "session-c").listen(healthy)
        await BroadcastChannel(bus, "payflow-sync", "session-a").post(MessageType.REFRESH)
        return received

    assert asyncio.run(scenario()) == [MessageType.REFRESH]
