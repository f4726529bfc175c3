import asyncio

import pytest

from keyoverlay.events import ControlEventBus, put_dropping_oldest


def test_subscriber_receives_history_then_live_events():
    async def runner():
        bus = ControlEventBus()
        bus.publish("settings_changed", {"settings": {"fontSize": 20}})
        bus.publish("capture_state_changed", {"state": "running"})

        queue = await bus.subscribe()
        bus.publish("last_activity", {"label": "Q"})

        received = [await asyncio.wait_for(queue.get(), timeout=1) for _ in range(3)]
        assert [event["type"] for event in received] == [
            "settings_changed",
            "capture_state_changed",
            "last_activity",
        ]
        assert [event["seq"] for event in received] == [1, 2, 3]
        assert received[2]["id"] == "3"
        bus.unsubscribe(queue)
        assert bus.subscriber_count == 0

    asyncio.run(runner())


def test_last_event_id_skips_seen_history():
    async def runner():
        bus = ControlEventBus()
        for label in ("A", "B", "C"):
            bus.publish("last_activity", {"label": label})

        queue = await bus.subscribe(last_event_id="2")
        assert queue.qsize() == 1
        assert (await queue.get())["payload"] == {"label": "C"}

        stale = await bus.subscribe(last_event_id="bogus")
        assert stale.qsize() == 3

    asyncio.run(runner())


def test_slow_subscriber_drops_oldest():
    async def runner():
        bus = ControlEventBus(max_queue_size=2)
        queue = await bus.subscribe()
        for label in ("A", "B", "C"):
            bus.publish("last_activity", {"label": label})
        await asyncio.sleep(0)

        labels = []
        while not queue.empty():
            labels.append(queue.get_nowait()["payload"]["label"])
        assert labels == ["B", "C"]

    asyncio.run(runner())


def test_history_is_bounded_and_payloads_copied():
    bus = ControlEventBus(history_limit=2)
    payload = {"label": "A"}
    bus.publish("last_activity", payload)
    payload["label"] = "mutated"
    bus.publish("last_activity", {"label": "B"})
    bus.publish("last_activity", {"label": "C"})

    history = bus.history_snapshot()
    assert [event["payload"]["label"] for event in history] == ["B", "C"]
    assert bus.latest("last_activity")["payload"] == {"label": "C"}
    assert bus.latest("capture_error") is None


def test_unknown_event_type_is_rejected():
    bus = ControlEventBus()
    with pytest.raises(ValueError):
        bus.publish("keypress", {"combo": "Q"})


def test_publish_from_worker_thread_reaches_subscriber():
    async def runner():
        bus = ControlEventBus()
        queue = await bus.subscribe()

        await asyncio.to_thread(bus.publish, "permission_changed", {"permission": "granted"})

        event = await asyncio.wait_for(queue.get(), timeout=1)
        assert event["payload"] == {"permission": "granted"}

    asyncio.run(runner())


def test_put_dropping_oldest_on_full_queue():
    async def runner():
        queue = asyncio.Queue(maxsize=1)
        put_dropping_oldest(queue, {"seq": 1})
        put_dropping_oldest(queue, {"seq": 2})
        assert queue.qsize() == 1
        assert queue.get_nowait() == {"seq": 2}

    asyncio.run(runner())
