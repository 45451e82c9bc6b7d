"""Tests for the change-event fan-out."""

import asyncio

from conftest import drain
from abacus.events import DrawUpdated, EventBus, ParticipantsUpdate, ResultsUpdated


def test_every_subscriber_receives_each_event() -> None:
    bus = EventBus(capacity=10)
    first, second = bus.subscribe(), bus.subscribe()
    event = DrawUpdated(tournament_id="t1", round_id="r1")

    bus.publish(event)

    assert drain(first) == [event]
    assert drain(second) == [event]


def test_subscription_filters_by_tournament() -> None:
    bus = EventBus(capacity=10)
    scoped = bus.subscribe("t1")

    bus.publish(ParticipantsUpdate(tournament_id="t2"))
    bus.publish(ParticipantsUpdate(tournament_id="t1"))

    assert drain(scoped) == [ParticipantsUpdate(tournament_id="t1")]


def test_full_queue_drops_events_without_failing_the_publisher() -> None:
    bus = EventBus(capacity=2)
    slow = bus.subscribe()
    fast = bus.subscribe()

    for n in range(3):
        bus.publish(ResultsUpdated(tournament_id="t", round_id=f"r{n}"))
        drain(fast)

    assert slow.dropped == 1
    assert [e.round_id for e in drain(slow)] == ["r0", "r1"]
    assert fast.dropped == 0
    assert bus.published == 3


def test_closed_subscription_stops_receiving() -> None:
    bus = EventBus(capacity=10)
    subscription = bus.subscribe()
    subscription.close()

    bus.publish(ParticipantsUpdate(tournament_id="t"))

    assert drain(subscription) == []
    subscription.close()


def test_subscriber_awaits_published_events() -> None:
    bus = EventBus(capacity=10)

    async def scenario():
        subscription = bus.subscribe("t")
        waiter = asyncio.create_task(subscription.get())
        await asyncio.sleep(0)
        bus.publish(DrawUpdated(tournament_id="t", round_id="r"))
        return await asyncio.wait_for(waiter, timeout=5)

    assert asyncio.run(scenario()) == DrawUpdated(tournament_id="t", round_id="r")


def test_events_serialize_with_their_type() -> None:
    assert DrawUpdated(tournament_id="t", round_id="r").model_dump(mode="json") == {
        "type": "draw_updated",
        "tournament_id": "t",
        "round_id": "r",
    }
