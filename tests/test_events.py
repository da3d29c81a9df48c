"""Tests for the in-process EventBus."""

import pytest

from fuel_queue import ChangeAction, ChangeEvent, EventBus
from fuel_queue.events import QUEUE_ENTITY


@pytest.fixture
def bus():
    return EventBus()


def _event(action=ChangeAction.created, entry_id=1, entity=QUEUE_ENTITY):
    return ChangeEvent(
        entity=entity,
        action=action,
        entry_id=entry_id,
        station_user_id="station-S",
        timestamp=1,
    )


def test_publish_reaches_subscribers(bus):
    first, second = [], []
    _ = bus.subscribe(QUEUE_ENTITY, first.append)
    _ = bus.subscribe(QUEUE_ENTITY, second.append)

    delivered = bus.publish(_event())

    assert delivered == 2
    assert len(first) == 1
    assert len(second) == 1
    assert first[0].entry_id == 1


def test_publish_filters_by_entity(bus):
    received = []
    _ = bus.subscribe("stations", received.append)

    assert bus.publish(_event()) == 0
    assert received == []


def test_cancel_subscription(bus):
    received = []
    subscription = bus.subscribe(QUEUE_ENTITY, received.append)

    subscription.cancel()
    subscription.cancel()  # second cancel is a no-op

    assert bus.publish(_event()) == 0
    assert subscription.active is False


def test_failing_handler_does_not_block_others(bus, caplog):
    received = []

    def broken(event):
        raise RuntimeError("dashboard crashed")

    _ = bus.subscribe(QUEUE_ENTITY, broken)
    _ = bus.subscribe(QUEUE_ENTITY, received.append)

    delivered = bus.publish(_event(ChangeAction.deleted, entry_id=9))

    assert delivered == 1
    assert [e.entry_id for e in received] == [9]
    assert "Change handler failed" in caplog.text


def test_handler_may_unsubscribe_while_publishing(bus):
    calls = []
    subscription = None

    def once(event):
        calls.append(event)
        subscription.cancel()

    subscription = bus.subscribe(QUEUE_ENTITY, once)

    _ = bus.publish(_event())
    _ = bus.publish(_event())

    assert len(calls) == 1


def test_change_event_json_round_trip():
    event = ChangeEvent(
        action=ChangeAction.renumbered, station_user_id="station-S", timestamp=1_000
    )

    restored = ChangeEvent.model_validate_json(event.model_dump_json())

    assert restored == event
    assert restored.entity == "fuel_queue"
    assert restored.entry_id is None
