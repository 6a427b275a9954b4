import asyncio

import pytest

from pipeline_orchestrator.events import EventBus


@pytest.mark.asyncio
async def test_publish_does_not_wait_for_subscribers() -> None:
    bus = EventBus()
    received: list[str] = []
    release = asyncio.Event()

    async def slow(event, payload) -> None:
        await release.wait()
        received.append(event)

    bus.subscribe("ingestion:started", slow)
    bus.publish("ingestion:started", {"execution_id": "x"})

    assert received == []
    release.set()
    await bus.drain()
    assert received == ["ingestion:started"]


@pytest.mark.asyncio
async def test_wildcard_and_named_subscribers_both_receive() -> None:
    bus = EventBus()
    named: list[dict] = []
    everything: list[str] = []

    bus.subscribe("validation:completed", lambda event, payload: named.append(payload))
    bus.subscribe("*", lambda event, payload: everything.append(event))

    bus.publish("validation:completed", {"execution_id": "a"})
    bus.publish("deployment:failed", {"execution_id": "b"})
    await bus.drain()

    assert named == [{"execution_id": "a"}]
    assert sorted(everything) == ["deployment:failed", "validation:completed"]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_affect_others() -> None:
    bus = EventBus()
    received: list[str] = []

    def broken(event, payload) -> None:
        raise RuntimeError("subscriber bug")

    bus.subscribe("transformation:progress", broken)
    bus.subscribe("transformation:progress", lambda event, payload: received.append(event))

    bus.publish("transformation:progress", {"execution_id": "x"})
    await bus.drain()

    assert received == ["transformation:progress"]


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    received: list[str] = []

    unsubscribe = bus.subscribe("ingestion:completed", lambda event, payload: received.append(event))
    unsubscribe()
    bus.publish("ingestion:completed", {"execution_id": "x"})
    await bus.drain()

    assert received == []
