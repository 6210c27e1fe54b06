from __future__ import annotations

import asyncio
from typing import List

import pytest

from agentrelay.events import Event, EventBus, EventType, ProgressEvent, idempotency_key_for


def _event(event_type: EventType = EventType.agent_completed, source: str = "run-1") -> Event:
    return Event.for_source(event_type, source_id=source, payload={"x": 1}, step_index=3)


def test_idempotency_key_is_deterministic_per_occurrence() -> None:
    a = idempotency_key_for(EventType.agent_completed, "run-1", 3)
    assert a == idempotency_key_for("agent.completed", "run-1", 3)
    assert a != idempotency_key_for(EventType.agent_completed, "run-1", 4)
    assert a != idempotency_key_for(EventType.agent_failed, "run-1", 3)
    assert _event().idempotency_key == a
    assert _event().id != _event().id


@pytest.mark.asyncio
async def test_handlers_receive_only_subscribed_types() -> None:
    bus = EventBus()
    everything: List[Event] = []
    failures: List[Event] = []

    async def all_handler(event: Event) -> None:
        everything.append(event)

    async def failed_handler(event: Event) -> None:
        failures.append(event)

    bus.subscribe(all_handler)
    bus.subscribe(failed_handler, [EventType.agent_failed])
    await bus.publish(_event(EventType.agent_completed))
    await bus.publish(_event(EventType.agent_failed))
    await bus.drain()

    assert [e.type for e in everything] == [EventType.agent_completed, EventType.agent_failed]
    assert [e.type for e in failures] == [EventType.agent_failed]


@pytest.mark.asyncio
async def test_publish_does_not_wait_for_slow_handlers() -> None:
    bus = EventBus()
    release = asyncio.Event()
    done: List[str] = []

    async def slow(event: Event) -> None:
        await release.wait()
        done.append(event.id)

    bus.subscribe(slow)
    event = _event()
    await asyncio.wait_for(bus.publish(event), timeout=1)
    assert done == []
    release.set()
    await bus.drain()
    assert done == [event.id]


@pytest.mark.asyncio
async def test_failing_handler_does_not_affect_others_or_producer() -> None:
    bus = EventBus()
    received: List[Event] = []

    async def broken(event: Event) -> None:
        raise RuntimeError("boom")

    async def healthy(event: Event) -> None:
        received.append(event)

    bus.subscribe(broken)
    bus.subscribe(healthy)
    await bus.publish(_event())
    await bus.drain()
    assert len(received) == 1


@pytest.mark.asyncio
async def test_progress_channel_and_unsubscribe() -> None:
    bus = EventBus()
    seen: List[ProgressEvent] = []

    async def on_progress(event: ProgressEvent) -> None:
        seen.append(event)

    bus.subscribe_progress(on_progress)
    await bus.publish_progress(ProgressEvent(run_id="r", kind="step"))
    await bus.drain()
    bus.unsubscribe_progress(on_progress)
    await bus.publish_progress(ProgressEvent(run_id="r", kind="completed", terminal=True))
    await bus.drain()
    assert [e.kind for e in seen] == ["step"]
