"""Tests for job channels and the event bus"""

import asyncio

import pytest

from ytdl_orchestrator.events import EventBus, EventType, JobChannel, JobEvent
from ytdl_orchestrator.jobs import JobStatus

pytestmark = pytest.mark.asyncio


async def test_channel_delivers_in_order_and_closes():
    channel = JobChannel('job')
    channel.put(JobEvent('job', EventType.STARTED))
    channel.put(JobEvent('job', EventType.PROGRESS, 'x', 50.0))
    channel.put(JobEvent('job', EventType.COMPLETED, 'done'))
    channel.put(JobEvent('job', EventType.PROGRESS, 'late', 60.0))

    events = [event async for event in channel]
    assert [event.type for event in events] == [EventType.STARTED, EventType.PROGRESS, EventType.COMPLETED]
    assert events[-1].status == JobStatus.COMPLETED
    assert channel.closed
    assert await channel.get() is None


async def test_full_channel_keeps_terminal_event():
    channel = JobChannel('job', maxsize=2)
    for percent in (10.0, 20.0, 30.0):
        channel.put(JobEvent('job', EventType.PROGRESS, '', percent))
    channel.put(JobEvent('job', EventType.FAILED, 'boom'))

    events = [event async for event in channel]
    assert events[-1].type == EventType.FAILED
    assert len(events) == 2


async def test_wait_closed_returns_terminal_event():
    channel = JobChannel('job')
    channel.put(JobEvent('job', EventType.STARTED))
    channel.put(JobEvent('job', EventType.STOPPED, 'Download stopped'))
    final = await asyncio.wait_for(channel.wait_closed(), 1)
    assert final.status == JobStatus.STOPPED


async def test_bus_routes_to_channel_and_subscribers():
    bus = EventBus()
    channel = bus.open_channel('a')
    subscriber = bus.subscribe()

    bus.publish(JobEvent('a', EventType.STARTED))
    bus.publish(JobEvent('b', EventType.STARTED))
    bus.publish(JobEvent('a', EventType.COMPLETED))

    assert [event.job_id for event in [subscriber.get_nowait() for _ in range(3)]] == ['a', 'b', 'a']
    assert [event.type async for event in channel] == [EventType.STARTED, EventType.COMPLETED]
    assert bus.channel('a') is None


async def test_slow_subscriber_does_not_affect_others():
    bus = EventBus()
    slow = bus.subscribe(maxsize=1)
    fast = bus.subscribe()
    for _ in range(3):
        bus.publish(JobEvent('a', EventType.PROGRESS, '', 1.0))
    assert slow.qsize() == 1
    assert fast.qsize() == 3

    bus.unsubscribe(fast)
    bus.publish(JobEvent('a', EventType.COMPLETED))
    assert fast.qsize() == 3
