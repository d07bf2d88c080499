"""
Delivers job events from the orchestrator to observers.

Every job gets its own channel when it is submitted, so a caller that starts
reading after `submit` returns still sees the job's first events. Observers
that want everything can subscribe to the bus as a whole.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional

from .jobs import JobStatus


class EventType(str, enum.Enum):
    QUEUED = 'queued'
    STARTED = 'started'
    PROGRESS = 'progress'
    STDERR = 'stderr'
    COMPLETED = 'completed'
    FAILED = 'failed'
    STOPPED = 'stopped'

    @property
    def is_terminal(self) -> bool:
        return self in (EventType.COMPLETED, EventType.FAILED, EventType.STOPPED)


_TERMINAL_STATUS = {
    EventType.COMPLETED: JobStatus.COMPLETED,
    EventType.FAILED: JobStatus.FAILED,
    EventType.STOPPED: JobStatus.STOPPED,
}


@dataclass(frozen=True)
class JobEvent:
    """
    A single notification about a job.

    Attributes:
        job_id: The job the event belongs to.
        type: What happened.
        message: Raw output text for PROGRESS/STDERR, a human-readable message otherwise.
        percent: The parsed percentage for PROGRESS events.
        timestamp: When the event was published.
    """
    job_id: str
    type: EventType
    message: str = ''
    percent: Optional[float] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> Optional[JobStatus]:
        """The terminal status carried by this event, if any."""
        return _TERMINAL_STATUS.get(self.type)


class JobChannel:
    """
    Buffers the events of a single job until the observer reads them.

    When nobody reads, the oldest events are discarded once the buffer is full;
    the terminal event is always kept.
    """
    MAX_BUFFERED_EVENTS = 10000

    def __init__(self, job_id: str, maxsize: int = MAX_BUFFERED_EVENTS):
        self.job_id = job_id
        self._queue: asyncio.Queue[Optional[JobEvent]] = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self.closed = False
        self.last_event: Optional[JobEvent] = None

    def put(self, event: JobEvent):
        if self.closed:
            return
        if self._queue.qsize() >= self._maxsize:
            self._queue.get_nowait()
        self.last_event = event
        self._queue.put_nowait(event)
        if event.type.is_terminal:
            self.closed = True
            self._queue.put_nowait(None)

    async def get(self) -> Optional[JobEvent]:
        """Returns the next event, or None once the terminal event has been consumed."""
        event = await self._queue.get()
        if event is None:
            # Keep returning None to late readers.
            self._queue.put_nowait(None)
        return event

    async def wait_closed(self) -> JobEvent:
        """Consumes events until the terminal one and returns it."""
        last = None
        async for event in self:
            last = event
        assert last is not None and last.type.is_terminal
        return last

    def __aiter__(self) -> AsyncIterator[JobEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[JobEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class EventBus:
    """Routes events to per-job channels and to bus-wide subscribers."""
    SUBSCRIBER_QUEUE_SIZE = 1000

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._channels: Dict[str, JobChannel] = {}
        self._subscribers: List[asyncio.Queue] = []

    def open_channel(self, job_id: str) -> JobChannel:
        channel = JobChannel(job_id)
        self._channels[job_id] = channel
        return channel

    def channel(self, job_id: str) -> Optional[JobChannel]:
        return self._channels.get(job_id)

    def discard_channel(self, job_id: str):
        """Drops the channel of a job that was never admitted."""
        self._channels.pop(job_id, None)

    def subscribe(self, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> 'asyncio.Queue[JobEvent]':
        """Returns a queue that receives every event published from now on."""
        queue: asyncio.Queue[JobEvent] = asyncio.Queue(maxsize=maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: JobEvent):
        """Delivers `event`. A subscriber that cannot keep up loses the event, nobody else does."""
        channel = self._channels.get(event.job_id)
        if channel is not None:
            channel.put(event)
            if event.type.is_terminal:
                del self._channels[event.job_id]
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.logger.warning(f"Subscriber queue full, dropping {event.type.value} event for {event.job_id}")
