"""FIFO of requests waiting for a free download slot."""
from collections import deque
from typing import Deque, List, Optional

from .jobs import QueueEntry


class PendingQueue:
    """
    A strict first-come-first-served queue of admitted requests.

    Entries leave the queue only when promoted to a running job or when a
    queued job is stopped explicitly.
    """

    def __init__(self):
        self._entries: Deque[QueueEntry] = deque()

    def enqueue(self, entry: QueueEntry) -> None:
        self._entries.append(entry)

    def dequeue_next(self) -> Optional[QueueEntry]:
        if not self._entries:
            return None
        return self._entries.popleft()

    def remove(self, job_id: str) -> Optional[QueueEntry]:
        """Removes and returns the entry for `job_id`, keeping the order of the rest."""
        for entry in self._entries:
            if entry.job_id == job_id:
                self._entries.remove(entry)
                return entry
        return None

    def get(self, job_id: str) -> Optional[QueueEntry]:
        return next((entry for entry in self._entries if entry.job_id == job_id), None)

    def entries(self) -> List[QueueEntry]:
        return list(self._entries)

    def length(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: object) -> bool:
        return any(entry.job_id == job_id for entry in self._entries)
