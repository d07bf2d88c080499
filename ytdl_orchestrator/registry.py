"""Keeps the jobs that currently own a yt-dlp process."""
from typing import Dict, List, Optional

from .exceptions import DuplicateIdError
from .jobs import JobRecord, JobSnapshot, JobStatus


class ActiveJobRegistry:
    """
    Maps job ids to their live records.

    Only the orchestrator mutates the registry; everyone else gets snapshots.
    """

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}

    def insert(self, job_id: str, record: JobRecord) -> None:
        if job_id in self._jobs:
            raise DuplicateIdError(f"Job id already registered: {job_id}")
        self._jobs[job_id] = record

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def remove(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.pop(job_id, None)

    def snapshot_all(self) -> List[JobSnapshot]:
        """Returns point-in-time copies of every record, in insertion order."""
        return [record.snapshot() for record in self._jobs.values()]

    def count(self) -> int:
        """Number of records that are running. Used for admission decisions."""
        return sum(1 for record in self._jobs.values() if record.status == JobStatus.RUNNING)

    def ids(self) -> List[str]:
        return list(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)
