"""
Defines the data classes for download requests, jobs and their snapshots.
"""

import asyncio
import enum
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Tuple, TYPE_CHECKING

from pydantic import AnyUrl, BaseModel, ConfigDict, TypeAdapter, ValidationError, field_validator

from .exceptions import InvalidUrlError
from .progress import LineBuffer

if TYPE_CHECKING:
    from .events import JobChannel

_URL_ADAPTER = TypeAdapter(AnyUrl)
_CONTROL_CHARS_RE = re.compile(r'[\x00-\x1f\x7f]')


class JobStatus(str, enum.Enum):
    """Lifecycle states of a download job."""
    QUEUED = 'Queued'
    RUNNING = 'Running'
    COMPLETED = 'Completed'
    FAILED = 'Failed'
    STOPPED = 'Stopped'

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.STOPPED)


def validate_urls(urls: Sequence[str]) -> None:
    """
    Checks that every URL parses as an absolute URI.

    Raises:
        InvalidUrlError: For the first URL that does not parse or holds control
            characters, or if `urls` is empty.
    """
    if not urls:
        raise InvalidUrlError('', 'at least one URL is required')
    for url in urls:
        if _CONTROL_CHARS_RE.search(url):
            raise InvalidUrlError(url, 'contains control characters')
        try:
            _URL_ADAPTER.validate_python(url)
        except ValidationError:
            raise InvalidUrlError(url) from None


class JobRequest(BaseModel):
    """
    A request to download one or more URLs with a single yt-dlp invocation.

    URLs are kept verbatim; `validate_urls` decides whether they are acceptable.
    """
    model_config = ConfigDict(frozen=True)

    urls: Tuple[str, ...]
    audio_only: bool = False
    output_template: Optional[str] = None
    format: Optional[str] = None
    output_dir: Optional[Path] = None

    @field_validator('urls', mode='before')
    @classmethod
    def wrap_single_url(cls, value):
        """Accepts a single URL string as well as a sequence of them."""
        if isinstance(value, str):
            return (value,)
        return value

    @field_validator('urls')
    @classmethod
    def strip_urls(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(url.strip() for url in value)

    @field_validator('output_template', 'format', mode='before')
    @classmethod
    def blank_to_none(cls, value):
        """Treats empty form values as 'not given'."""
        if isinstance(value, str) and not value.strip():
            return None
        return value


@dataclass(frozen=True)
class JobSnapshot:
    """A read-only copy of a job's state handed out to callers."""
    job_id: str
    urls: Tuple[str, ...]
    status: JobStatus
    progress_percent: float
    start_time: Optional[datetime]
    log_path: Path


@dataclass
class JobRecord:
    """
    Represents a single download job owned by the orchestrator.

    Attributes:
        job_id: A unique identifier for the job.
        request: The originating request.
        log_path: Where this job's raw output is appended when logging is enabled.
        channel: The event channel for this job.
        status: The current lifecycle state.
        process: The yt-dlp process, present only while running.
        progress_percent: The last percentage seen in the output (may go backwards on playlists).
        start_time: When the job started running.
        stop_reason: Why a stopped job was stopped ('requested' or 'timeout').
    """
    job_id: str
    request: JobRequest
    log_path: Path
    channel: 'JobChannel'
    status: JobStatus = JobStatus.QUEUED
    process: Optional[asyncio.subprocess.Process] = None
    progress_percent: float = 0.0
    start_time: Optional[datetime] = None
    stop_reason: Optional[str] = None
    line_buffer: LineBuffer = field(default_factory=LineBuffer)
    supervisor_task: Optional[asyncio.Task] = None
    timeout_task: Optional[asyncio.Task] = None

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            job_id=self.job_id,
            urls=self.request.urls,
            status=self.status,
            progress_percent=self.progress_percent,
            start_time=self.start_time,
            log_path=self.log_path,
        )


@dataclass
class QueueEntry:
    """A request admitted while every slot was busy, waiting for a free slot."""
    job_id: str
    request: JobRequest
    log_path: Path
    channel: 'JobChannel'
    submitted_at: datetime

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            job_id=self.job_id,
            urls=self.request.urls,
            status=JobStatus.QUEUED,
            progress_percent=0.0,
            start_time=None,
            log_path=self.log_path,
        )


@dataclass(frozen=True)
class StatusReport:
    """Polling view of the orchestrator for status pages."""
    active_jobs: Tuple[JobSnapshot, ...]
    active_count: int
    concurrency_limit: int
    queued_jobs: Tuple[JobSnapshot, ...] = ()
