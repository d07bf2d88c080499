"""Manages the pending queue, the running yt-dlp processes and their progress."""
import asyncio
import codecs
import os
import sys
import uuid
import signal
import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

import aiofiles

from .config import Settings
from .constants import BASE_YT_DLP_FLAGS, STREAM_READ_SIZE, SUBPROCESS_CREATION_FLAGS
from .dependencies import ToolProbe
from .events import EventBus, EventType, JobChannel, JobEvent
from .exceptions import DirectoryError, NotFoundError, ProcessFailureError, SpawnFailureError
from .jobs import (
    JobRecord, JobRequest, JobSnapshot, JobStatus, QueueEntry, StatusReport, validate_urls
)
from .pending_queue import PendingQueue
from .progress import extract_percent
from .registry import ActiveJobRegistry


class JobLogWriter:
    """
    Appends a job's raw stdout/stderr bytes to its log file, unbuffered.

    Both output streams share one writer, so writes and the close are serialized.
    """

    def __init__(self, path: Path):
        self.path = path
        self.logger = logging.getLogger(__name__)
        self._file = None
        self._lock = asyncio.Lock()

    async def open(self):
        try:
            self._file = await aiofiles.open(self.path, 'ab', buffering=0)
        except OSError as e:
            self.logger.error(f"Cannot open job log {self.path}: {e}")

    async def write(self, data: bytes):
        async with self._lock:
            if self._file is None:
                return
            try:
                await self._file.write(data)
            except OSError as e:
                self.logger.error(f"Writing to job log {self.path} failed, disabling it: {e}")
                await self._close_file()

    async def close(self):
        async with self._lock:
            await self._close_file()

    async def _close_file(self):
        log_file, self._file = self._file, None
        if log_file is None:
            return
        try:
            await log_file.close()
        except OSError as e:
            self.logger.error(f"Error closing job log {self.path}: {e}")


class DownloadOrchestrator:
    """
    Admits download requests, runs at most `max_concurrent_downloads` yt-dlp
    processes at once and queues the rest in FIFO order.

    All registry and queue mutations happen under a single lock, so exit
    handling, new submissions and stop requests never interleave.
    """

    def __init__(self, config: Settings, probe: Optional[ToolProbe] = None, event_bus: Optional[EventBus] = None):
        """
        Initializes the DownloadOrchestrator.

        Args:
            config: The loaded settings (tool paths, directories, limits).
            probe: Tool availability checker. Built from `config` if omitted.
            event_bus: Where job events are published. A new bus is created if omitted.
        """
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.probe = probe or ToolProbe(config.yt_dlp_path, config.ffmpeg_path)
        self.event_bus = event_bus or EventBus()
        self.registry = ActiveJobRegistry()
        self.pending = PendingQueue()
        self._lock = asyncio.Lock()
        self._supervisor_tasks: Set[asyncio.Task] = set()
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def concurrency_limit(self) -> int:
        return self.config.max_concurrent_downloads

    @property
    def active_count(self) -> int:
        return self.registry.count()

    # --- Submission -----------------------------------------------------------------

    async def submit(self, request: JobRequest) -> str:
        """
        Validates a request and either starts it or queues it.

        Returns as soon as the job is running or queued; it never waits for the download.

        Returns:
            The new job's id.

        Raises:
            InvalidUrlError: If any URL is not a valid absolute URL.
            ToolUnavailableError: If yt-dlp (or ffmpeg for audio-only requests) is missing.
            DirectoryError: If the output or log directory cannot be created.
            SpawnFailureError: If the OS refuses to start yt-dlp.
        """
        validate_urls(request.urls)
        self.probe.require_yt_dlp()
        if request.audio_only:
            self.probe.require_ffmpeg()

        await self._ensure_directories(request.output_dir or self.config.output_dir)

        job_id = uuid.uuid4().hex
        log_path = self._log_path_for(job_id)
        channel = self.event_bus.open_channel(job_id)

        async with self._lock:
            if self.registry.count() < self.concurrency_limit:
                try:
                    await self._start_job(job_id, request, log_path, channel)
                except SpawnFailureError:
                    self.event_bus.discard_channel(job_id)
                    raise
            else:
                self.pending.enqueue(QueueEntry(job_id, request, log_path, channel, datetime.now(timezone.utc)))
                position = len(self.pending)
                self.logger.info(f"[{job_id}] Concurrency limit reached, queued at position {position}.")
                self._publish(JobEvent(job_id, EventType.QUEUED, f"Queued at position {position}"))
        return job_id

    async def _ensure_directories(self, output_dir: Path):
        try:
            await asyncio.to_thread(Path(output_dir).mkdir, parents=True, exist_ok=True)
            if self.config.log_enabled:
                await asyncio.to_thread(self.config.log_dir.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            self.logger.error(f"Cannot prepare download directories: {e}")
            raise DirectoryError(f"Cannot create directory: {e}") from e

    def _log_path_for(self, job_id: str) -> Path:
        """Builds the job's log file path from an ISO-8601 timestamp safe for file names."""
        now = datetime.now(timezone.utc)
        stamp = now.strftime('%Y-%m-%dT%H-%M-%S-') + f"{now.microsecond // 1000:03d}Z"
        return self.config.log_dir / f"{stamp}_{job_id}.txt"

    def build_command(self, request: JobRequest) -> List[str]:
        """Builds the full yt-dlp command list for a request."""
        output_dir = Path(request.output_dir or self.config.output_dir)
        template = request.output_template or self.config.filename_template
        command = [self.config.yt_dlp_path, *BASE_YT_DLP_FLAGS]
        if os.sep in self.config.ffmpeg_path or '/' in self.config.ffmpeg_path:
            command.extend(['--ffmpeg-location', self.config.ffmpeg_path])
        command.extend(['-o', str(output_dir / template)])
        if request.format:
            command.extend(['--format', request.format])
        if request.audio_only:
            command.extend(['-x', '--audio-format', self.config.audio_format, '--audio-quality', self.config.audio_quality])
        command.extend(request.urls)
        return command

    async def _spawn(self, command: List[str]) -> asyncio.subprocess.Process:
        kwargs: Dict[str, Any] = {}
        if sys.platform == 'win32':
            kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS | subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs['preexec_fn'] = os.setsid
        try:
            return await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs
            )
        except (OSError, ValueError, TypeError) as e:
            self.logger.error(f"Could not start yt-dlp ({command[0]}): {e}")
            raise SpawnFailureError(f"Could not start yt-dlp: {e}") from e

    async def _start_job(self, job_id: str, request: JobRequest, log_path: Path, channel: JobChannel) -> JobRecord:
        """Spawns yt-dlp for a job and registers it as running. Caller holds the lock."""
        command = self.build_command(request)
        self.logger.debug(f"[{job_id}] Command: {' '.join(command)}")
        process = await self._spawn(command)
        record = JobRecord(
            job_id=job_id,
            request=request,
            log_path=log_path,
            channel=channel,
            status=JobStatus.RUNNING,
            process=process,
            start_time=datetime.now(timezone.utc),
        )
        try:
            self.registry.insert(job_id, record)
        except Exception:
            process.kill()
            raise
        self.logger.info(f"[{job_id}] Started yt-dlp (PID: {process.pid}) for {len(request.urls)} URL(s).")
        self._publish(JobEvent(job_id, EventType.STARTED, f"Started yt-dlp (PID {process.pid})"))

        record.supervisor_task = self._create_task(self._supervise(record), self._supervisor_tasks, f"supervise-{job_id}")
        if self.config.download_timeout > 0:
            record.timeout_task = self._create_task(
                self._expire_after(job_id, self.config.download_timeout), self._background_tasks, f"timeout-{job_id}"
            )
        return record

    # --- Supervision ----------------------------------------------------------------

    async def _supervise(self, record: JobRecord):
        """Streams a job's output until the process exits, then finalizes the job."""
        process = record.process
        assert process is not None and process.stdout is not None and process.stderr is not None

        job_log = JobLogWriter(record.log_path)
        if self.config.log_enabled:
            await job_log.open()
        try:
            await asyncio.gather(
                self._read_stdout(record, process.stdout, job_log),
                self._read_stderr(record, process.stderr, job_log),
            )
        except Exception:
            self.logger.exception(f"[{record.job_id}] Error while reading yt-dlp output, killing it")
            try:
                process.kill()
            except (ProcessLookupError, OSError):
                pass # Already gone
        finally:
            await job_log.close()
            record.line_buffer.flush()
        return_code = await process.wait()
        await self._on_process_exit(record, return_code)

    async def _read_stdout(self, record: JobRecord, stream: asyncio.StreamReader, job_log: JobLogWriter):
        decoder = codecs.getincrementaldecoder('utf-8')('replace')
        while True:
            chunk = await stream.read(STREAM_READ_SIZE)
            if not chunk:
                break
            await job_log.write(chunk)
            segments = record.line_buffer.feed(decoder.decode(chunk))
            if segments:
                self._handle_output('\n'.join(segments), record)

    async def _read_stderr(self, record: JobRecord, stream: asyncio.StreamReader, job_log: JobLogWriter):
        decoder = codecs.getincrementaldecoder('utf-8')('replace')
        while True:
            chunk = await stream.read(STREAM_READ_SIZE)
            if not chunk:
                break
            await job_log.write(chunk)
            text = decoder.decode(chunk)
            if text and record.status == JobStatus.RUNNING:
                self.logger.debug(f"[{record.job_id}] stderr: {text.strip()}")
                self._publish(JobEvent(record.job_id, EventType.STDERR, text))

    def _handle_output(self, text: str, record: JobRecord):
        """Updates the job's progress from complete stdout segments; the event carries those segments."""
        percent = extract_percent(text)
        if percent is None or record.status != JobStatus.RUNNING:
            return
        record.progress_percent = min(max(percent, 0.0), 100.0)
        self._publish(JobEvent(record.job_id, EventType.PROGRESS, text, record.progress_percent))

    async def _on_process_exit(self, record: JobRecord, return_code: int):
        async with self._lock:
            self._cancel_timeout(record)
            record.process = None
            if record.status == JobStatus.STOPPED:
                self.logger.info(f"[{record.job_id}] Stopped job exited with code {return_code}.")
                return

            self.registry.remove(record.job_id)
            if return_code == 0:
                record.status = JobStatus.COMPLETED
                self.logger.info(f"[{record.job_id}] Download completed.")
                self._publish(JobEvent(record.job_id, EventType.COMPLETED, "Download completed successfully"))
            else:
                record.status = JobStatus.FAILED
                failure = ProcessFailureError(return_code)
                self.logger.warning(f"[{record.job_id}] {failure}")
                self._publish(JobEvent(record.job_id, EventType.FAILED, str(failure)))
            await self._drain_queue()

    async def _drain_queue(self):
        """Promotes queued requests while slots are free. Caller holds the lock."""
        while self.registry.count() < self.concurrency_limit:
            entry = self.pending.dequeue_next()
            if entry is None:
                return
            try:
                await self._start_job(entry.job_id, entry.request, entry.log_path, entry.channel)
            except SpawnFailureError as e:
                self._publish(JobEvent(entry.job_id, EventType.FAILED, str(e)))

    # --- Cancellation ---------------------------------------------------------------

    async def stop(self, job_id: str, reason: str = 'requested'):
        """
        Stops a running or queued job.

        A running job is sent SIGTERM and removed at once; the process is
        reaped in the background and killed if it outlives the grace period.

        Raises:
            NotFoundError: If the job is unknown or already finished.
        """
        async with self._lock:
            record = self.registry.get(job_id)
            if record is not None and record.status == JobStatus.RUNNING:
                self._terminate(record)
                record.status = JobStatus.STOPPED
                record.stop_reason = reason
                self.registry.remove(job_id)
                self._cancel_timeout(record)
                if reason == 'timeout':
                    message = f"Download timed out after {self.config.download_timeout:g} seconds"
                else:
                    message = "Download stopped"
                self.logger.info(f"[{job_id}] {message}.")
                self._publish(JobEvent(job_id, EventType.STOPPED, message))
                await self._drain_queue()
                return

            entry = self.pending.remove(job_id)
            if entry is not None:
                self.logger.info(f"[{job_id}] Removed from the queue.")
                self._publish(JobEvent(job_id, EventType.STOPPED, "Removed from queue"))
                return

        raise NotFoundError(job_id)

    async def stop_all(self, include_queued: bool = True) -> int:
        """
        Stops every running job.

        Args:
            include_queued: Also drop queued requests, first, so that stopping the
                running jobs does not promote them.

        Returns:
            The number of running jobs that were signalled.
        """
        self.logger.info("STOP signal received. Terminating downloads...")
        if include_queued:
            async with self._lock:
                while (entry := self.pending.dequeue_next()) is not None:
                    self._publish(JobEvent(entry.job_id, EventType.STOPPED, "Removed from queue"))

        stopped = 0
        for job_id in self.registry.ids():
            try:
                await self.stop(job_id)
                stopped += 1
            except NotFoundError:
                pass  # Finished meanwhile
        return stopped

    def _terminate(self, record: JobRecord):
        process = record.process
        if process is None or process.returncode is not None:
            return
        self.logger.info(f"Terminating process for {record.job_id} (PID: {process.pid})...")
        try:
            if sys.platform == 'win32':
                process.terminate()
            else:
                os.killpg(os.getpgid(process.pid), signal.SIGTERM)
        except (ProcessLookupError, OSError) as e:
            self.logger.warning(f"Could not signal {record.job_id}: {e}")
            return
        self._create_task(self._escalate_kill(record.job_id, process), self._background_tasks, f"kill-{record.job_id}")

    async def _escalate_kill(self, job_id: str, process: asyncio.subprocess.Process):
        """Kills the process group if it is still alive after the grace period."""
        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.stop_grace_period)
        except asyncio.TimeoutError:
            self.logger.warning(f"Graceful shutdown for {job_id} failed. Forcing termination...")
            try:
                if sys.platform == 'win32':
                    process.kill()
                else:
                    os.killpg(os.getpgid(process.pid), signal.SIGKILL)
            except (ProcessLookupError, OSError):
                pass # Already gone

    async def _expire_after(self, job_id: str, seconds: float):
        await asyncio.sleep(seconds)
        try:
            await self.stop(job_id, reason='timeout')
        except NotFoundError:
            pass

    def _cancel_timeout(self, record: JobRecord):
        task = record.timeout_task
        record.timeout_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # --- Status ---------------------------------------------------------------------

    def get_active_snapshot(self) -> List[JobSnapshot]:
        """Returns copies of all running jobs."""
        return self.registry.snapshot_all()

    def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        """Returns a copy of a running or queued job, or None once it has finished."""
        record = self.registry.get(job_id)
        if record is not None:
            return record.snapshot()
        entry = self.pending.get(job_id)
        return entry.snapshot() if entry is not None else None

    def get_status(self) -> StatusReport:
        return StatusReport(
            active_jobs=tuple(self.registry.snapshot_all()),
            active_count=self.registry.count(),
            concurrency_limit=self.concurrency_limit,
            queued_jobs=tuple(entry.snapshot() for entry in self.pending.entries()),
        )

    # --- Events ---------------------------------------------------------------------

    def events(self, job_id: str) -> JobChannel:
        """
        Returns the event channel of a queued or running job.

        Raises:
            NotFoundError: If the job has no open channel (unknown or already finished).
        """
        channel = self.event_bus.channel(job_id)
        if channel is None:
            raise NotFoundError(job_id)
        return channel

    def subscribe(self) -> 'asyncio.Queue[JobEvent]':
        return self.event_bus.subscribe()

    def unsubscribe(self, queue: asyncio.Queue):
        self.event_bus.unsubscribe(queue)

    def _publish(self, event: JobEvent):
        self.event_bus.publish(event)

    # --- Lifecycle ------------------------------------------------------------------

    async def wait_idle(self):
        """Waits until no job is running or queued."""
        while running := [task for task in self._supervisor_tasks if not task.done()]:
            await asyncio.gather(*running, return_exceptions=True)

    async def shutdown(self):
        """Stops everything and waits for the processes to be reaped."""
        await self.stop_all(include_queued=True)
        tasks = list(self._supervisor_tasks | self._background_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info("Orchestrator shut down.")

    def _create_task(self, coro: Coroutine[Any, Any, None], task_set: Set[asyncio.Task], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        task_set.add(task)
        task.add_done_callback(self._task_done_callback(task_set))
        return task

    def _task_done_callback(self, task_set: set) -> Callable:
        """Creates a callback to remove a task from a set and log exceptions."""
        def callback(task: asyncio.Task):
            task_set.discard(task)
            try:
                task.result()
            except asyncio.CancelledError:
                pass # Normal cancellation
            except Exception:
                self.logger.exception(f"Exception in background task {task.get_name()}:")
        return callback
