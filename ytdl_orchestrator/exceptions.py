"""
Defines custom exceptions used by the download orchestrator.

Pre-flight errors are raised synchronously from ``submit``; process failures
are only ever delivered as job events.
"""


class OrchestratorError(Exception):
    """Base exception for all orchestrator errors."""


class InvalidUrlError(OrchestratorError):
    """Raised when a submitted URL is not a valid absolute URI."""

    def __init__(self, url: str, reason: str = "not a valid absolute URL"):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL '{url}': {reason}")


class ToolUnavailableError(OrchestratorError):
    """Raised when yt-dlp or ffmpeg cannot be found or executed."""

    def __init__(self, tool: str, detail: str = ""):
        self.tool = tool
        message = f"{tool} is not installed or could not be found"
        super().__init__(f"{message}: {detail}" if detail else message)


class DirectoryError(OrchestratorError):
    """Raised when an output or log directory cannot be created."""


class DuplicateIdError(OrchestratorError):
    """Raised when a job id is inserted twice into the registry."""


class NotFoundError(OrchestratorError):
    """Raised when a job id is unknown or already finished."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Download not found: {job_id}")


class SpawnFailureError(OrchestratorError):
    """Raised when the OS refuses to start the yt-dlp process."""


class ProcessFailureError(OrchestratorError):
    """Describes a yt-dlp process that exited with a non-zero code."""

    def __init__(self, return_code: int):
        self.return_code = return_code
        super().__init__(f"Download failed with exit code {return_code}")


class InfoExtractionError(OrchestratorError):
    """Custom exception for media info lookup failures."""
