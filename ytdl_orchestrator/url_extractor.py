"""
Provides a method to fetch media metadata from yt-dlp without downloading.
"""

import asyncio
import json
import sys
import logging
from typing import Any, Dict, List, Sequence, Union

from .constants import SUBPROCESS_CREATION_FLAGS
from .exceptions import InfoExtractionError
from .jobs import validate_urls

MAX_ERROR_LENGTH = 200

MediaInfo = Union[Dict[str, Any], List[Dict[str, Any]]]


def summarize_yt_dlp_error(stderr: str) -> str:
    """
    Picks the most useful line out of yt-dlp's stderr.

    The first `ERROR:` line wins; otherwise the last non-empty line is used.
    """
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    if not lines:
        return "yt-dlp returned an error with no output."
    for line in lines:
        if line.lower().startswith('error:'):
            message = line[len('error:'):].strip()
            return message if len(message) <= MAX_ERROR_LENGTH else message[:MAX_ERROR_LENGTH] + "..."
    return lines[-1]


class MediaInfoExtractor:
    """
    Runs `yt-dlp -J` and hands back the decoded JSON document as-is.
    """
    def __init__(self, yt_dlp_path: str, timeout: float = 60):
        """
        Initializes the MediaInfoExtractor.

        Args:
            yt_dlp_path: The path to the yt-dlp executable.
            timeout: Seconds to wait for yt-dlp before giving up.
        """
        self.yt_dlp_path = yt_dlp_path
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    async def get_media_info(self, urls: Union[str, Sequence[str]]) -> MediaInfo:
        """
        Retrieves the metadata yt-dlp reports for one or more URLs.

        Args:
            urls: A URL or a list of URLs.

        Returns:
            The JSON document printed by `yt-dlp -J`, or a list of them when yt-dlp
            prints one document per URL.

        Raises:
            InvalidUrlError: If any URL is not a valid absolute URL.
            InfoExtractionError: If the yt-dlp command fails or prints invalid JSON.
        """
        url_list = [urls] if isinstance(urls, str) else list(urls)
        validate_urls(url_list)

        stdout = await self._dump_json(url_list)
        try:
            documents = [json.loads(line) for line in stdout.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            self.logger.error(f"Could not decode yt-dlp JSON output: {e}")
            raise InfoExtractionError("Failed to process media information.") from e
        if not documents:
            raise InfoExtractionError("yt-dlp printed no media information.")
        return documents[0] if len(documents) == 1 else documents

    async def _dump_json(self, urls: List[str]) -> str:
        """
        Runs `yt-dlp -J` for `urls` and returns its decoded stdout.

        Raises:
            InfoExtractionError: If yt-dlp cannot be started, times out or exits non-zero.
        """
        kwargs = {}
        if sys.platform == 'win32':
            kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS

        command = [self.yt_dlp_path, '-J', *urls]
        self.logger.debug(f"Fetching media info: {' '.join(command)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs
            )
        except FileNotFoundError as e:
            self.logger.error(f"yt-dlp executable not found at: {self.yt_dlp_path}")
            raise InfoExtractionError("yt-dlp executable not found.") from e
        except OSError as e:
            self.logger.error(f"Could not start yt-dlp at {self.yt_dlp_path}: {e}")
            raise InfoExtractionError(f"Could not start yt-dlp: {e}") from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            self.logger.error(f"yt-dlp gave no media info within {self.timeout:g}s for {len(urls)} URL(s)")
            raise InfoExtractionError("Media info command timed out.")
        except asyncio.CancelledError:
            process.kill()
            raise

        stderr = stderr_bytes.decode('utf-8', 'replace')
        if process.returncode != 0:
            self.logger.error(f"yt-dlp -J exited with code {process.returncode}. Stderr: {stderr.strip()}")
            raise InfoExtractionError(summarize_yt_dlp_error(stderr))
        return stdout_bytes.decode('utf-8', 'replace')
