"""Checks that yt-dlp and FFmpeg can be found and run on this host."""
import sys
import shutil
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .constants import SUBPROCESS_CREATION_FLAGS, VERSION_CHECK_TIMEOUT
from .exceptions import ToolUnavailableError

PathLike = Union[str, Path]


@dataclass(frozen=True)
class ToolReport:
    """Result of an installation check, as shown on status pages."""
    yt_dlp_installed: bool
    ffmpeg_installed: bool
    yt_dlp_version: Optional[str]


class ToolProbe:
    """Resolves the download and transcoding tools and reads their versions."""

    def __init__(self, yt_dlp_path: PathLike = 'yt-dlp', ffmpeg_path: PathLike = 'ffmpeg'):
        """
        Initializes the ToolProbe.

        Args:
            yt_dlp_path: Name or path of the yt-dlp executable.
            ffmpeg_path: Name or path of the ffmpeg executable.
        """
        self.yt_dlp_path = str(yt_dlp_path)
        self.ffmpeg_path = str(ffmpeg_path)
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def is_executable_resolvable(path: PathLike) -> bool:
        """Returns True if `path` names an executable on this host. Never raises."""
        try:
            return shutil.which(str(path)) is not None
        except (OSError, ValueError, TypeError):
            return False

    def require(self, path: PathLike, tool_name: str):
        """
        Raises:
            ToolUnavailableError: If `path` does not resolve to an executable.
        """
        if not self.is_executable_resolvable(path):
            self.logger.error(f"{tool_name} not found at: {path}")
            raise ToolUnavailableError(tool_name)

    def require_yt_dlp(self):
        self.require(self.yt_dlp_path, 'yt-dlp')

    def require_ffmpeg(self):
        self.require(self.ffmpeg_path, 'ffmpeg')

    async def get_version(self, executable_path: Optional[PathLike] = None) -> str:
        """
        Asynchronously returns the version of an executable by running it with '--version'.

        Args:
            executable_path: The tool to query. Defaults to yt-dlp.

        Returns:
            The tool's standard output, stripped.

        Raises:
            ToolUnavailableError: If the tool cannot be started, times out or exits non-zero.
        """
        executable = str(executable_path or self.yt_dlp_path)
        tool_name = Path(executable).name
        command: List[str] = [executable]
        if 'ffmpeg' in tool_name.lower():
            command.append('-version')
        else:
            command.append('--version')

        kwargs: Dict[str, Any] = {'stdout': asyncio.subprocess.PIPE, 'stderr': asyncio.subprocess.PIPE}
        if sys.platform == 'win32':
            kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS

        try:
            process = await asyncio.create_subprocess_exec(*command, **kwargs)
        except OSError as e:
            raise ToolUnavailableError(tool_name, f"cannot execute: {e}") from e

        try:
            stdout_bytes, _ = await asyncio.wait_for(process.communicate(), timeout=VERSION_CHECK_TIMEOUT)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ToolUnavailableError(tool_name, "version check timed out") from None

        if process.returncode != 0:
            raise ToolUnavailableError(tool_name, f"version check exited with code {process.returncode}")

        return stdout_bytes.decode('utf-8', 'replace').strip()

    async def check_installations(self) -> ToolReport:
        """Reports whether both tools resolve and which yt-dlp version is installed."""
        yt_dlp_installed, ffmpeg_installed = await asyncio.gather(
            asyncio.to_thread(self.is_executable_resolvable, self.yt_dlp_path),
            asyncio.to_thread(self.is_executable_resolvable, self.ffmpeg_path),
        )
        version = None
        if yt_dlp_installed:
            try:
                version = await self.get_version(self.yt_dlp_path)
            except ToolUnavailableError as e:
                self.logger.warning(f"Could not determine yt-dlp version: {e}")
        self.logger.info(f"yt-dlp installed: {yt_dlp_installed} ({version}), FFmpeg installed: {ffmpeg_installed}")
        return ToolReport(yt_dlp_installed, ffmpeg_installed, version)
