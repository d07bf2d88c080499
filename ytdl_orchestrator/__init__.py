"""Runs yt-dlp downloads under a concurrency limit and tracks their progress."""

from ._version import __version__
