"""Test configuration and fixtures"""

import asyncio
import stat
import sys
from pathlib import Path
from typing import List
from urllib.parse import urlencode

import pytest
import pytest_asyncio

from ytdl_orchestrator.config import Settings
from ytdl_orchestrator.downloads import DownloadOrchestrator
from ytdl_orchestrator.events import JobChannel, JobEvent

FAKE_YT_DLP = Path(__file__).parent / 'fake_yt_dlp.py'


def _make_executable(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}", encoding='utf-8')
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def media_url(name: str = 'video', **params) -> str:
    """Builds a URL for the fake yt-dlp; params control its behaviour."""
    query = f"?{urlencode(params)}" if params else ''
    return f"https://media.example.com/{name}{query}"


async def collect(channel: JobChannel, timeout: float = 15) -> List[JobEvent]:
    """Reads a job channel until its terminal event."""
    async def read_all():
        return [event async for event in channel]
    return await asyncio.wait_for(read_all(), timeout)


def drain(queue: asyncio.Queue) -> List[JobEvent]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.fixture
def fake_yt_dlp(tmp_path) -> Path:
    """An executable yt-dlp stand-in"""
    (tmp_path / 'bin').mkdir(exist_ok=True)
    return _make_executable(tmp_path / 'bin' / 'yt-dlp', FAKE_YT_DLP.read_text(encoding='utf-8'))


@pytest.fixture
def fake_ffmpeg(tmp_path) -> Path:
    """An executable ffmpeg stand-in"""
    (tmp_path / 'bin').mkdir(exist_ok=True)
    return _make_executable(tmp_path / 'bin' / 'ffmpeg', "print('ffmpeg version 6.0')\n")


@pytest.fixture
def make_settings(tmp_path, fake_yt_dlp):
    """Factory for settings pointing at the fake tools and temporary directories"""
    def factory(**overrides) -> Settings:
        values = dict(
            yt_dlp_path=str(fake_yt_dlp),
            ffmpeg_path=str(tmp_path / 'missing' / 'ffmpeg'),
            output_dir=tmp_path / 'downloads',
            log_dir=tmp_path / 'logs',
            max_concurrent_downloads=3,
            download_timeout=0,
            stop_grace_period=1,
        )
        values.update(overrides)
        return Settings(**values)
    return factory


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def make_orchestrator():
    """Factory for orchestrators that are shut down after the test"""
    created: List[DownloadOrchestrator] = []

    def factory(config: Settings) -> DownloadOrchestrator:
        orchestrator = DownloadOrchestrator(config)
        created.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in created:
        await asyncio.wait_for(orchestrator.shutdown(), 15)
