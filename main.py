"""
Main entry point for the ytdl-orchestrator command line.

This script loads the configuration, sets up logging, builds the download
orchestrator and runs the requested command on an asyncio event loop.
"""

import sys
import json
import signal
import logging
import asyncio
from pathlib import Path
from types import TracebackType
from typing import Any, Coroutine, Dict, List, Type

import click

from ytdl_orchestrator._version import __version__
from ytdl_orchestrator.config import ConfigManager, Settings
from ytdl_orchestrator.constants import APP_LOG_DIR, CONFIG_FILE
from ytdl_orchestrator.dependencies import ToolProbe
from ytdl_orchestrator.downloads import DownloadOrchestrator
from ytdl_orchestrator.events import EventType, JobEvent
from ytdl_orchestrator.exceptions import OrchestratorError
from ytdl_orchestrator.jobs import JobRequest
from ytdl_orchestrator.logging_config import setup_logging
from ytdl_orchestrator.url_extractor import MediaInfoExtractor


def handle_exception(exc_type: Type[BaseException], exc_value: BaseException, exc_traceback: TracebackType):
    """Logs unhandled exceptions from synchronous code."""
    logger = logging.getLogger()
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Unhandled exception:", exc_info=(exc_type, exc_value, exc_traceback))


def handle_async_exception(loop, context):
    """Logs unhandled exceptions from asyncio tasks."""
    logger = logging.getLogger()
    msg = context.get("exception", context["message"])
    logger.critical(f"Caught exception from asyncio task: {msg}")


def run_async(coro: Coroutine[Any, Any, int]) -> int:
    """Runs `coro` with the asyncio exception handler installed."""
    async def main_with_exception_handler():
        asyncio.get_running_loop().set_exception_handler(handle_async_exception)
        return await coro

    try:
        return asyncio.run(main_with_exception_handler())
    except KeyboardInterrupt:
        logging.info("Interrupted by user.")
        return 130


@click.group()
@click.version_option(__version__, prog_name='ytdl-orchestrator')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path), default=CONFIG_FILE,
              show_default=True, help='Path to the JSON config file')
@click.option('--verbose', '-v', is_flag=True, help='Show debug output on the console')
@click.pass_context
def cli(ctx: click.Context, config_path: Path, verbose: bool):
    """Run yt-dlp downloads with a concurrency limit and live progress."""
    config = ConfigManager(config_path).load()
    setup_logging(APP_LOG_DIR, config.log_level, 'DEBUG' if verbose else 'WARNING')
    sys.excepthook = handle_exception
    ctx.obj = config


@cli.command()
@click.argument('urls', nargs=-1, required=True)
@click.option('--audio', '-a', is_flag=True, help='Extract audio only (requires ffmpeg)')
@click.option('--format', '-f', 'vformat', help='yt-dlp format selector')
@click.option('--template', '-t', help='Output filename template')
@click.option('--output', '-o', type=click.Path(file_okay=False, path_type=Path), help='Output directory')
@click.option('--concurrent', '-c', type=click.IntRange(1, 20), help='Concurrent downloads')
@click.option('--separate', '-s', is_flag=True, help='Run one job per URL instead of one job for all URLs')
@click.pass_obj
def download(config: Settings, urls, audio, vformat, template, output, concurrent, separate):
    """Download one or more URLs."""
    if concurrent:
        config = config.model_copy(update={'max_concurrent_downloads': concurrent})
    groups = [(url,) for url in urls] if separate else [tuple(urls)]
    requests = [
        JobRequest(urls=group, audio_only=audio, output_template=template, format=vformat, output_dir=output)
        for group in groups
    ]
    sys.exit(run_async(_run_downloads(config, requests)))


async def _run_downloads(config: Settings, requests: List[JobRequest]) -> int:
    """Submits every request and prints events until all jobs have finished."""
    orchestrator = DownloadOrchestrator(config)
    events = orchestrator.subscribe()

    stop_requested = asyncio.Event()
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, stop_requested.set)
    except (NotImplementedError, RuntimeError):
        pass  # No loop signal handlers on Windows; Ctrl+C ends the run instead.

    async def stop_on_interrupt():
        await stop_requested.wait()
        click.echo("Stopping all downloads...", err=True)
        await orchestrator.stop_all()

    remaining = set()
    try:
        for request in requests:
            job_id = await orchestrator.submit(request)
            remaining.add(job_id)
            click.echo(f"[{job_id[:8]}] Submitted {len(request.urls)} URL(s)")
    except OrchestratorError as e:
        click.echo(f"Error: {e}", err=True)
        await orchestrator.shutdown()
        return 1

    watcher = asyncio.create_task(stop_on_interrupt())
    failures = 0
    last_shown: Dict[str, int] = {}
    try:
        while remaining:
            event = await events.get()
            if event.job_id not in remaining:
                continue
            _print_event(event, last_shown)
            if event.type.is_terminal:
                remaining.discard(event.job_id)
                if event.type != EventType.COMPLETED:
                    failures += 1
    finally:
        watcher.cancel()
        await orchestrator.shutdown()
    return 1 if failures else 0


def _print_event(event: JobEvent, last_shown: Dict[str, int]):
    prefix = f"[{event.job_id[:8]}]"
    if event.type == EventType.PROGRESS:
        whole = int(event.percent or 0)
        if last_shown.get(event.job_id) != whole:
            last_shown[event.job_id] = whole
            click.echo(f"{prefix} {event.percent:5.1f}%")
    elif event.type == EventType.STDERR:
        for line in event.message.splitlines():
            if line.strip():
                click.echo(f"{prefix} {line}", err=True)
    else:
        click.echo(f"{prefix} {event.type.value}: {event.message}")


@cli.command()
@click.pass_obj
def check(config: Settings):
    """Check that yt-dlp and ffmpeg are installed."""
    report = asyncio.run(ToolProbe(config.yt_dlp_path, config.ffmpeg_path).check_installations())
    click.echo(f"yt-dlp:  {'installed' if report.yt_dlp_installed else 'NOT FOUND'} ({report.yt_dlp_version or 'unknown version'})")
    click.echo(f"ffmpeg:  {'installed' if report.ffmpeg_installed else 'NOT FOUND'}")
    sys.exit(0 if report.yt_dlp_installed else 1)


@cli.command()
@click.argument('urls', nargs=-1, required=True)
@click.pass_obj
def info(config: Settings, urls):
    """Print the media information yt-dlp reports for URLs, as JSON."""
    extractor = MediaInfoExtractor(config.yt_dlp_path, config.info_timeout)
    try:
        document = asyncio.run(extractor.get_media_info(list(urls)))
    except OrchestratorError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(document, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    cli()
