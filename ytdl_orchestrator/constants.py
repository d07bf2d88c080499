"""
Defines application-wide constants, default paths and subprocess behaviour.
"""

import sys
import subprocess
from pathlib import Path

# In development, the app path is the project root (parent of the package).
APP_PATH = Path(__file__).resolve().parent.parent

# Use a user-specific directory for configuration to avoid permission issues.
USER_DATA_DIR: Path = Path.home() / '.ytdl-orchestrator'
CONFIG_FILE: Path = USER_DATA_DIR / 'config.json'
APP_LOG_DIR: Path = USER_DATA_DIR / 'logs'

DEFAULT_OUTPUT_DIR: Path = APP_PATH / 'downloads'
DEFAULT_JOB_LOG_DIR: Path = APP_PATH / 'logs'
DEFAULT_FILENAME_TEMPLATE = '%(title)s-%(id)s.%(ext)s'

# Centralize subprocess creation flags to avoid console windows on Windows.
SUBPROCESS_CREATION_FLAGS = subprocess.CREATE_NO_WINDOW if sys.platform == 'win32' else 0

# Fixed leading flags of every yt-dlp download command.
BASE_YT_DLP_FLAGS = ('--ignore-errors', '--restrict-filenames')

VERSION_CHECK_TIMEOUT = 15  # seconds
STREAM_READ_SIZE = 4096  # bytes per stdout/stderr read

# Environment variables honoured on top of the JSON config file.
ENV_OVERRIDES = {
    'YTDLP_BIN': 'yt_dlp_path',
    'EXTRACTER': 'ffmpeg_path',
    'OUTPUT_FOLDER': 'output_dir',
    'LOG_FOLDER': 'log_dir',
    'OUTFILENAME': 'filename_template',
    'MAX_DOWNLOADS': 'max_concurrent_downloads',
    'LOG_ENABLED': 'log_enabled',
    'DOWNLOAD_TIMEOUT': 'download_timeout',
    'AUDIO_FORMAT': 'audio_format',
    'AUDIO_QUALITY': 'audio_quality',
}
