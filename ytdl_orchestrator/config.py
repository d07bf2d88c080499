"""
Manages loading, saving, and validating the orchestrator configuration using Pydantic.

This module defines the configuration schema as a Pydantic model (`Settings`)
and provides a manager class (`ConfigManager`) to handle persistence to a JSON file,
with environment variable overrides applied on load.
"""

import os
import json
import time
import re
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator, ValidationError

from .constants import (
    DEFAULT_OUTPUT_DIR, DEFAULT_JOB_LOG_DIR, DEFAULT_FILENAME_TEMPLATE, ENV_OVERRIDES
)


class Settings(BaseModel):
    """
    Defines the orchestrator's configuration schema using Pydantic.

    This class provides type hints, default values, and validation logic for all
    configuration settings.
    """
    yt_dlp_path: str = 'yt-dlp'
    ffmpeg_path: str = 'ffmpeg'
    output_dir: Path = DEFAULT_OUTPUT_DIR
    filename_template: str = DEFAULT_FILENAME_TEMPLATE
    max_concurrent_downloads: int = Field(default=3, ge=1, le=20)
    log_dir: Path = DEFAULT_JOB_LOG_DIR
    log_enabled: bool = True
    download_timeout: float = Field(default=3600, ge=0)
    audio_format: str = 'mp3'
    audio_quality: str = '192'
    stop_grace_period: float = Field(default=10, gt=0)
    info_timeout: float = Field(default=60, gt=0)
    log_level: str = 'INFO'

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Ensures log_level is a valid logging level string."""
        upper_value = value.upper()
        allowed_levels: List[str] = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if upper_value not in allowed_levels:
            raise ValueError(f"'{value}' is not a valid log level. Must be one of {allowed_levels}.")
        return upper_value

    @field_validator('filename_template')
    @classmethod
    def validate_filename_template(cls, value: str) -> str:
        """
        Validates the yt-dlp filename template.

        Raises:
            ValueError: If the template is invalid.
        """
        is_invalid = (
            not value or
            not re.search(r'%\((?:title|id)\)', value) or
            '..' in value or
            Path(value).is_absolute()
        )
        if is_invalid:
            raise ValueError("Filename template is invalid. It must include %(title)s or %(id)s and stay inside the output directory.")
        return value

    @field_validator('yt_dlp_path', 'ffmpeg_path', 'audio_format', 'audio_quality')
    @classmethod
    def validate_not_blank(cls, value: str) -> str:
        """Rejects empty tool paths and audio options."""
        value = value.strip()
        if not value:
            raise ValueError("Value cannot be empty.")
        return value


def apply_env_overrides(data: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Returns a copy of `data` with values from known environment variables applied.

    Args:
        data: Raw configuration values, e.g. as read from the JSON file.
        environ: The environment to read from. Defaults to `os.environ`.
    """
    environ = os.environ if environ is None else environ
    merged = dict(data)
    for env_name, field_name in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is not None and value != '':
            merged[field_name] = value
    return merged


class ConfigManager:
    """Handles loading and saving the configuration file."""
    def __init__(self, config_path: Path, environ: Optional[Mapping[str, str]] = None):
        """
        Initializes the ConfigManager.

        Args:
            config_path: The path to the configuration file.
            environ: Environment used for overrides. Defaults to `os.environ`.
        """
        self.config_path = config_path
        self.environ = environ
        self.logger = logging.getLogger(__name__)
        # Ensure the configuration directory exists
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Settings:
        """
        Loads config from file, applies environment overrides, validates, and returns it.

        If the file doesn't exist, is invalid, or an error occurs, a default
        configuration is returned. Invalid files are backed up.

        Returns:
            A validated Settings object.
        """
        if not self.config_path.exists():
            self.logger.info("Config file not found. Creating with default settings.")
            self.save(Settings())
            return self._with_env({})

        try:
            config_data = json.loads(self.config_path.read_text(encoding='utf-8'))
            Settings.model_validate(config_data)
        except (ValidationError, json.JSONDecodeError, IOError) as e:
            self.logger.error(f"Error loading {self.config_path}: {e}. Backing up and using defaults.")
            try:
                backup_path = self.config_path.with_suffix(f".{int(time.time())}.bak")
                self.config_path.rename(backup_path)
                self.logger.info(f"Backed up corrupted config to {backup_path}")
            except IOError as backup_e:
                self.logger.error(f"Could not back up corrupted config file: {backup_e}")
            return self._with_env({})
        return self._with_env(config_data)

    def _with_env(self, config_data: Dict[str, Any]) -> Settings:
        """Validates file data merged with environment overrides, ignoring bad overrides."""
        merged = apply_env_overrides(config_data, self.environ)
        try:
            return Settings.model_validate(merged)
        except ValidationError as e:
            self.logger.error(f"Ignoring invalid environment overrides: {e}")
            return Settings.model_validate(config_data)

    def save(self, settings: Settings):
        """
        Saves the provided settings object to the config file.

        Args:
            settings: The Settings object to save.
        """
        try:
            self.config_path.write_text(settings.model_dump_json(indent=4), encoding='utf-8')
        except IOError as e:
            self.logger.error(f"Error saving config file to {self.config_path}: {e}")
