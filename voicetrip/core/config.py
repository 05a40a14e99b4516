"""Configuration management for voicetrip.

This module provides configuration constants and the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.voicetrip.yml`` in the working directory).

Audio constants
---------------
- ``RATE``            – capture sample rate in Hz (default 44 100)
- ``CHUNK``           – PyAudio buffer size in frames (one level reading each)
- ``CHANNEL``         – number of input channels (default 1 / mono)
- ``FILE_EXTENSION``  – capture container (default ``'m4a'``, AAC via ffmpeg)
- ``CAPTURE_NAME``    – stem of the fixed capture file (``recording``)
- ``OUTPUT_DIR``      – directory holding the capture file

Level meter constants
---------------------
- ``LEVEL_COUNT``     – number of slots in a level frame (20)
- ``LEVEL_INTERVAL``  – seconds between level frames (0.1)
- ``LEVEL_FLOOR``     – minimum slot value, also the idle baseline (0.1)
- ``LEVEL_DB_RANGE``  – dB span mapped onto ``[0, 1]`` (60 → ``[-60, 0]``)

Server
------
The upload endpoint has **no default**.  It must be provided either in the
``server:`` section of ``.voicetrip.yml`` or through the
``VOICETRIP_ENDPOINT`` environment variable:

.. code-block:: yaml

    recording:
      rate: 44100
      file_extension: m4a
      output_dir: ~/.local/share/voicetrip
    levels:
      count: 20
      interval: 0.1
    server:
      endpoint: http://127.0.0.1:8000/transcribe/
      timeout: 30
      response_format: auto
    playback:
      temp_file: /tmp/output.wav
    log:
      file: roundtrips.jsonl
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError

# Audio recording parameters
RATE = 44100
CHUNK = int(RATE / 20)  # 50ms per metering buffer
CHANNEL = 1
FILE_EXTENSION = 'm4a'  # 'm4a'/'mp3' go through ffmpeg, 'wav'/'flac'/'ogg' through soundfile
CAPTURE_NAME = 'recording'
OUTPUT_DIR = '~/.local/share/voicetrip'

# Sample width enum (from pyaudio)
SAMPLE_WIDTH_INT16 = 2

# Level meter
LEVEL_COUNT = 20
LEVEL_INTERVAL = 0.1
LEVEL_FLOOR = 0.1
LEVEL_DB_RANGE = 60.0

# Server
ENDPOINT_ENV = 'VOICETRIP_ENDPOINT'
REQUEST_TIMEOUT = 30.0
RESPONSE_FORMATS = ('auto', 'audio', 'json')
RESPONSE_FORMAT = 'auto'

# Playback
TEMP_PLAYBACK_NAME = 'output.wav'

CONFIG_FILE = '.voicetrip.yml'

# Local round-trip log
LOG_FILE = 'roundtrips.jsonl'


class AppConfig:
    """Application configuration management."""

    def __init__(self) -> None:
        """Initialize configuration with defaults."""
        self._config: Dict[str, Any] = {
            'rate': RATE,
            'chunk': CHUNK,
            'channel': CHANNEL,
            'file_extension': FILE_EXTENSION,
            'output_dir': OUTPUT_DIR,
            'sample_width': SAMPLE_WIDTH_INT16,
            'device_id': None,
        }
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration from project root."""
        config_path = Path.cwd() / CONFIG_FILE
        if not config_path.exists():
            return

        content = yaml.safe_load(config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {CONFIG_FILE} must be a mapping")

        recording_config = content.get('recording')
        if isinstance(recording_config, dict):
            for key in self._config.keys():
                if key in recording_config:
                    self._config[key] = recording_config[key]

        for key, value in content.items():
            if key == 'recording':
                continue
            self._config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self._config[key] = value

    def _section(self, name: str) -> Dict[str, Any]:
        section = self._config.get(name)
        if isinstance(section, dict):
            return section
        return {}

    def get_output_dir(self) -> Path:
        """Get output directory as Path object, creating it if needed.

        Returns:
            Output directory path
        """
        output_dir = self._config.get('output_dir', OUTPUT_DIR)
        path = Path(str(output_dir)).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_capture_path(self) -> Path:
        """Return the fixed path the capture session writes to."""
        extension = str(self._config.get('file_extension', FILE_EXTENSION)).lstrip('.')
        return self.get_output_dir() / f"{CAPTURE_NAME}.{extension}"

    def get_server_config(self) -> Dict[str, Any]:
        """Return the ``server`` mapping with defaults filled in.

        The ``endpoint`` key is taken from ``VOICETRIP_ENDPOINT`` when that
        environment variable is set, otherwise from the YAML file.  It is
        ``None`` when neither provides a value.

        Raises:
            ConfigurationError: If ``response_format`` is not one of
                ``auto``, ``audio`` or ``json``.
        """
        server = dict(self._section('server'))
        endpoint = os.environ.get(ENDPOINT_ENV) or server.get('endpoint') or None
        response_format = str(server.get('response_format', RESPONSE_FORMAT)).lower()
        if response_format not in RESPONSE_FORMATS:
            raise ConfigurationError(
                f"server.response_format must be one of {', '.join(RESPONSE_FORMATS)}, "
                f"got {response_format!r}"
            )
        return {
            'endpoint': str(endpoint) if endpoint else None,
            'timeout': float(server.get('timeout', REQUEST_TIMEOUT)),
            'response_format': response_format,
        }

    def get_endpoint(self) -> str:
        """Return the configured upload endpoint.

        Raises:
            ConfigurationError: If no endpoint is configured.
        """
        endpoint = self.get_server_config()['endpoint']
        if not endpoint:
            raise ConfigurationError(
                f"No upload endpoint configured. Set `server.endpoint` in {CONFIG_FILE} "
                f"or the {ENDPOINT_ENV} environment variable."
            )
        return endpoint

    def get_level_config(self) -> Dict[str, Any]:
        """Return level meter settings (``count``, ``interval``, ``floor``, ``db_range``)."""
        levels = self._section('levels')
        return {
            'count': int(levels.get('count', LEVEL_COUNT)),
            'interval': float(levels.get('interval', LEVEL_INTERVAL)),
            'floor': float(levels.get('floor', LEVEL_FLOOR)),
            'db_range': float(levels.get('db_range', LEVEL_DB_RANGE)),
        }

    def get_temp_playback_path(self) -> Path:
        """Return the fixed temporary file used for server audio playback."""
        temp_file = self._section('playback').get('temp_file')
        if temp_file:
            return Path(str(temp_file)).expanduser()
        return Path(tempfile.gettempdir()) / TEMP_PLAYBACK_NAME

    def get_log_path(self, output_dir: Optional[Path] = None) -> Path:
        """Return the round-trip log file path.

        The log file name is taken from the ``log.file`` key in
        ``.voicetrip.yml`` when present, otherwise from the :data:`LOG_FILE`
        constant.  The file is placed inside *output_dir* (defaults to
        :meth:`get_output_dir`).

        Args:
            output_dir: Directory that will contain the log file.  When
                ``None`` the configured ``output_dir`` is used.

        Returns:
            Path including the log filename.
        """
        log_file = self._section('log').get('file', LOG_FILE)
        base = Path(output_dir) if output_dir is not None else self.get_output_dir()
        return base / log_file
