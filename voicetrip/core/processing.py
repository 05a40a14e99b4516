"""Audio processing utilities for voicetrip.

This module provides level calculation and normalization for the live meter,
terminal rendering of a level frame, MIME type lookup for uploads, and
driver detection for device listings.
"""

from pathlib import Path
from typing import Sequence

import numpy as np
from loguru import logger

# Average power reported for digital silence (dBFS)
SILENCE_DB = -160.0

_BLOCKS = '▁▂▃▄▅▆▇█'

_MIME_TYPES = {
    'm4a': 'audio/m4a',
    'mp3': 'audio/mpeg',
    'wav': 'audio/wav',
    'flac': 'audio/flac',
    'ogg': 'audio/ogg',
}


def calculate_db_level(audio_data: bytes, sample_width: int = 2) -> float:
    """Calculate the average power of a buffer in dBFS.

    Args:
        audio_data: Raw audio bytes
        sample_width: Number of bytes per sample (2 for int16)

    Returns:
        dB level relative to full scale, in the ``[-160, 0]`` range
    """
    try:
        audio_array = np.frombuffer(audio_data, dtype=np.int16)
        if audio_array.size == 0:
            return SILENCE_DB

        rms = np.sqrt(np.mean(audio_array.astype(float) ** 2))

        # Reference is max int16 value
        max_int16 = 32768
        if rms > 0:
            db = 20 * np.log10(rms / max_int16)
            return float(max(SILENCE_DB, min(0.0, db)))
        return SILENCE_DB
    except Exception as e:
        logger.debug(f"Error calculating dB level: {e}")
        return SILENCE_DB


def normalize_level(db_level: float, floor: float = 0.1, db_range: float = 60.0) -> float:
    """Map a dBFS reading onto a meter value.

    ``[-db_range, 0]`` dB maps linearly onto ``[0, 1]``, then the result is
    clamped to ``[floor, 1.0]`` so meter bars never disappear.

    Args:
        db_level: Average power in dBFS
        floor: Minimum returned value
        db_range: Width of the dB window mapped onto the meter

    Returns:
        Normalized level in ``[floor, 1.0]``
    """
    value = (db_level + db_range) / db_range
    return max(floor, min(1.0, value))


def draw_level_frame(levels: Sequence[float]) -> str:
    """Render a level frame as a row of block characters.

    Args:
        levels: Normalized values in ``[0, 1]``

    Returns:
        One block character per slot, taller for louder slots
    """
    top = len(_BLOCKS) - 1
    return ''.join(_BLOCKS[int(round(max(0.0, min(1.0, v)) * top))] for v in levels)


def mime_type_for(path: Path) -> str:
    """Return the upload MIME type for an audio file, based on its extension."""
    extension = Path(path).suffix.lower().lstrip('.')
    return _MIME_TYPES.get(extension, 'application/octet-stream')


def detect_driver_type(device_name: str) -> str:
    """Detect the audio driver type from device name.

    Args:
        device_name: The name of the audio device

    Returns:
        Driver type: 'pulse', 'alsa', 'jack', 'default', etc.
    """
    name_lower = device_name.lower()

    if 'pulse' in name_lower or 'pipewire' in name_lower:
        return 'pulse'
    elif 'alsa' in name_lower or 'hw:' in name_lower or 'plughw' in name_lower:
        return 'alsa'
    elif 'jack' in name_lower:
        return 'jack'
    elif 'usb' in name_lower:
        return 'usb'
    else:
        return 'default'
