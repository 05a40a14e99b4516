"""Microphone capture for voicetrip.

Main public classes
-------------------
:class:`CaptureSession`
    Owns the lifecycle of one recording: ``start``, ``stop`` and the fixed
    file the clip is written to.  Only one session in the process may hold
    the capture resource at a time.

:class:`AudioCapture`
    Capability interface the session drives.  The coordinator and session
    never depend on a concrete audio API.

:class:`PyAudioCapture`
    PyAudio implementation.  Audio is collected in the PortAudio callback
    thread, which also computes the current power for the level meter.  The
    device is released when the capture is closed; encoding the clip is left
    to the caller as a separate, blocking step.  ``wav``/``flac``/``ogg`` are
    written with soundfile, ``m4a`` (AAC) and ``mp3`` with pydub, falling back
    to the ``ffmpeg`` command line tool.
"""

import datetime
import functools
import subprocess
import tempfile
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import numpy as np
import pyaudio
import soundfile as sf
from loguru import logger
from pydub import AudioSegment

from .config import CHANNEL, CHUNK, RATE
from .errors import AlreadyRecordingError, CaptureError, DeviceUnavailableError
from .processing import SILENCE_DB, calculate_db_level, detect_driver_type

# Formats soundfile cannot write: extension -> (container, codec, bitrate)
COMPRESSED_FORMATS = {
    'm4a': ('ipod', 'aac', '128k'),
    'mp3': ('mp3', 'libmp3lame', '192k'),
}

# Process-wide capture resource.  Held by the recording CaptureSession.
_capture_resource = threading.Lock()

# Blocking step that finishes writing a capture file
EncodeJob = Callable[[], None]


class CaptureState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"


class AudioCapture(Protocol):
    """Capability interface for a platform audio input."""

    def open(self, path: Path) -> None:
        """Acquire the input device and start capturing into *path*.

        Raises:
            DeviceUnavailableError: If the device cannot be opened.
        """
        ...

    def close(self) -> Optional[EncodeJob]:
        """Stop capturing and release the device.

        Returns the blocking step that writes *path*, or ``None`` when the
        file is already complete.
        """
        ...

    def current_power(self) -> float:
        """Return the latest average input power in dBFS."""
        ...


def list_input_devices(driver_filter: Optional[str] = None) -> List[Dict[str, Any]]:
    """List all available input audio devices.

    Args:
        driver_filter: Optional driver type to filter by ('pulse', 'alsa', 'jack', 'usb', 'default')

    Returns:
        List of dicts with keys: id, name, driver, channels, rate, is_default
    """
    audio = pyaudio.PyAudio()
    try:
        try:
            default_device_id = int(audio.get_default_input_device_info()['index'])
        except OSError:
            default_device_id = -1

        devices = []
        for i in range(audio.get_device_count()):
            device_info = audio.get_device_info_by_index(i)
            if device_info.get('maxInputChannels', 0) <= 0:
                continue
            device_name = device_info.get('name', 'Unknown')
            driver_type = detect_driver_type(device_name)

            # Skip if driver filter is specified and doesn't match
            if driver_filter and driver_type != driver_filter.lower():
                continue

            devices.append({
                'id': i,
                'name': device_name,
                'driver': driver_type,
                'channels': int(device_info.get('maxInputChannels', 0)),
                'rate': int(device_info.get('defaultSampleRate', 0)),
                'is_default': i == default_device_id,
            })
        return devices
    finally:
        audio.terminate()


def write_capture_file(pcm: bytes, path: Path, rate: int, channels: int = CHANNEL) -> None:
    """Encode int16 PCM into *path*, overwriting any previous file.

    The container is chosen from the file extension.  Blocking; the
    coordinator runs it in a worker thread.

    Raises:
        CaptureError: If encoding fails.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    extension = path.suffix.lower().lstrip('.')

    if extension in COMPRESSED_FORMATS:
        _write_compressed(pcm, path, rate, channels, *COMPRESSED_FORMATS[extension])
        return

    audio_data = np.frombuffer(pcm, dtype=np.int16)
    if channels > 1:
        audio_data = audio_data.reshape(-1, channels)
    # Normalize to float32 for soundfile (-1.0 to 1.0 range)
    audio_float = audio_data.astype(np.float32) / 32768.0
    try:
        sf.write(str(path), audio_float, rate, subtype='PCM_16')
    except (RuntimeError, TypeError, ValueError) as e:
        raise CaptureError(f"Failed to write {path}: {e}") from e


def _write_compressed(
    pcm: bytes,
    path: Path,
    rate: int,
    channels: int,
    container: str,
    codec: str,
    bitrate: str,
) -> None:
    """Encode with pydub, falling back to the ffmpeg command line tool."""
    try:
        audio_segment = AudioSegment(
            data=pcm,
            sample_width=2,  # 16-bit = 2 bytes
            frame_rate=rate,
            channels=channels,
        )
        audio_segment.export(str(path), format=container, codec=codec, bitrate=bitrate).close()
        return
    except Exception as e:
        logger.debug(f"Pydub encoding failed, trying ffmpeg: {e}")

    audio_data = np.frombuffer(pcm, dtype=np.int16)
    if channels > 1:
        audio_data = audio_data.reshape(-1, channels)
    audio_float = audio_data.astype(np.float32) / 32768.0
    _write_with_ffmpeg(audio_float, path, rate, ['-codec:a', codec, '-b:a', bitrate])


def _write_with_ffmpeg(audio_float: np.ndarray, path: Path, rate: int, codec_args: List[str]) -> None:
    """Encode through a temporary WAV file and the ffmpeg command line tool."""
    with tempfile.NamedTemporaryFile(suffix='.wav', delete=False) as tmp:
        tmp_wav = tmp.name
    sf.write(tmp_wav, audio_float, rate, subtype='PCM_16')

    try:
        cmd = ['ffmpeg', '-i', tmp_wav, *codec_args, '-y', str(path)]
        subprocess.run(cmd, check=True, capture_output=True, text=True)
        logger.debug(f"ffmpeg encoding complete for {path}")
    except FileNotFoundError:
        raise CaptureError(
            f"Encoding .{path.suffix.lstrip('.')} requires the 'ffmpeg' command line tool. "
            "Install it (e.g. apt-get install ffmpeg) or set recording.file_extension to wav."
        )
    except subprocess.CalledProcessError as e:
        logger.error(f"ffmpeg stderr: {e.stderr}")
        raise CaptureError(f"ffmpeg encoding failed: {e.stderr}")
    finally:
        try:
            Path(tmp_wav).unlink()
        except OSError as e:
            logger.debug(f"Error cleaning up temp file {tmp_wav}: {e}")


class PyAudioCapture:
    """Captures mono int16 audio from a PyAudio input device."""

    def __init__(
        self,
        rate: int = RATE,
        chunk: int = CHUNK,
        channels: int = CHANNEL,
        device_id: Optional[int] = None,
    ) -> None:
        """Initialize the capture backend.

        Args:
            rate: Sample rate in Hz
            chunk: Frames per PyAudio buffer; one power reading per buffer
            channels: Number of input channels
            device_id: Audio device ID to use, ``None`` for the system default
        """
        self._rate = rate
        self._chunk = chunk
        self._channels = channels
        self._device_id = device_id
        self._audio_interface: Any = None
        self._audio_stream: Any = None
        self._path: Optional[Path] = None
        self._recording_frames: List[bytes] = []
        self._current_db_level = SILENCE_DB

    def open(self, path: Path) -> None:
        """Open the input stream and start collecting audio for *path*."""
        self._path = Path(path)
        self._recording_frames = []
        self._current_db_level = SILENCE_DB
        self._audio_interface = pyaudio.PyAudio()
        try:
            self._audio_stream = self._audio_interface.open(
                format=pyaudio.paInt16,
                channels=self._channels,
                rate=self._rate,
                input=True,
                input_device_index=self._device_id,
                frames_per_buffer=self._chunk,
                stream_callback=self._fill_buffer,
            )
        except (OSError, ValueError) as e:
            self._audio_interface.terminate()
            self._audio_interface = None
            raise DeviceUnavailableError(f"Cannot open input device {self._device_id}: {e}") from e
        logger.info(f"Microphone opened (device: {self._device_id}, rate: {self._rate} Hz)")

    def close(self) -> Optional[EncodeJob]:
        """Close the stream and release PortAudio.

        Returns:
            The step that encodes the collected audio into the capture file.
        """
        if self._audio_stream:
            self._audio_stream.stop_stream()
            self._audio_stream.close()
            self._audio_stream = None
        if self._audio_interface:
            self._audio_interface.terminate()
            self._audio_interface = None
        self._current_db_level = SILENCE_DB
        logger.info('Microphone has been closed')

        if self._path is None:
            return None
        frames, self._recording_frames = self._recording_frames, []
        return functools.partial(self._save, b''.join(frames), self._path, len(frames))

    def _save(self, pcm: bytes, path: Path, buffers: int) -> None:
        write_capture_file(pcm, path, self._rate, self._channels)
        logger.info(f'Saved: {path} ({buffers} buffers)')

    def current_power(self) -> float:
        return self._current_db_level

    def _fill_buffer(
        self,
        in_data: bytes,
        frame_count: int,
        time_info: object,
        status_flags: object,
    ) -> tuple:
        """Collect data from the audio stream and update the power reading."""
        self._current_db_level = calculate_db_level(in_data, sample_width=2)
        self._recording_frames.append(in_data)
        return None, pyaudio.paContinue


class CaptureSession:
    """State machine for one recording: ``IDLE -start-> RECORDING -stop-> IDLE``.

    Args:
        capture: Audio input backend.
        path: Fixed file the clip is written to; overwritten by each capture.
    """

    def __init__(self, capture: AudioCapture, path: Path) -> None:
        self._capture = capture
        self._path = Path(path)
        self._state = CaptureState.IDLE
        self._started_at: Optional[datetime.datetime] = None
        self._last_duration_sec = 0.0
        self._completed = False

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def recording(self) -> bool:
        return self._state == CaptureState.RECORDING

    @property
    def has_capture(self) -> bool:
        """``True`` once at least one start/stop cycle has finished."""
        return self._completed

    @property
    def started_at(self) -> Optional[datetime.datetime]:
        return self._started_at

    @property
    def last_duration_sec(self) -> float:
        return self._last_duration_sec

    def start(self) -> None:
        """Acquire the capture resource and start recording.

        Raises:
            AlreadyRecordingError: If this session is already recording.
            DeviceUnavailableError: If the resource is held elsewhere or the
                device cannot be opened.  The session stays idle.
        """
        if self._state == CaptureState.RECORDING:
            raise AlreadyRecordingError()
        if not _capture_resource.acquire(blocking=False):
            raise DeviceUnavailableError("Capture resource is held by another session")

        try:
            self._capture.open(self._path)
        except DeviceUnavailableError:
            _capture_resource.release()
            raise
        except Exception as e:
            _capture_resource.release()
            raise DeviceUnavailableError(str(e)) from e

        self._state = CaptureState.RECORDING
        self._started_at = datetime.datetime.now()
        logger.info(f'Recording started: {self._path}')

    def stop(self) -> Optional[EncodeJob]:
        """Stop recording and release the capture resource.  No-op when idle.

        Returns:
            The backend's blocking encode step, if the clip still has to be
            written.  The resource is already released when it runs.

        Raises:
            CaptureError: If the backend failed to close.  The resource is
                released and the session is idle regardless.
        """
        if self._state == CaptureState.IDLE:
            return None
        try:
            encode = self._capture.close()
        finally:
            _capture_resource.release()
            self._state = CaptureState.IDLE
            if self._started_at is not None:
                self._last_duration_sec = (datetime.datetime.now() - self._started_at).total_seconds()
        self._completed = True
        logger.info(f'Recording stopped after {self._last_duration_sec:.1f}s: {self._path}')
        return encode

    def current_file_path(self) -> Path:
        """Return the capture file path.

        The file only holds a clip after a start/stop cycle; see
        :attr:`has_capture`.
        """
        return self._path

    def current_power(self) -> float:
        """Return the backend's power reading, or silence when idle."""
        if self._state != CaptureState.RECORDING:
            return SILENCE_DB
        return self._capture.current_power()
