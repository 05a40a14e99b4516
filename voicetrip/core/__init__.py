"""Core business logic for voicetrip."""

from .capture import AudioCapture, CaptureSession, CaptureState, PyAudioCapture, list_input_devices
from .config import AppConfig
from .coordinator import SessionCoordinator
from .errors import (
    AlreadyRecordingError,
    BusyError,
    CaptureError,
    CleanupError,
    ConfigurationError,
    DecodeFailedError,
    DeleteFailedError,
    DeviceUnavailableError,
    EmptyResponseError,
    FileUnreadableError,
    InitFailedError,
    PlaybackError,
    ServerStatusError,
    TransportError,
    UploadError,
    VoicetripError,
)
from .levels import LevelSampler, baseline_frame
from .log import RoundTripLogger
from .playback import AudioPlayer, PlaybackController, SoundDevicePlayer
from .processing import calculate_db_level, detect_driver_type, draw_level_frame, mime_type_for, normalize_level
from .state import LoopHandoff, SessionState, StatePublisher
from .upload import ServerAudio, UploadClient, UploadRequest, generate_boundary

__all__ = [
    "AppConfig",
    "SessionCoordinator",
    "CaptureSession",
    "CaptureState",
    "AudioCapture",
    "PyAudioCapture",
    "list_input_devices",
    "LevelSampler",
    "baseline_frame",
    "UploadClient",
    "UploadRequest",
    "ServerAudio",
    "generate_boundary",
    "PlaybackController",
    "AudioPlayer",
    "SoundDevicePlayer",
    "SessionState",
    "StatePublisher",
    "LoopHandoff",
    "RoundTripLogger",
    "calculate_db_level",
    "normalize_level",
    "draw_level_frame",
    "mime_type_for",
    "detect_driver_type",
    "VoicetripError",
    "ConfigurationError",
    "BusyError",
    "CaptureError",
    "DeviceUnavailableError",
    "AlreadyRecordingError",
    "UploadError",
    "FileUnreadableError",
    "TransportError",
    "ServerStatusError",
    "EmptyResponseError",
    "PlaybackError",
    "DecodeFailedError",
    "InitFailedError",
    "CleanupError",
    "DeleteFailedError",
]
