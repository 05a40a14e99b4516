"""Exception hierarchy for voicetrip.

All application-specific exceptions inherit from :class:`VoicetripError` so the
CLI can report any failure of a round trip with a single ``except`` clause.

==========================  ==============================================
Family                      Raised by
==========================  ==============================================
:class:`CaptureError`       :class:`~voicetrip.core.capture.CaptureSession`
:class:`UploadError`        :class:`~voicetrip.core.upload.UploadClient`
:class:`PlaybackError`      :class:`~voicetrip.core.playback.PlaybackController`
:class:`CleanupError`       temp-file cleanup (logged, never raised upward)
==========================  ==============================================
"""

from typing import Optional


class VoicetripError(Exception):
    """Base exception for all voicetrip errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "VOICETRIP_ERROR",
    ) -> None:
        self.detail = detail
        self.code = code
        super().__init__(detail)


class ConfigurationError(VoicetripError):
    """Raised when a required configuration value is missing or invalid."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail=detail, code="CONFIGURATION_ERROR")


class BusyError(VoicetripError):
    """Raised when ``submit`` is called while a round trip is in flight."""

    def __init__(self) -> None:
        super().__init__(
            detail="A round trip is already in progress",
            code="BUSY",
        )


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

class CaptureError(VoicetripError):
    """Base class for capture session failures."""

    def __init__(self, detail: str = "Capture failed", code: str = "CAPTURE_ERROR") -> None:
        super().__init__(detail=detail, code=code)


class DeviceUnavailableError(CaptureError):
    """Raised when the capture resource cannot be acquired."""

    def __init__(self, detail: str = "Audio input device is unavailable") -> None:
        super().__init__(detail=detail, code="DEVICE_UNAVAILABLE")


class AlreadyRecordingError(CaptureError):
    """Raised when ``start`` is called on a session that is already recording."""

    def __init__(self) -> None:
        super().__init__(detail="A capture session is already recording", code="ALREADY_RECORDING")


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

class UploadError(VoicetripError):
    """Base class for upload failures."""

    def __init__(self, detail: str = "Upload failed", code: str = "UPLOAD_ERROR") -> None:
        super().__init__(detail=detail, code=code)


class FileUnreadableError(UploadError):
    """Raised when the captured file is missing or cannot be read."""

    def __init__(self, path: object, reason: str = "") -> None:
        self.path = path
        detail = f"Capture file is not readable: {path}"
        if reason:
            detail += f" ({reason})"
        super().__init__(detail=detail, code="FILE_UNREADABLE")


class TransportError(UploadError):
    """Raised on DNS, connection, timeout and other transport failures."""

    def __init__(self, message: str, code: str = "TRANSPORT_ERROR") -> None:
        self.message = message
        super().__init__(detail=message, code=code)


class ServerStatusError(TransportError):
    """Raised when the service answers with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        message = f"Server returned HTTP {status_code}"
        if body:
            message += f": {body[:200]}"
        super().__init__(message, code="SERVER_STATUS")


class EmptyResponseError(UploadError):
    """Raised when the service response carries no audio."""

    def __init__(self, detail: str = "Server returned an empty response") -> None:
        super().__init__(detail=detail, code="EMPTY_RESPONSE")


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------

class PlaybackError(VoicetripError):
    """Base class for playback failures."""

    def __init__(self, detail: str = "Playback failed", code: str = "PLAYBACK_ERROR") -> None:
        super().__init__(detail=detail, code=code)


class DecodeFailedError(PlaybackError):
    """Raised when the returned bytes are not a playable audio format."""

    def __init__(self, detail: str = "Response audio could not be decoded") -> None:
        super().__init__(detail=detail, code="DECODE_FAILED")


class InitFailedError(PlaybackError):
    """Raised when the output device or player cannot be initialised."""

    def __init__(self, detail: str = "Audio player could not be initialised") -> None:
        super().__init__(detail=detail, code="INIT_FAILED")


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------

class CleanupError(VoicetripError):
    """Base class for cleanup failures. Logged only."""

    def __init__(self, detail: str = "Cleanup failed", code: str = "CLEANUP_ERROR") -> None:
        super().__init__(detail=detail, code=code)


class DeleteFailedError(CleanupError):
    """Raised internally when the temporary playback file cannot be deleted."""

    def __init__(self, path: object, reason: Optional[str] = None) -> None:
        self.path = path
        detail = f"Failed to delete temporary file {path}"
        if reason:
            detail += f": {reason}"
        super().__init__(detail=detail, code="DELETE_FAILED")
