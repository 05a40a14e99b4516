"""Local JSONL round-trip log for voicetrip.

Appends structured JSON Lines entries to a log file next to the capture file,
recording each completed capture and each submitted round trip.

Record types
------------
``capture``
    Written once per finished capture with the file path, duration and size.

``submit`` (event=``"start"``)
    Written when a round trip begins, with the clip that is uploaded.

``submit`` (event=``"end"``)
    Written when the round trip ends: ``status`` is ``"ok"`` once playback
    started, otherwise the error code that ended it.

Example log lines::

    {"type":"capture","file_path":"/home/me/.local/share/voicetrip/recording.m4a","started_at":"2026-10-19T14:30:22","duration_sec":3.4,"size_bytes":28311}
    {"type":"submit","event":"start","submit_id":1,"endpoint":"http://127.0.0.1:8000/transcribe/","file_path":"/home/me/.local/share/voicetrip/recording.m4a","started_at":"2026-10-19T14:30:27"}
    {"type":"submit","event":"end","submit_id":1,"status":"ok","ended_at":"2026-10-19T14:30:29","elapsed_sec":1.92,"bytes_received":91244,"transcription":null,"response_text":null}
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


class RoundTripLogger:
    """Appends JSONL log entries for captures and round trips.

    Thread-safe: a single :class:`threading.Lock` serialises file writes.

    Args:
        log_path: Path to the ``.jsonl`` log file.  Parent directories are
            created automatically.
    """

    def __init__(self, log_path: Path) -> None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = log_path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write_capture(
        self,
        file_path: str,
        started_at: Optional[datetime],
        duration_sec: float,
        size_bytes: Optional[int],
    ) -> None:
        """Append a capture record.

        Args:
            file_path: Path of the capture file.
            started_at: When recording started.
            duration_sec: Wall-clock recording duration in seconds.
            size_bytes: Size of the written file, ``None`` if it is missing.
        """
        self._append({
            "type": "capture",
            "file_path": file_path,
            "started_at": _iso(started_at),
            "duration_sec": round(duration_sec, 3),
            "size_bytes": size_bytes,
        })

    def write_submit_start(
        self,
        submit_id: int,
        endpoint: str,
        file_path: str,
        started_at: Optional[datetime] = None,
    ) -> None:
        """Append a submit-start record."""
        self._append({
            "type": "submit",
            "event": "start",
            "submit_id": submit_id,
            "endpoint": endpoint,
            "file_path": file_path,
            "started_at": _iso(started_at),
        })

    def write_submit_end(
        self,
        submit_id: int,
        status: str,
        elapsed_sec: float,
        bytes_received: int = 0,
        transcription: Optional[str] = None,
        response_text: Optional[str] = None,
        error: Optional[str] = None,
        ended_at: Optional[datetime] = None,
    ) -> None:
        """Append a submit-end record.

        Args:
            submit_id: Identifier matching the earlier start record.
            status: ``"ok"`` or the error code that ended the round trip.
            elapsed_sec: Seconds from submit to playback start or failure.
            bytes_received: Size of the audio returned by the service.
            transcription: Transcription from a JSON envelope, if any.
            response_text: Response text from a JSON envelope, if any.
            error: Error detail when the round trip failed.
            ended_at: End time.  Defaults to ``datetime.now()``.
        """
        record = {
            "type": "submit",
            "event": "end",
            "submit_id": submit_id,
            "status": status,
            "ended_at": _iso(ended_at),
            "elapsed_sec": round(elapsed_sec, 3),
            "bytes_received": bytes_received,
            "transcription": transcription,
            "response_text": response_text,
        }
        if error is not None:
            record["error"] = error
        self._append(record)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, record: dict) -> None:
        """Serialise *record* as JSON and append it to the log file."""
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)


def _iso(dt: Optional[datetime]) -> str:
    """Return a compact ISO 8601 string for *dt*, defaulting to now."""
    if dt is None:
        dt = datetime.now()
    return dt.replace(microsecond=0).isoformat()
