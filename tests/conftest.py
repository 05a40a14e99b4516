"""Shared test fixtures for voicetrip tests."""

import io
import threading
from pathlib import Path

import httpx
import numpy as np
import pytest
import soundfile as sf

from voicetrip.core import capture as capture_module
from voicetrip.core.capture import CaptureSession
from voicetrip.core.config import ENDPOINT_ENV
from voicetrip.core.coordinator import SessionCoordinator
from voicetrip.core.errors import DecodeFailedError, DeviceUnavailableError
from voicetrip.core.upload import UploadClient

ENDPOINT = "http://voice.test/transcribe/"


class FakeCapture:
    """Capture backend that writes a fixed payload on close."""

    def __init__(self, power: float = -30.0, payload: bytes = b"fake-m4a-clip", fail: Exception = None):
        self.power = power
        self.payload = payload
        self.fail = fail
        self.opened = 0
        self.closed = 0
        self.path = None

    def open(self, path: Path) -> None:
        if self.fail is not None:
            raise self.fail
        self.opened += 1
        self.path = Path(path)

    def close(self) -> None:
        self.closed += 1
        self.path.write_bytes(self.payload)

    def current_power(self) -> float:
        return self.power


class SlowEncodeCapture(FakeCapture):
    """Capture backend that hands back an encode step held until ``gate`` is set."""

    def __init__(self, encode_error: Exception = None, **kwargs):
        super().__init__(**kwargs)
        self.encode_error = encode_error
        self.gate = threading.Event()
        self.encoded = 0

    def close(self):
        self.closed += 1
        gate, path, payload = self.gate, self.path, self.payload

        def encode():
            gate.wait(timeout=2)
            if self.encode_error is not None:
                raise self.encode_error
            path.write_bytes(payload)
            self.encoded += 1

        return encode


class FakePlayer:
    """Player that accepts WAV files and finishes when told to."""

    def __init__(self, fail: Exception = None):
        self.fail = fail
        self.played = []
        self.stopped = 0
        self._on_finished = None

    def play(self, path: Path, on_finished) -> None:
        data = Path(path).read_bytes()
        if self.fail is not None:
            raise self.fail
        if not data.startswith(b"RIFF"):
            raise DecodeFailedError(f"{path} is not a WAV file")
        self.played.append(data)
        self._on_finished = on_finished

    def stop(self) -> None:
        self.stopped += 1
        if self._on_finished is not None:
            callback, self._on_finished = self._on_finished, None
            callback(False)

    def finish(self, completed: bool = True) -> None:
        """Deliver completion from a foreign thread, like PortAudio does."""
        callback, self._on_finished = self._on_finished, None
        thread = threading.Thread(target=callback, args=(completed,))
        thread.start()
        thread.join()


def make_wav_bytes(duration: float = 0.05, rate: int = 16000) -> bytes:
    t = np.linspace(0, duration, int(rate * duration), endpoint=False)
    tone = (0.3 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
    buf = io.BytesIO()
    sf.write(buf, tone, rate, format='WAV', subtype='PCM_16')
    return buf.getvalue()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the endpoint variable and the capture resource from leaking between tests."""
    monkeypatch.delenv(ENDPOINT_ENV, raising=False)
    yield
    if capture_module._capture_resource.locked():
        capture_module._capture_resource.release()


@pytest.fixture
def wav_bytes():
    """Provide a short valid WAV clip."""
    return make_wav_bytes()


@pytest.fixture
def fake_capture():
    return FakeCapture()


@pytest.fixture
def fake_player():
    return FakePlayer()


@pytest.fixture
def capture_path(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return data_dir / "recording.m4a"


@pytest.fixture
def temp_path(tmp_path):
    return tmp_path / "tmp" / "output.wav"


@pytest.fixture
def make_coordinator(fake_capture, fake_player, capture_path, temp_path):
    """Build a coordinator around fake backends and an httpx mock handler."""

    def _make(handler, capture=None, player=None, **kwargs):
        client = UploadClient(ENDPOINT, transport=httpx.MockTransport(handler))
        return SessionCoordinator(
            capture_session=CaptureSession(capture or fake_capture, capture_path),
            upload_client=client,
            player=player or fake_player,
            temp_path=temp_path,
            level_interval=kwargs.pop('level_interval', 0.01),
            **kwargs,
        )

    return _make


@pytest.fixture
def unavailable_capture():
    return FakeCapture(fail=DeviceUnavailableError("Permission denied"))
