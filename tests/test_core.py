"""Core functionality tests for voicetrip."""

import json

import pytest
import yaml

from voicetrip.core import (
    AppConfig,
    ConfigurationError,
    calculate_db_level,
    detect_driver_type,
    draw_level_frame,
    mime_type_for,
    normalize_level,
)
from voicetrip.core.config import ENDPOINT_ENV, LOG_FILE
from voicetrip.core.log import RoundTripLogger


def test_calculate_db_level_silence():
    """Digital silence reports the -160 dB floor."""
    import numpy as np

    audio_data = np.zeros(4410, dtype=np.int16).tobytes()
    assert calculate_db_level(audio_data) == -160.0


def test_calculate_db_level_full_scale():
    """A full-scale square wave sits at 0 dBFS."""
    import numpy as np

    audio_array = np.full(4410, 32767, dtype=np.int16)
    audio_array[::2] = -32768
    db_level = calculate_db_level(audio_array.tobytes())
    assert -0.01 <= db_level <= 0.0


def test_calculate_db_level_half_scale():
    import numpy as np

    audio_array = np.full(4410, 16384, dtype=np.int16)
    db_level = calculate_db_level(audio_array.tobytes())
    assert db_level == pytest.approx(-6.02, abs=0.01)


def test_calculate_db_level_empty_buffer():
    assert calculate_db_level(b"") == -160.0


@pytest.mark.parametrize(
    "db_level, expected",
    [
        (0.0, 1.0),
        (5.0, 1.0),
        (-30.0, 0.5),
        (-54.0, 0.1),
        (-60.0, 0.1),
        (-160.0, 0.1),
    ],
)
def test_normalize_level(db_level, expected):
    """dB readings map onto [0.1, 1.0] through the [-60, 0] window."""
    assert normalize_level(db_level) == pytest.approx(expected)


def test_normalize_level_custom_floor_and_range():
    assert normalize_level(-20.0, floor=0.0, db_range=40.0) == pytest.approx(0.5)
    assert normalize_level(-80.0, floor=0.2, db_range=40.0) == pytest.approx(0.2)


def test_draw_level_frame():
    assert draw_level_frame([0.0, 1.0]) == "▁█"
    assert len(draw_level_frame([0.1] * 20)) == 20
    assert draw_level_frame([]) == ""


def test_mime_type_for():
    from pathlib import Path

    assert mime_type_for(Path("recording.m4a")) == "audio/m4a"
    assert mime_type_for(Path("clip.WAV")) == "audio/wav"
    assert mime_type_for(Path("clip.bin")) == "application/octet-stream"


def test_detect_driver_type():
    """Test audio driver type detection."""
    assert detect_driver_type("PulseAudio") == "pulse"
    assert detect_driver_type("ALSA") == "alsa"
    assert detect_driver_type("JACK") == "jack"
    assert detect_driver_type("USB Device") == "usb"
    assert detect_driver_type("Unknown") == "default"


# ---------------------------------------------------------------------------
# AppConfig tests
# ---------------------------------------------------------------------------

def test_app_config_defaults(tmp_path, monkeypatch):
    """Defaults apply when no YAML file is present."""
    monkeypatch.chdir(tmp_path)
    config = AppConfig()

    assert config.get("rate") == 44100
    assert config.get("channel") == 1
    assert config.get("file_extension") == "m4a"

    config.set("rate", 48000)
    assert config.get("rate") == 48000

    levels = config.get_level_config()
    assert levels == {"count": 20, "interval": 0.1, "floor": 0.1, "db_range": 60.0}
    assert config.get_temp_playback_path().name == "output.wav"


def test_app_config_loads_yaml(tmp_path, monkeypatch):
    """Test YAML config loading from project root."""
    config_file = tmp_path / ".voicetrip.yml"
    config_file.write_text(
        yaml.safe_dump(
            {
                "recording": {
                    "rate": 22050,
                    "output_dir": str(tmp_path / "custom"),
                    "file_extension": "wav",
                },
                "levels": {"count": 8, "interval": 0.05},
                "server": {
                    "endpoint": "http://10.0.0.5:8000/transcribe/",
                    "timeout": 5,
                    "response_format": "json",
                },
                "playback": {"temp_file": str(tmp_path / "play.wav")},
            }
        ),
        encoding="utf-8",
    )

    monkeypatch.chdir(tmp_path)
    config = AppConfig()

    assert config.get("rate") == 22050
    assert config.get_capture_path() == tmp_path / "custom" / "recording.wav"
    assert (tmp_path / "custom").is_dir()
    assert config.get_level_config()["count"] == 8
    assert config.get_level_config()["interval"] == 0.05
    assert config.get_endpoint() == "http://10.0.0.5:8000/transcribe/"
    server = config.get_server_config()
    assert server["timeout"] == 5.0
    assert server["response_format"] == "json"
    assert config.get_temp_playback_path() == tmp_path / "play.wav"


def test_app_config_rejects_non_mapping(tmp_path, monkeypatch):
    (tmp_path / ".voicetrip.yml").write_text("- a\n- b\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ValueError, match="must be a mapping"):
        AppConfig()


def test_endpoint_is_required(tmp_path, monkeypatch):
    """No endpoint is guessed when none is configured."""
    monkeypatch.chdir(tmp_path)
    config = AppConfig()
    assert config.get_server_config()["endpoint"] is None
    with pytest.raises(ConfigurationError, match="No upload endpoint configured"):
        config.get_endpoint()


def test_endpoint_from_environment_overrides_yaml(tmp_path, monkeypatch):
    (tmp_path / ".voicetrip.yml").write_text(
        yaml.safe_dump({"server": {"endpoint": "http://yaml.test/"}}), encoding="utf-8"
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(ENDPOINT_ENV, "http://env.test/")
    assert AppConfig().get_endpoint() == "http://env.test/"


def test_invalid_response_format(tmp_path, monkeypatch):
    (tmp_path / ".voicetrip.yml").write_text(
        yaml.safe_dump({"server": {"response_format": "xml"}}), encoding="utf-8"
    )
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigurationError, match="response_format"):
        AppConfig().get_server_config()


# ---------------------------------------------------------------------------
# RoundTripLogger tests
# ---------------------------------------------------------------------------

def test_log_creates_file(tmp_path):
    """RoundTripLogger creates the log file on first write."""
    log_path = tmp_path / "subdir" / "roundtrips.jsonl"
    rl = RoundTripLogger(log_path)
    rl.write_capture(file_path="recording.m4a", started_at=None, duration_sec=1.0, size_bytes=10)
    assert log_path.exists()


def test_log_submit_roundtrip(tmp_path):
    """submit-start and submit-end records contain all expected fields."""
    log_path = tmp_path / "roundtrips.jsonl"
    rl = RoundTripLogger(log_path)
    rl.write_submit_start(submit_id=1, endpoint="http://voice.test/", file_path="recording.m4a")
    rl.write_submit_end(
        submit_id=1,
        status="ok",
        elapsed_sec=1.23456,
        bytes_received=2048,
        transcription="hola",
        response_text="hello",
    )

    lines = [json.loads(line) for line in log_path.read_text().splitlines() if line.strip()]
    assert len(lines) == 2

    start = lines[0]
    assert start["type"] == "submit"
    assert start["event"] == "start"
    assert start["submit_id"] == 1
    assert start["endpoint"] == "http://voice.test/"
    assert "started_at" in start

    end = lines[1]
    assert end["event"] == "end"
    assert end["status"] == "ok"
    assert end["elapsed_sec"] == 1.235
    assert end["bytes_received"] == 2048
    assert end["transcription"] == "hola"
    assert end["response_text"] == "hello"
    assert "error" not in end


def test_log_submit_failure_records_error(tmp_path):
    log_path = tmp_path / "roundtrips.jsonl"
    rl = RoundTripLogger(log_path)
    rl.write_submit_end(submit_id=3, status="TRANSPORT_ERROR", elapsed_sec=0.5, error="refused")

    record = json.loads(log_path.read_text().splitlines()[0])
    assert record["status"] == "TRANSPORT_ERROR"
    assert record["error"] == "refused"
    assert record["bytes_received"] == 0


def test_log_capture_entry(tmp_path):
    log_path = tmp_path / "roundtrips.jsonl"
    rl = RoundTripLogger(log_path)
    rl.write_capture(file_path="a/recording.m4a", started_at=None, duration_sec=2.5, size_bytes=None)

    record = json.loads(log_path.read_text().splitlines()[0])
    assert record["type"] == "capture"
    assert record["file_path"] == "a/recording.m4a"
    assert record["duration_sec"] == 2.5
    assert record["size_bytes"] is None


def test_log_get_log_path_default(tmp_path, monkeypatch):
    """AppConfig.get_log_path() defaults to output_dir/roundtrips.jsonl."""
    monkeypatch.chdir(tmp_path)
    config = AppConfig()
    log_path = config.get_log_path(tmp_path / "data")
    assert log_path.name == LOG_FILE
    assert log_path.parent == tmp_path / "data"


def test_log_get_log_path_from_yaml(tmp_path, monkeypatch):
    """AppConfig.get_log_path() respects the log.file YAML key."""
    (tmp_path / ".voicetrip.yml").write_text(
        yaml.safe_dump({"log": {"file": "my_log.jsonl"}}),
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)
    config = AppConfig()
    assert config.get_log_path(tmp_path / "data").name == "my_log.jsonl"
