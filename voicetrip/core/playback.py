"""Playback of server audio for voicetrip.

:class:`PlaybackController` materializes the returned bytes as a fixed
temporary file, hands it to an :class:`AudioPlayer` and deletes the file when
the player reports completion.  Every playback *cycle* deletes its temporary
file exactly once, whether playback finished, failed to start or was
interrupted by a newer cycle.

Player completion may arrive on any thread (PortAudio calls
``finished_callback`` from its own).  It is moved onto the event loop with
:class:`~voicetrip.core.state.LoopHandoff` before any state is touched.
"""

import asyncio
import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

import numpy as np
import sounddevice as sd
import soundfile as sf
from loguru import logger

from .errors import DecodeFailedError, DeleteFailedError, InitFailedError, PlaybackError
from .state import LoopHandoff

FinishedCallback = Callable[[bool], None]


class AudioPlayer(Protocol):
    """Capability interface for a platform audio output."""

    def play(self, path: Path, on_finished: FinishedCallback) -> None:
        """Start playing *path* and return once playback has started.

        *on_finished* is called once, from any thread, when playback ends.
        Its argument is ``True`` when the file played to the end.

        Raises:
            DecodeFailedError: The file is not a playable audio format.
            InitFailedError: The output device cannot be opened.
        """
        ...

    def stop(self) -> None:
        """Abort playback, if any."""
        ...


class SoundDevicePlayer:
    """Decodes with soundfile and streams through a sounddevice output stream."""

    def __init__(self, device: Optional[int] = None, blocksize: int = 1024) -> None:
        self._device = device
        self._blocksize = blocksize
        self._stream: Any = None

    def play(self, path: Path, on_finished: FinishedCallback) -> None:
        self.stop()
        try:
            data, samplerate = sf.read(str(path), dtype='float32', always_2d=True)
        except (RuntimeError, ValueError) as e:
            raise DecodeFailedError(f"Cannot decode {path}: {e}") from e
        if data.size == 0:
            raise DecodeFailedError(f"{path} contains no audio frames")

        position = 0
        reached_end = False

        def callback(outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
            nonlocal position, reached_end
            if status:
                logger.debug(f"Output stream status: {status}")
            chunk = data[position:position + frames]
            outdata[:len(chunk)] = chunk
            if len(chunk) < frames:
                outdata[len(chunk):] = 0
                reached_end = True
                raise sd.CallbackStop
            position += frames

        def finished() -> None:
            on_finished(reached_end)

        try:
            self._stream = sd.OutputStream(
                samplerate=samplerate,
                channels=data.shape[1],
                dtype='float32',
                device=self._device,
                blocksize=self._blocksize,
                callback=callback,
                finished_callback=finished,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            self._close_stream()
            raise InitFailedError(f"Cannot open output device {self._device}: {e}") from e
        logger.debug(f"Playing {path} ({len(data)} frames at {samplerate} Hz)")

    def stop(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.abort()
        except sd.PortAudioError as e:
            logger.debug(f"Error aborting output stream: {e}")
        self._close_stream()

    def _close_stream(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.close()
        except sd.PortAudioError as e:
            logger.debug(f"Error closing output stream: {e}")
        self._stream = None


@dataclass
class _PlaybackCycle:
    number: int
    path: Path
    finished: asyncio.Event = field(default_factory=asyncio.Event)
    started_at: datetime.datetime = field(default_factory=datetime.datetime.now)
    done: bool = False


class PlaybackController:
    """Writes, plays and deletes the temporary playback file.

    Args:
        player: Audio output backend.
        temp_path: Fixed temporary file, overwritten by every cycle.
        on_playing_change: Called on the event loop with ``True`` when a
            cycle starts playing and ``False`` when it ends.
    """

    def __init__(
        self,
        player: AudioPlayer,
        temp_path: Path,
        on_playing_change: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self._player = player
        self._temp_path = Path(temp_path)
        self._on_playing_change = on_playing_change
        self._cycle: Optional[_PlaybackCycle] = None
        self._cycle_count = 0
        # one cycle at a time owns the temp file
        self._lock = asyncio.Lock()

    @property
    def temp_path(self) -> Path:
        return self._temp_path

    @property
    def playing(self) -> bool:
        return self._cycle is not None and not self._cycle.done

    async def play(self, audio_bytes: bytes) -> None:
        """Write *audio_bytes* to the temp file and start playing it.

        Returns once playback has started.  A cycle that is still playing is
        stopped and cleaned up first.  If :meth:`stop` runs while the file is
        being written, the player is never started and the file is deleted.

        Raises:
            DecodeFailedError: The bytes are not a playable format.
            InitFailedError: The temp file or the player could not be set up.
        """
        handoff = LoopHandoff(asyncio.get_running_loop())

        async with self._lock:
            if self.playing:
                logger.info('Interrupting previous playback')
                self._stop_player()
                self._finish(self._cycle, completed=False)

            self._cycle_count += 1
            cycle = _PlaybackCycle(number=self._cycle_count, path=self._temp_path)
            self._cycle = cycle

            try:
                await self._write_cycle_file(audio_bytes)
                if cycle.done:
                    # stopped while the file was being written
                    logger.info(f'Playback {cycle.number} stopped before it started')
                    self._delete_temp(cycle.path)
                    return
                logger.debug(f'Server audio written to {cycle.path} ({len(audio_bytes)} bytes)')
                self._player.play(
                    cycle.path,
                    lambda completed: handoff.call(self._finish, cycle, completed),
                )
            except PlaybackError:
                self._finish(cycle, completed=False)
                raise
            except OSError as e:
                self._finish(cycle, completed=False)
                raise InitFailedError(f"Cannot write {cycle.path}: {e}") from e
            except Exception as e:
                self._finish(cycle, completed=False)
                raise InitFailedError(str(e)) from e
            except BaseException:
                self._finish(cycle, completed=False)
                raise

            logger.info(f'Playback {cycle.number} started')
            self._notify(True)

    def stop(self) -> None:
        """Abort the current cycle, if any, and delete its temp file."""
        if not self.playing:
            return
        self._stop_player()
        self._finish(self._cycle, completed=False)

    async def wait_finished(self) -> None:
        """Wait until the current cycle, if any, has ended and been cleaned up."""
        if self._cycle is not None:
            await self._cycle.finished.wait()

    async def _write_cycle_file(self, audio_bytes: bytes) -> None:
        """Write the temp file in a worker thread.

        A cancelled caller still waits for the worker to finish, so the file
        is never written after the cycle has been cleaned up.
        """
        write = asyncio.ensure_future(asyncio.to_thread(self._write_temp, audio_bytes))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            try:
                await write
            except OSError as e:
                logger.debug(f'Cancelled write of {self._temp_path} failed: {e}')
            raise

    def _write_temp(self, audio_bytes: bytes) -> None:
        self._temp_path.parent.mkdir(parents=True, exist_ok=True)
        self._temp_path.write_bytes(audio_bytes)

    def _stop_player(self) -> None:
        try:
            self._player.stop()
        except Exception as e:
            logger.warning(f'Error stopping player: {e}')

    def _finish(self, cycle: _PlaybackCycle, completed: bool) -> None:
        if cycle.done:
            return
        cycle.done = True
        self._delete_temp(cycle.path)
        cycle.finished.set()
        elapsed = (datetime.datetime.now() - cycle.started_at).total_seconds()
        logger.info(
            f'Playback {cycle.number} {"finished" if completed else "ended early"} after {elapsed:.1f}s'
        )
        if cycle is self._cycle:
            self._notify(False)

    def _delete_temp(self, path: Path) -> None:
        try:
            path.unlink()
            logger.debug(f'Temporary file deleted: {path}')
        except FileNotFoundError:
            logger.debug(f'Temporary file already gone: {path}')
        except OSError as e:
            logger.warning(DeleteFailedError(path, str(e)).detail)

    def _notify(self, playing: bool) -> None:
        if self._on_playing_change is not None:
            self._on_playing_change(playing)
