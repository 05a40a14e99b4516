"""Round-trip state machine for voicetrip.

:class:`SessionCoordinator` binds the capture session, level sampler, upload
client and playback controller together and is the only object the
presentation layer talks to::

    coordinator.start_capture()      # IDLE -> RECORDING, levels start moving
    coordinator.stop_capture()       # RECORDING -> IDLE, levels reset, clip encodes
    await coordinator.submit()       # busy: upload, then start playback

State is published through :meth:`SessionCoordinator.subscribe`.  ``busy`` is
set before the upload begins and cleared exactly once, on the first of
playback starting or any failure.  Nothing is retried: a failed submit
publishes ``last_error``, is re-raised, and leaves the coordinator ready for
the next capture or submit.

All methods must be called from the event loop that runs :meth:`submit`.
"""

import asyncio
import datetime
import time
from pathlib import Path
from typing import Callable, Optional

import httpx
from loguru import logger

from .capture import AudioCapture, CaptureSession, EncodeJob, PyAudioCapture
from .config import LEVEL_COUNT, LEVEL_DB_RANGE, LEVEL_FLOOR, LEVEL_INTERVAL, AppConfig
from .errors import BusyError, CaptureError, VoicetripError
from .levels import LevelSampler, baseline_frame
from .log import RoundTripLogger
from .playback import AudioPlayer, PlaybackController, SoundDevicePlayer
from .state import LevelFrame, SessionState, StateCallback, StatePublisher
from .upload import ServerAudio, UploadClient


class SessionCoordinator:
    """Coordinates one capture session and its upload/playback round trips.

    Args:
        capture_session: The process's capture session.
        upload_client: Client for the transcription/response service.
        player: Audio output backend.
        temp_path: Fixed temporary file for server audio.
        level_count: Slots per level frame.
        level_interval: Seconds between level frames.
        level_floor: Baseline slot value.
        level_db_range: dB window mapped onto the meter.
        round_trip_logger: Optional JSONL history log.
    """

    def __init__(
        self,
        capture_session: CaptureSession,
        upload_client: UploadClient,
        player: AudioPlayer,
        temp_path: Path,
        level_count: int = LEVEL_COUNT,
        level_interval: float = LEVEL_INTERVAL,
        level_floor: float = LEVEL_FLOOR,
        level_db_range: float = LEVEL_DB_RANGE,
        round_trip_logger: Optional[RoundTripLogger] = None,
    ) -> None:
        self._capture = capture_session
        self._upload = upload_client
        self._round_trip_logger = round_trip_logger
        self._publisher = StatePublisher(SessionState(levels=baseline_frame(level_count, level_floor)))
        self._sampler = LevelSampler(
            read_power=self._capture.current_power,
            publish=self._publish_levels,
            count=level_count,
            interval=level_interval,
            floor=level_floor,
            db_range=level_db_range,
        )
        self._playback = PlaybackController(
            player,
            temp_path,
            on_playing_change=lambda playing: self._publisher.update(playing=playing),
        )
        self._submit_count = 0
        self._finalizing: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        endpoint: Optional[str] = None,
        capture: Optional[AudioCapture] = None,
        player: Optional[AudioPlayer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        history: bool = True,
    ) -> "SessionCoordinator":
        """Build a coordinator from :class:`AppConfig`.

        Args:
            config: Loaded configuration.
            endpoint: Overrides the configured endpoint.
            capture: Capture backend; defaults to :class:`PyAudioCapture`.
            player: Output backend; defaults to :class:`SoundDevicePlayer`.
            transport: Optional httpx transport for the upload client.
            history: Write the JSONL round-trip log.

        Raises:
            ConfigurationError: If no endpoint is available.
        """
        if capture is None:
            capture = PyAudioCapture(
                rate=int(config.get('rate')),
                chunk=int(config.get('chunk')),
                channels=int(config.get('channel')),
                device_id=config.get('device_id'),
            )
        levels = config.get_level_config()
        return cls(
            capture_session=CaptureSession(capture, config.get_capture_path()),
            upload_client=UploadClient.from_config(config, endpoint=endpoint, transport=transport),
            player=player if player is not None else SoundDevicePlayer(),
            temp_path=config.get_temp_playback_path(),
            level_count=levels['count'],
            level_interval=levels['interval'],
            level_floor=levels['floor'],
            level_db_range=levels['db_range'],
            round_trip_logger=RoundTripLogger(config.get_log_path()) if history else None,
        )

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._publisher.state

    @property
    def busy(self) -> bool:
        return self._publisher.state.busy

    @property
    def levels(self) -> LevelFrame:
        return self._publisher.state.levels

    @property
    def capture_session(self) -> CaptureSession:
        return self._capture

    @property
    def playback(self) -> PlaybackController:
        return self._playback

    @property
    def upload_client(self) -> UploadClient:
        return self._upload

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Call *callback* with every new :class:`SessionState`; returns an unsubscribe function."""
        return self._publisher.subscribe(callback)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start_capture(self) -> None:
        """Start recording and level sampling.

        Raises:
            CaptureError: ``AlreadyRecordingError`` or
                ``DeviceUnavailableError``.  ``busy`` is left untouched.
            RuntimeError: Called without a running event loop.  Recording is
                stopped again and the capture resource released.
        """
        try:
            self._capture.start()
        except CaptureError as error:
            logger.error(f'Capture not started: {error.detail}')
            self._publisher.update(last_error=error.detail)
            raise
        try:
            self._sampler.start()
        except RuntimeError:
            # nothing was recorded, drop the encode step
            self._capture.stop()
            raise
        self._publisher.update(recording=True, last_error=None)

    def stop_capture(self) -> None:
        """Stop recording and reset the levels to the baseline frame.

        The device is released before this returns.  The clip is encoded in a
        worker thread; :meth:`submit` waits for it.

        Raises:
            CaptureError: If the backend failed to close.  Recording and
                sampling are stopped regardless.
        """
        was_recording = self._capture.recording
        try:
            encode = self._capture.stop()
        except CaptureError as error:
            self._report_capture_error(error)
            raise
        finally:
            self._sampler.stop()
            self._publisher.update(recording=False)

        if not was_recording:
            return
        if encode is None:
            self._log_capture()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._encode_now(encode)
            return
        self._finalizing = loop.create_task(self._finalize(encode, self._finalizing))

    async def submit(self) -> ServerAudio:
        """Upload the last capture and start playing the service's answer.

        Waits for a pending encode of the capture file first.  Returns once
        playback has started.

        Raises:
            BusyError: A round trip is already in flight.  State is unchanged.
            CaptureError: The capture file could not be encoded.
            UploadError: The upload failed; nothing is played.
            PlaybackError: The answer could not be played.
        """
        if self.busy:
            raise BusyError()

        self._submit_count += 1
        submit_id = self._submit_count
        path = self._capture.current_file_path()
        started = time.monotonic()
        self._publisher.update(busy=True, last_error=None, transcription=None, response_text=None)
        logger.info(f'Submit {submit_id}: {path}')

        reply: Optional[ServerAudio] = None
        try:
            await self._wait_for_capture_file()
            if self._round_trip_logger is not None:
                self._round_trip_logger.write_submit_start(
                    submit_id=submit_id,
                    endpoint=self._upload.endpoint,
                    file_path=str(path),
                    started_at=datetime.datetime.now(),
                )
            reply = await self._upload.upload(path)
            self._publisher.update(transcription=reply.transcription, response_text=reply.response_text)
            await self._playback.play(reply.audio)
        except VoicetripError as error:
            logger.error(f'Submit {submit_id} failed [{error.code}]: {error.detail}')
            self._publisher.update(busy=False, last_error=error.detail)
            self._log_submit_end(submit_id, error.code, started, reply, error.detail)
            raise
        finally:
            if self.busy:
                self._publisher.update(busy=False)

        logger.info(f'Submit {submit_id} playing {len(reply.audio)} bytes of audio')
        self._log_submit_end(submit_id, 'ok', started, reply)
        return reply

    async def aclose(self) -> None:
        """Stop recording and playback, finish the capture file and close the HTTP client."""
        try:
            self.stop_capture()
        except CaptureError as error:
            logger.warning(f'Capture discarded on close: {error.detail}')
        try:
            await self._wait_for_capture_file()
        except CaptureError as error:
            logger.warning(f'Capture discarded on close: {error.detail}')
        self._playback.stop()
        await self._upload.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _publish_levels(self, frame: LevelFrame) -> None:
        self._publisher.update(levels=frame)

    def _report_capture_error(self, error: CaptureError) -> None:
        logger.error(f'Capture not saved: {error.detail}')
        self._publisher.update(last_error=error.detail)

    def _encode_now(self, encode: EncodeJob) -> None:
        try:
            encode()
        except CaptureError as error:
            self._report_capture_error(error)
            raise
        self._log_capture()

    async def _finalize(self, encode: EncodeJob, previous: Optional[asyncio.Task]) -> None:
        """Run *encode* in a worker thread once the previous encode is done."""
        if previous is not None:
            # both write the same file; its failure was reported when it happened
            await asyncio.wait([previous])
            if not previous.cancelled():
                previous.exception()
        try:
            await asyncio.to_thread(encode)
        except CaptureError as error:
            self._report_capture_error(error)
            raise
        self._log_capture()

    async def _wait_for_capture_file(self) -> None:
        pending = self._finalizing
        if pending is None:
            return
        try:
            await asyncio.shield(pending)
        finally:
            if pending.done() and self._finalizing is pending:
                self._finalizing = None

    def _log_capture(self) -> None:
        if self._round_trip_logger is None:
            return
        path = self._capture.current_file_path()
        self._round_trip_logger.write_capture(
            file_path=str(path),
            started_at=self._capture.started_at,
            duration_sec=self._capture.last_duration_sec,
            size_bytes=path.stat().st_size if path.exists() else None,
        )

    def _log_submit_end(
        self,
        submit_id: int,
        status: str,
        started: float,
        reply: Optional[ServerAudio],
        error: Optional[str] = None,
    ) -> None:
        if self._round_trip_logger is None:
            return
        self._round_trip_logger.write_submit_end(
            submit_id=submit_id,
            status=status,
            elapsed_sec=time.monotonic() - started,
            bytes_received=len(reply.audio) if reply is not None else 0,
            transcription=reply.transcription if reply is not None else None,
            response_text=reply.response_text if reply is not None else None,
            error=error,
        )
