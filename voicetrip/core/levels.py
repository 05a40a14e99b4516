"""Live input level sampling for voicetrip.

:class:`LevelSampler` turns the capture backend's instantaneous power reading
into a fixed-length *level frame*: a tuple of normalized values in
``[floor, 1.0]`` that drives the terminal waveform.

The sampler regenerates the whole frame from a single reading on every tick;
it keeps no per-slot history.  When stopped it publishes the baseline frame,
every slot equal to ``floor``.
"""

import asyncio
from typing import Callable, Optional

from loguru import logger

from .config import LEVEL_COUNT, LEVEL_DB_RANGE, LEVEL_FLOOR, LEVEL_INTERVAL
from .processing import SILENCE_DB, normalize_level
from .state import LevelFrame


def baseline_frame(count: int = LEVEL_COUNT, floor: float = LEVEL_FLOOR) -> LevelFrame:
    """Return the minimum-energy frame shown while idle."""
    return (floor,) * count


class LevelSampler:
    """Periodically converts power readings into published level frames.

    Args:
        read_power: Returns the current average input power in dBFS.
        publish: Receives every new frame, including the baseline on stop.
        count: Slots per frame.
        interval: Seconds between ticks.
        floor: Minimum slot value.
        db_range: dB window mapped onto ``[0, 1]``.
    """

    def __init__(
        self,
        read_power: Callable[[], float],
        publish: Callable[[LevelFrame], None],
        count: int = LEVEL_COUNT,
        interval: float = LEVEL_INTERVAL,
        floor: float = LEVEL_FLOOR,
        db_range: float = LEVEL_DB_RANGE,
    ) -> None:
        if count <= 0:
            raise ValueError(f"Level frame needs at least one slot, got {count}")
        if interval <= 0:
            raise ValueError(f"Level interval must be positive, got {interval}")
        self._read_power = read_power
        self._publish = publish
        self._count = count
        self._interval = interval
        self._floor = floor
        self._db_range = db_range
        self._task: Optional[asyncio.Task] = None
        self._frame = baseline_frame(count, floor)

    @property
    def frame(self) -> LevelFrame:
        return self._frame

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def baseline(self) -> LevelFrame:
        return baseline_frame(self._count, self._floor)

    def start(self) -> None:
        """Start ticking on the running event loop.

        A ticker that is already running is cancelled first, so at most one
        ticker ever publishes frames.
        """
        self._cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Level sampler started ({self._count} slots every {self._interval}s)")

    def stop(self) -> None:
        """Stop ticking and publish the baseline frame."""
        self._cancel()
        self._frame = self.baseline()
        self._publish(self._frame)
        logger.debug("Level sampler stopped")

    def tick(self) -> LevelFrame:
        """Take one reading, publish the resulting frame and return it."""
        try:
            db_level = self._read_power()
        except Exception as error:
            logger.debug(f"Power reading failed: {error}")
            db_level = SILENCE_DB
        level = normalize_level(db_level, floor=self._floor, db_range=self._db_range)
        self._frame = (level,) * self._count
        self._publish(self._frame)
        return self._frame

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.tick()

    def _cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
