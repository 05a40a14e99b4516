"""Observable session state for voicetrip.

The presentation layer never reads or writes the coordinator's internals.
It subscribes to :class:`StatePublisher` and receives an immutable
:class:`SessionState` snapshot after every change.

All mutations happen on the coordinator's event loop.  Work that finishes on
another thread (PortAudio callbacks, player completion) is handed back to
the loop through :class:`LoopHandoff`.
"""

import asyncio
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, List, Optional, Tuple

from loguru import logger

LevelFrame = Tuple[float, ...]
StateCallback = Callable[['SessionState'], None]


@dataclass(frozen=True)
class SessionState:
    """Snapshot of everything the presentation layer may render."""

    busy: bool = False
    recording: bool = False
    playing: bool = False
    levels: LevelFrame = field(default_factory=tuple)
    last_error: Optional[str] = None
    transcription: Optional[str] = None
    response_text: Optional[str] = None


class StatePublisher:
    """Holds the current :class:`SessionState` and notifies subscribers.

    Subscribers are called synchronously, in subscription order, on the
    thread that performed the update.  A failing subscriber is logged and
    does not prevent the others from being notified.
    """

    def __init__(self, initial: Optional[SessionState] = None) -> None:
        self._state = initial if initial is not None else SessionState()
        self._subscribers: List[StateCallback] = []
        self._lock = threading.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Register *callback* and return a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def update(self, **changes: Any) -> SessionState:
        """Apply *changes* to the current snapshot and publish it if it changed."""
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return self._state
        self._state = new_state

        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(new_state)
            except Exception as error:
                logger.opt(exception=error).error(f"State subscriber {callback!r} failed")
        return new_state


class LoopHandoff:
    """Thread-safe handoff of callbacks onto one event loop.

    Args:
        loop: The loop that owns the session state.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def call(self, callback: Callable[..., Any], *args: Any) -> None:
        """Schedule ``callback(*args)`` on the loop from any thread.

        Calls made after the loop has closed are dropped with a warning.
        """
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError as error:
            logger.warning(f"Dropped callback {callback!r}: {error}")
