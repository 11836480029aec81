from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from models import WatcherState


logger = logging.getLogger(__name__)


class SourceLifecycle:
    """Stopped/Starting/Running state machine shared by evidence sources.

    Sources embed one of these and hand it their setup/teardown hooks.
    start() and stop() are serialized and idempotent:
    - start() runs `on_start` only from STOPPED; if it raises, the state
      falls back to STOPPED and the exception propagates.
    - stop() runs `on_stop` only from RUNNING; the state is STOPPED when it
      returns, whether or not the hook raised.
    With `blocking=False` both return None instead of waiting when another
    start/stop holds the lock.
    """

    def __init__(self, name: str, on_start: Callable[[], None], on_stop: Callable[[], None]):
        self.name = name
        self._on_start = on_start
        self._on_stop = on_stop
        self._lock = threading.RLock()
        self._state = WatcherState.STOPPED

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is WatcherState.RUNNING

    def start(self, blocking: bool = True) -> Optional[bool]:
        if not self._lock.acquire(blocking):
            return None
        try:
            if self._state is not WatcherState.STOPPED:
                return False
            self._state = WatcherState.STARTING
            try:
                self._on_start()
            except BaseException:
                self._state = WatcherState.STOPPED
                raise
            self._state = WatcherState.RUNNING
            logger.info("%s source started", self.name)
            return True
        finally:
            self._lock.release()

    def stop(self, blocking: bool = True) -> Optional[bool]:
        if not self._lock.acquire(blocking):
            return None
        try:
            if self._state is not WatcherState.RUNNING:
                return False
            try:
                self._on_stop()
            finally:
                self._state = WatcherState.STOPPED
            logger.info("%s source stopped", self.name)
            return True
        finally:
            self._lock.release()
