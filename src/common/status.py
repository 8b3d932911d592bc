from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Callable, List, Optional

from .log import get_logger


STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"

logger = get_logger(__name__)


@dataclass(frozen=True)
class StatusEvent:
    status: str
    message: str = ""
    last_success: Optional[datetime] = None


Listener = Callable[[StatusEvent], None]


class StatusController:
    """
    Observable progress status for long-running user actions (backup, restore).

    - `subscribe(callback)` returns an unsubscribe handle; calling it twice is harmless.
    - `notify(status, message)` updates the current status and fans out a
      `StatusEvent` to every listener. A failing listener is logged and skipped.
    """

    def __init__(self, *, clock: Callable[[], datetime] = lambda: datetime.now(UTC)) -> None:
        self._listeners: List[Listener] = []
        self._status = STATUS_IDLE
        self._last_success: Optional[datetime] = None
        self._lock = threading.Lock()
        self._clock = clock

    @property
    def status(self) -> str:
        return self._status

    @property
    def last_success(self) -> Optional[datetime]:
        return self._last_success

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def notify(self, status: str, message: str = "") -> StatusEvent:
        with self._lock:
            self._status = status
            if status == STATUS_SUCCESS:
                self._last_success = self._clock()
            event = StatusEvent(status=status, message=message, last_success=self._last_success)
            listeners = list(self._listeners)
        for cb in listeners:
            try:
                cb(event)
            except Exception:
                logger.exception("status_listener_failed", status=status)
        return event
