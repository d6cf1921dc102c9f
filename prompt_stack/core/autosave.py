"""
Debounced autosave for a Workspace.

Every change captures a snapshot of the workspace and (re)starts a timer; when
the timer fires, the latest snapshot is handed to the save callback. Status
listeners see "saving" as soon as a snapshot is pending, then "saved" or
"error" once the write finishes.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_SAVING = "saving"
STATUS_SAVED = "saved"
STATUS_ERROR = "error"

DEFAULT_DELAY_SECONDS = 0.8

SaveCallback = Callable[[Dict[str, Any]], Any]
StatusListener = Callable[[str], None]


class AutosaveScheduler:
    """
    Debounces snapshot writes on a threading.Timer owned by the scheduler.

    Only the most recent snapshot is written; snapshots superseded within the
    delay window are dropped.
    """

    def __init__(self, save: SaveCallback, delay: float = DEFAULT_DELAY_SECONDS):
        self._save = save
        self._delay = delay
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[Dict[str, Any]] = None
        self._status = STATUS_IDLE
        self._status_listeners: List[StatusListener] = []

    @property
    def status(self) -> str:
        return self._status

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def subscribe_status(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; returns a function that removes it"""
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def _set_status(self, status: str) -> None:
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Autosave status listener failed: {e}")

    def attach(self, workspace) -> Callable[[], None]:
        """
        Schedule a save after every workspace change.

        Returns:
            Function that detaches the scheduler from the workspace
        """
        return workspace.subscribe(lambda changed: self.schedule(changed.to_dict()))

    def schedule(self, snapshot: Dict[str, Any]) -> None:
        """Record snapshot as the pending write and restart the debounce timer"""
        with self._lock:
            self._pending = snapshot
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._on_timer)
            self._timer.daemon = True
            self._timer.start()
        self._set_status(STATUS_SAVING)

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        self._flush_pending()

    def _flush_pending(self) -> bool:
        # Take the snapshot under the write lock so writes land in schedule order.
        with self._write_lock:
            with self._lock:
                snapshot = self._pending
                self._pending = None
            if snapshot is None:
                return False

            try:
                self._save(snapshot)
            except Exception as e:
                logger.error(f"Autosave failed: {e}")
                self._set_status(STATUS_ERROR)
                return False

        self._set_status(STATUS_SAVED)
        return True

    def flush_now(self) -> bool:
        """
        Write the pending snapshot immediately.

        Returns:
            True if a snapshot was written, False if nothing was pending or the write failed
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        return self._flush_pending()

    def cancel(self) -> None:
        """Drop the pending snapshot without writing it"""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            had_pending = self._pending is not None
            self._pending = None
        if had_pending:
            self._set_status(STATUS_IDLE)
