"""
Connectivity monitor.

Platform network detection happens elsewhere; this monitor consumes its
boolean signal and fans out edge-triggered transitions. Repeated
notifications of the same state are ignored.
"""

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

TransitionListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Current online state plus offline<->online transition subscriptions."""

    def __init__(self, online: bool = False):
        self._online = online
        self._listeners: list[TransitionListener] = []
        self._lock = threading.Lock()
        self._poll_thread: threading.Thread | None = None
        self._poll_stop = threading.Event()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: TransitionListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: TransitionListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def update(self, online: bool) -> bool:
        """Feed the latest platform signal.

        Returns:
            True if this was a transition and listeners were notified
        """
        online = bool(online)
        with self._lock:
            if online == self._online:
                return False
            self._online = online
            listeners = list(self._listeners)

        logger.info("Network status changed: %s", "Online" if online else "Offline")
        for listener in listeners:
            try:
                listener(online)
            except Exception as e:
                logger.error("Connectivity listener failed: %s", e, exc_info=True)
        return True

    # Optional polling of a platform check

    def start_polling(self, check: Callable[[], bool], interval_seconds: float = 5.0) -> None:
        """Poll `check` in a background thread and feed its result to update()."""
        if self._poll_thread and self._poll_thread.is_alive():
            return
        self._poll_stop.clear()
        self._poll_thread = threading.Thread(
            target=self._poll_loop,
            args=(check, interval_seconds),
            name="connectivity-poller",
            daemon=True,
        )
        self._poll_thread.start()
        logger.debug("Started connectivity polling every %.1fs", interval_seconds)

    def _poll_loop(self, check: Callable[[], bool], interval_seconds: float) -> None:
        while not self._poll_stop.is_set():
            try:
                self.update(check())
            except Exception as e:
                logger.error("Error in connectivity check: %s", e, exc_info=True)
            self._poll_stop.wait(interval_seconds)

    def stop_polling(self) -> None:
        self._poll_stop.set()
        if self._poll_thread:
            self._poll_thread.join(timeout=1.0)
            self._poll_thread = None
