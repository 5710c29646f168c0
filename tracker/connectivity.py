"""Track whether the document store is reachable and reconnect with backoff."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List

from .config import MAX_RECONNECT_DELAY
from .errors import StoreUnavailable

LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[bool], None]


def reconnect_delay(attempt: int, base: float = 1.0, ceiling: float = MAX_RECONNECT_DELAY) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    return min(base * (2 ** attempt), ceiling)


class ConnectivityMonitor:
    """Publishes online/offline transitions to subscribers.

    Going offline schedules reconnection probes with capped exponential
    backoff. Any pending probe is cancelled before a new one is armed,
    so at most one timer is alive at a time.
    """

    def __init__(self, probe: Callable[[], None], *, max_delay: float = MAX_RECONNECT_DELAY,
                 base_delay: float = 1.0, timer_factory=threading.Timer):
        self._probe = probe
        self._online = True
        self._subscribers: List[Subscriber] = []
        self._timer = None
        self._lock = threading.RLock()
        self._timer_factory = timer_factory
        self.max_delay = max_delay
        self.base_delay = base_delay
        self.attempts = 0

    @property
    def online(self) -> bool:
        return self._online

    @property
    def pending_timer(self):
        return self._timer

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, online: bool) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(online)
            except Exception:
                LOGGER.exception("Connectivity subscriber %r failed", callback)

    def _cancel_timer(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule(self, attempt: int) -> None:
        delay = reconnect_delay(attempt, self.base_delay, self.max_delay)
        with self._lock:
            self._cancel_timer()
            timer = self._timer_factory(delay, self._attempt, args=(attempt + 1,))
            timer.daemon = True
            self._timer = timer
        LOGGER.info("Retrying store connection in %.0fs (attempt %d)", delay, attempt + 1)
        timer.start()

    def _set_state(self, online: bool) -> None:
        with self._lock:
            changed = self._online != online
            self._online = online
        if changed:
            self._notify(online)

    def _attempt(self, attempt: int) -> bool:
        with self._lock:
            self._timer = None
            self.attempts = attempt
        try:
            self._probe()
        except StoreUnavailable as exc:
            LOGGER.warning("Reconnection attempt %d failed: %s", attempt, exc)
            self._schedule(attempt)
            return False
        LOGGER.info("Store reachable again after %d attempt(s)", attempt)
        self._set_state(True)
        return True

    def mark_offline(self) -> None:
        """Record that the store went away and start probing for it.

        Repeated calls while a probe is already pending keep the current
        backoff instead of restarting it.
        """
        with self._lock:
            if not self._online and self._timer is not None:
                return
        self._cancel_timer()
        if self._online:
            LOGGER.warning("Document store unreachable; switching to offline mode")
        self._set_state(False)
        self._schedule(1)

    def mark_online(self) -> bool:
        """The network came back: drop pending retries and probe right away."""
        self._cancel_timer()
        return self._attempt(1)

    def attempt_reconnection(self) -> bool:
        if self._online:
            return True
        return self.mark_online()

    def close(self) -> None:
        self._cancel_timer()
