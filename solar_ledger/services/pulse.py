"""
solar_ledger/services/pulse.py

Repeating tasks with explicit cancellation.

A PeriodicTask owns one daemon thread that waits on a CancellationToken
between invocations. Cancelling the token wakes the thread immediately,
so stop() never has to wait out a full interval.

The callback runs to completion before the next wait begins; ticks never
overlap.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag shared between a task and its owner."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until cancelled or until timeout elapses.

        Returns True if the token was cancelled.
        """
        return self._event.wait(timeout)


class PeriodicTask:
    """
    Invoke a callback every `interval` seconds until stopped.

    start() and stop() are idempotent. A callback that raises is logged;
    after max_consecutive_errors failures in a row the task stops itself.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], object],
        name: str = "pulse",
        max_consecutive_errors: int = 5,
    ):
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")

        self.interval = interval
        self.callback = callback
        self.name = name
        self.max_consecutive_errors = max_consecutive_errors

        self.ticks = 0
        self.errors = 0
        self.consecutive_errors = 0

        self._token: Optional[CancellationToken] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._token is not None and not self._token.cancelled

    def start(self) -> CancellationToken:
        """Start ticking. Returns the token controlling this run."""
        with self._lock:
            if self.is_active:
                return self._token

            token = CancellationToken()
            thread = threading.Thread(
                target=self._loop,
                args=(token,),
                name=self.name,
                daemon=True,
            )
            self._token = token
            self._thread = thread
            thread.start()

        logger.debug(f"Task {self.name} started (interval={self.interval}s)")
        return token

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel the current run and wait for the thread to exit."""
        with self._lock:
            token, thread = self._token, self._thread
            self._token = None
            self._thread = None

        if token is None:
            return

        token.cancel()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

        logger.debug(f"Task {self.name} stopped after {self.ticks} ticks")

    def run_once(self) -> bool:
        """
        Invoke the callback synchronously.

        Returns True if the callback completed without raising.
        """
        try:
            self.callback()
        except Exception as e:
            self.errors += 1
            self.consecutive_errors += 1
            logger.error(f"Task {self.name} tick failed: {e}")
            return False

        self.ticks += 1
        self.consecutive_errors = 0
        return True

    def _loop(self, token: CancellationToken) -> None:
        while not token.wait(self.interval):
            self.run_once()

            if self.consecutive_errors >= self.max_consecutive_errors:
                logger.error(
                    f"Task {self.name}: too many consecutive errors "
                    f"({self.consecutive_errors}), stopping"
                )
                token.cancel()
                break

    def __repr__(self) -> str:
        return (
            f"PeriodicTask(name={self.name!r}, interval={self.interval}, "
            f"active={self.is_active}, ticks={self.ticks})"
        )
