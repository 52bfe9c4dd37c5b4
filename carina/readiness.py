"""Periodic readiness probing."""

from __future__ import annotations

import threading
from collections.abc import Callable


class ReadinessCheck:
    """Runs a check at an interval and remembers whether it has ever passed.

    The check signals failure by raising. Readiness becomes true at the first
    passing check and stays true; the latest error is always reported.
    """

    def __init__(self, check: Callable[[], object], interval: float) -> None:
        self.check = check
        self.interval = interval
        self._lock = threading.Lock()
        self._ready = False
        self._error: Exception | None = None

    def _run_check(self) -> None:
        try:
            self.check()
        except Exception as exc:  # the check reports failure by raising
            error: Exception | None = exc
        else:
            error = None
        with self._lock:
            if error is None:
                self._ready = True
            self._error = error

    def start(self, stop_event: threading.Event) -> None:
        """Check once, then every ``interval`` seconds until ``stop_event`` is set."""
        self._run_check()
        while not stop_event.wait(self.interval):
            self._run_check()

    def ready(self) -> tuple[bool, Exception | None]:
        with self._lock:
            return self._ready, self._error

    def need_leader_election(self) -> bool:
        return False