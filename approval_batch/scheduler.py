"""
EscalationSweepScheduler -- in-process periodic escalation sweep.

Contract:
    Runs ``EscalationScanner.run_sweep()`` every ``interval_seconds`` on a
    single background thread owned by the process lifecycle.

Architecture: approval_batch.  Depends on approval_kernel services only.

Invariants enforced:
    - No overlapping sweeps within one process (one thread, one loop).
    - Error boundary per tick: an exception in one sweep is logged and the
      next tick still runs.
    - Graceful shutdown: ``stop()`` signals the loop and joins the thread;
      a sweep in progress finishes its current stage first.
"""

from __future__ import annotations

import threading
from datetime import datetime

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger
from approval_kernel.services.escalation_scanner import EscalationScanner, SweepResult

logger = get_logger("batch.escalation_scheduler")


class EscalationSweepScheduler:
    """Polling scheduler for the escalation sweep.

    Contract:
        - ``tick()`` runs one sweep and never raises.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election); overlapping
          sweeps from several processes are made safe by the scanner's row
          locks and conditional flag update.
    """

    def __init__(
        self,
        scanner: EscalationScanner,
        interval_seconds: float = 60.0,
        clock: Clock | None = None,
    ):
        self._scanner = scanner
        self._interval = interval_seconds
        self._clock = clock or SystemClock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_sweep_at: datetime | None = None
        self._last_result: SweepResult | None = None
        self._ticks = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepResult | None:
        """Run one sweep (public for testing).

        Returns the sweep result, or None when the sweep failed.
        """
        self._ticks += 1
        self._last_sweep_at = self._clock.now()
        try:
            result = self._scanner.run_sweep()
        except Exception:
            logger.exception("escalation_sweep_failed", extra={"tick": self._ticks})
            return None
        self._last_result = result
        return result

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escalation-sweep",
            daemon=True,
        )
        self._thread.start()
        logger.info("escalation_scheduler_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the loop to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("escalation_scheduler_stopped", extra={"ticks": self._ticks})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_sweep_at(self) -> datetime | None:
        return self._last_sweep_at

    @property
    def last_result(self) -> SweepResult | None:
        return self._last_result

    @property
    def tick_count(self) -> int:
        return self._ticks

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("escalation_scheduler_tick_exception")
            self._stop_event.wait(timeout=self._interval)
