"""
Tests for approval_batch.scheduler.EscalationSweepScheduler.

Validates tick() against a real scanner on in-memory SQLite, the
per-tick error boundary, and start/stop of the background thread.
"""

import threading
from datetime import datetime, timezone

import pytest

from approval_batch.scheduler import EscalationSweepScheduler
from approval_kernel.domain.approval import NotificationType
from approval_kernel.services.escalation_scanner import SweepResult


class ExplodingScanner:
    """Scanner whose sweep always fails."""

    def __init__(self):
        self.calls = 0

    def run_sweep(self):
        self.calls += 1
        raise RuntimeError("database unavailable")


class CountingScanner:
    """Scanner that records sweeps and signals after the first one."""

    def __init__(self):
        self.calls = 0
        self.swept = threading.Event()

    def run_sweep(self):
        self.calls += 1
        self.swept.set()
        return SweepResult(
            started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            due=0, escalated=0, skipped=0, failed=0,
            notifications_sent=0, unknown_escalators=0,
        )


class TestTick:
    def test_tick_runs_a_sweep(
        self, manager, scanner, make_template, submitter, dispatcher, clock,
    ):
        template_id = make_template()
        manager.submit(template_id, "MEDIUM", "a@x.com", actor=submitter)
        clock.advance_minutes(61)
        scheduler = EscalationSweepScheduler(scanner, interval_seconds=60, clock=clock)

        result = scheduler.tick()

        assert result.escalated == 1
        assert scheduler.last_result is result
        assert scheduler.last_sweep_at == clock.now()
        assert scheduler.tick_count == 1
        assert len(dispatcher.of_type(NotificationType.ESCALATION)) == 1

    def test_repeated_ticks_escalate_once(
        self, manager, scanner, make_template, submitter, dispatcher, clock,
    ):
        template_id = make_template()
        manager.submit(template_id, "MEDIUM", "a@x.com", actor=submitter)
        clock.advance_minutes(61)
        scheduler = EscalationSweepScheduler(scanner, clock=clock)

        scheduler.tick()
        clock.advance_minutes(1)
        second = scheduler.tick()

        assert second.due == 0
        assert scheduler.tick_count == 2
        assert len(dispatcher.of_type(NotificationType.ESCALATION)) == 1

    def test_failed_sweep_is_contained(self, clock, captured_logs):
        scanner = ExplodingScanner()
        scheduler = EscalationSweepScheduler(scanner, clock=clock)

        assert scheduler.tick() is None
        assert scheduler.tick() is None

        assert scanner.calls == 2
        assert scheduler.last_result is None
        assert scheduler.last_sweep_at == clock.now()
        failures = [r for r in captured_logs() if r["message"] == "escalation_sweep_failed"]
        assert len(failures) == 2
        assert failures[0]["exc_type"] == "RuntimeError"


@pytest.mark.slow
class TestLifecycle:
    def test_start_and_stop(self, clock):
        scanner = CountingScanner()
        scheduler = EscalationSweepScheduler(scanner, interval_seconds=0.05, clock=clock)

        scheduler.start()
        try:
            assert scanner.swept.wait(timeout=5.0)
            assert scheduler.is_running
        finally:
            scheduler.stop(timeout=5.0)

        assert not scheduler.is_running
        assert scanner.calls >= 1
        assert scheduler.tick_count == scanner.calls

    def test_start_is_idempotent(self, clock):
        scanner = CountingScanner()
        scheduler = EscalationSweepScheduler(scanner, interval_seconds=10.0, clock=clock)

        scheduler.start()
        try:
            first_thread = scheduler._thread
            scheduler.start()
            assert scheduler._thread is first_thread
        finally:
            scheduler.stop(timeout=5.0)

    def test_loop_survives_failing_sweeps(self, clock):
        scanner = ExplodingScanner()
        scheduler = EscalationSweepScheduler(scanner, interval_seconds=0.01, clock=clock)

        scheduler.start()
        try:
            deadline = threading.Event()
            for _ in range(500):
                if scanner.calls >= 3:
                    break
                deadline.wait(0.01)
        finally:
            scheduler.stop(timeout=5.0)

        assert scanner.calls >= 3
        assert not scheduler.is_running

    def test_stop_without_start(self, clock):
        scheduler = EscalationSweepScheduler(CountingScanner(), clock=clock)
        scheduler.stop()
        assert not scheduler.is_running
