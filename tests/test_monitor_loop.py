"""Unit tests for the background monitor loop."""

import sys
import threading
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import FailingThread, ManualThread
from core.exceptions import ThreadLifecycleFailure
from core.monitor_loop import LoopState, MonitorLoop, RunState
from health.error_stats import ErrorStatistics
from health.fault_classifier import FaultClassifier
from health.fault_codes import FaultLevel


class FakeHost:
    def __init__(self, rate=200.0, enabled=True):
        self.update_rate = rate
        self.enabled = enabled
        self.cycles = 0
        self.idle_cycles = 0
        self.fail = False
        self.block = None

    def reset_update_rate(self, rate):
        self.update_rate = rate

    def run_cycle(self):
        if self.block is not None:
            self.block.wait()
        self.cycles += 1
        if self.fail:
            raise RuntimeError("cycle failed")

    def run_idle_cycle(self):
        self.idle_cycles += 1


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


class TestMonitorLoopLifecycle:
    def test_start_runs_cycles_and_stop_joins(self):
        host = FakeHost()
        loop = MonitorLoop(host, "test-loop", FaultClassifier(), stop_timeout=1.0)
        assert loop.start()
        assert loop.state == LoopState.RUNNING
        assert _wait_for(lambda: host.cycles >= 3)
        assert loop.stop()
        assert loop.state == LoopState.STOPPED
        assert not loop.is_running
        assert not loop.has_thread
        assert loop.stats["cycles"] >= 3

    def test_second_start_is_ignored(self):
        loop = MonitorLoop(FakeHost(), "test-loop", FaultClassifier(), thread_factory=ManualThread)
        assert loop.start()
        assert not loop.start()
        assert loop.stop()

    def test_stop_without_start(self):
        loop = MonitorLoop(FakeHost(), "test-loop", FaultClassifier())
        assert loop.stop()
        assert loop.state == LoopState.STOPPED

    def test_invalid_rate_is_reset_on_start(self):
        host = FakeHost(rate=0.0)
        loop = MonitorLoop(host, "test-loop", FaultClassifier(), thread_factory=ManualThread)
        loop.start()
        assert host.update_rate == 10.0
        loop.stop()

    def test_spawn_failure(self):
        stats = ErrorStatistics()
        loop = MonitorLoop(FakeHost(), "test-loop", FaultClassifier(stats), thread_factory=FailingThread)
        with pytest.raises(ThreadLifecycleFailure):
            loop.start()
        assert loop.state == LoopState.STOPPED
        assert not loop.is_running
        assert stats.count(FaultLevel.ERROR) == 1

    def test_restart_after_stop(self):
        host = FakeHost()
        loop = MonitorLoop(host, "test-loop", FaultClassifier(), stop_timeout=1.0)
        loop.start()
        loop.stop()
        host.cycles = 0
        assert loop.start()
        assert _wait_for(lambda: host.cycles >= 1)
        assert loop.stop()

    def test_stop_times_out_on_stuck_cycle(self):
        host = FakeHost()
        host.block = threading.Event()
        loop = MonitorLoop(host, "test-loop", FaultClassifier(), stop_timeout=0.2)
        loop.start()
        time.sleep(0.05)
        assert not loop.stop()
        assert loop.state == LoopState.STOPPED
        host.block.set()


class TestMonitorLoopBody:
    def test_disabled_host_runs_idle_cycles(self):
        host = FakeHost(enabled=False)
        loop = MonitorLoop(host, "test-loop", FaultClassifier(), stop_timeout=1.0)
        loop.start()
        assert _wait_for(lambda: host.idle_cycles >= 2)
        loop.stop()
        assert host.cycles == 0

    def test_cycle_errors_back_off_and_continue(self):
        host = FakeHost()
        host.fail = True
        loop = MonitorLoop(host, "test-loop", FaultClassifier(), stop_timeout=1.0, error_backoff=0.01)
        loop.start()
        assert _wait_for(lambda: loop.stats["errors"] >= 2)
        assert loop.is_running
        loop.stop()

    def test_run_returns_immediately_when_stop_already_requested(self):
        loop = MonitorLoop(FakeHost(), "test-loop", FaultClassifier())
        run_state = RunState(thread_running=True)
        run_state.stop_requested.set()
        loop.run(run_state)
        assert run_state.exited.is_set()
        assert not run_state.thread_running

    def test_rate_change_applies_next_iteration(self):
        host = FakeHost(rate=100.0)
        loop = MonitorLoop(host, "test-loop", FaultClassifier(), stop_timeout=1.0)
        loop.start()
        assert _wait_for(lambda: host.cycles >= 1)
        host.update_rate = 500.0
        assert _wait_for(lambda: loop.stats["target_rate"] == pytest.approx(500.0))
        loop.stop()

    def test_cycle_error_is_counted(self):
        stats = ErrorStatistics()
        host = FakeHost()
        host.fail = True
        loop = MonitorLoop(host, "test-loop", FaultClassifier(stats), stop_timeout=1.0, error_backoff=0.01)
        loop.start()
        assert _wait_for(lambda: stats.count(FaultLevel.ERROR) >= 1)
        loop.stop()

    def test_unexpected_loop_failure_is_fatal(self):
        stats = ErrorStatistics()
        host = FakeHost()
        loop = MonitorLoop(host, "test-loop", FaultClassifier(stats), stop_timeout=1.0)
        loop.start()
        assert _wait_for(lambda: host.cycles >= 1)
        host.update_rate = 0.0
        assert _wait_for(lambda: not loop.is_running)
        assert stats.count(FaultLevel.FATAL) == 1
        assert loop.stop()

    def test_restart_after_thread_failure(self):
        host = FakeHost()
        loop = MonitorLoop(host, "test-loop", FaultClassifier(), stop_timeout=1.0)
        loop.start()
        assert _wait_for(lambda: host.cycles >= 1)
        host.update_rate = 0.0
        assert _wait_for(lambda: not loop.is_running)
        assert loop.state == LoopState.STOPPED
        host.update_rate = 200.0
        host.cycles = 0
        assert loop.start()
        assert loop.state == LoopState.RUNNING
        assert _wait_for(lambda: host.cycles >= 1)
        assert loop.stop()
