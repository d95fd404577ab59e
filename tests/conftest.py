"""Shared pytest fixtures for threshold logic tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from core.controller import ThresholdLogicController
from core.device_transport import SimulatedTransport
from health.error_stats import ErrorStatistics
from health.fault_classifier import FaultClassifier


class ManualThread:
    """Thread stand-in that never runs its target.

    ``start()`` marks the run as exited right away so ``MonitorLoop.stop()``
    returns without waiting; tests drive cycles by hand.
    """

    instances = []

    def __init__(self, target=None, args=(), daemon=None, name=None):
        self.target = target
        self.args = args
        self.daemon = daemon
        self.name = name
        self.started = False
        ManualThread.instances.append(self)

    def start(self):
        self.started = True
        self.args[0].exited.set()


class FailingThread(ManualThread):
    def start(self):
        raise RuntimeError("can't start new thread")


@pytest.fixture
def stats() -> ErrorStatistics:
    return ErrorStatistics()


@pytest.fixture
def classifier(stats) -> FaultClassifier:
    return FaultClassifier(stats)


@pytest.fixture
def transport() -> SimulatedTransport:
    return SimulatedTransport()


@pytest.fixture
def controller(classifier, transport) -> ThresholdLogicController:
    """Controller on DEV1/0 with threshold 2.0 V, hysteresis 0.5 V, manual thread."""
    ctrl = ThresholdLogicController(
        "THRESHOLD1",
        "DEV1",
        0,
        transport=transport,
        classifier=classifier,
        threshold=2.0,
        hysteresis=0.5,
        thread_factory=ManualThread,
        stop_timeout=0.5,
    )
    yield ctrl
    ctrl.close()


@pytest.fixture
def runtime_cfg() -> dict:
    """Minimal runtime configuration for testing."""
    return {
        "logging": {"level": "DEBUG", "file": None},
        "monitor": {"stop_timeout_s": 0.5},
        "transport": {"s7": {"ports": {"DEV1": {"ip": "127.0.0.1", "rack": 0, "slot": 1}}}},
    }


@pytest.fixture
def ipc_cfg() -> dict:
    return {
        "api_server": {"enabled": False, "host": "127.0.0.1", "port": 18000, "api_key": "test-key"},
        "alarm_pusher": {
            "enabled": True,
            "targets": [{"url": "http://127.0.0.1:1/alarms", "timeout_s": 0.1, "retries": 2}],
            "min_fault_level_to_push": "ERROR",
            "retry_delay_s": 0,
        },
    }
