"""Unit tests for the port manager and the command shell."""

import io
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import ManualThread
from core.device_transport import SimulatedTransport
from health.fault_classifier import FaultClassifier
from pipeline.control import CommandController
from pipeline.port_manager import PortManager


@pytest.fixture
def manager():
    mgr = PortManager(
        FaultClassifier(),
        transport_factory=lambda: SimulatedTransport(values=[1.0]),
        controller_kwargs={"thread_factory": ManualThread, "stop_timeout": 0.5},
    )
    yield mgr
    mgr.shutdown()


class TestThresholdLogicConfig:
    def test_create(self, manager):
        assert manager.threshold_logic_config("TH1", "DEV1", 0) == 0
        assert manager.ports() == ["TH1"]
        assert manager.get("TH1").device_port == "DEV1"

    def test_rejects_bad_arguments(self, manager):
        assert manager.threshold_logic_config("", "DEV1", 0) == -1
        assert manager.threshold_logic_config("TH1", "", 0) == -1
        assert manager.threshold_logic_config("TH1", "DEV1", 256) == -1
        assert manager.threshold_logic_config("TH1", "DEV1", -1) == -1
        assert manager.ports() == []

    def test_duplicate_port_name(self, manager):
        assert manager.threshold_logic_config("TH1", "DEV1", 0) == 0
        assert manager.threshold_logic_config("TH1", "DEV2", 1) == -1
        assert manager.get("TH1").device_port == "DEV1"

    def test_help_text(self, manager):
        text = manager.threshold_logic_help()
        assert "ThresholdLogicConfig" in text
        assert "0-255" in text

    def test_destroy(self, manager):
        manager.threshold_logic_config("TH1", "DEV1", 0)
        manager.get("TH1").set_enabled(1)
        manager.destroy("TH1")
        assert manager.ports() == []
        with pytest.raises(KeyError):
            manager.destroy("TH1")

    def test_shared_statistics(self, manager):
        manager.threshold_logic_config("TH1", "DEV1", 0)
        manager.threshold_logic_config("TH2", "DEV1", 1)
        before = manager.classifier.stats.snapshot()["info"]
        manager.threshold_logic_config("TH3", "DEV1", 2)
        assert manager.classifier.stats.snapshot()["info"] == before + 1


class TestCommandController:
    def _shell(self, manager):
        out = io.StringIO()
        return CommandController(manager, out=out), out

    def test_config_and_get(self, manager):
        shell, out = self._shell(manager)
        shell.execute("config TH1 DEV1 0")
        shell.execute("get TH1 ThresholdValue")
        text = out.getvalue()
        assert "ok" in text
        assert "ThresholdValue = 0.0" in text

    def test_set_and_reject(self, manager):
        shell, out = self._shell(manager)
        shell.execute("config TH1 DEV1 0")
        shell.execute("set TH1 ThresholdValue 2.5")
        shell.execute("set TH1 ThresholdValue 50")
        shell.execute("set TH1 OutputState 1")
        text = out.getvalue()
        assert "ThresholdValue = 2.5" in text
        assert text.count("rejected") == 2
        assert manager.get("TH1").threshold == 2.5

    def test_set_converts_by_parameter_type(self, manager):
        shell, out = self._shell(manager)
        shell.execute("config TH1 DEV1 0")
        shell.execute("set TH1 DevicePort 123")
        shell.execute("set TH1 DeviceAddress 5")
        shell.execute("set TH1 ThresholdValue 3")
        text = out.getvalue()
        assert "rejected" not in text
        ctrl = manager.get("TH1")
        assert ctrl.device_port == "123"
        assert ctrl.device_addr == 5
        assert isinstance(ctrl.threshold, float)
        assert ctrl.threshold == 3.0

    def test_set_with_unparsable_number_is_rejected(self, manager):
        shell, out = self._shell(manager)
        shell.execute("config TH1 DEV1 0")
        shell.execute("set TH1 DeviceAddress five")
        assert "rejected" in out.getvalue()
        assert manager.get("TH1").device_addr == 0

    def test_unknown_command_and_port(self, manager):
        shell, out = self._shell(manager)
        shell.execute("frobnicate")
        shell.execute("get NOPE Enable")
        shell.execute('config "unterminated')
        text = out.getvalue()
        assert "unknown command" in text
        assert "NOPE" in text
        assert "parse error" in text

    def test_help_and_stats(self, manager):
        shell, out = self._shell(manager)
        shell.execute("help")
        shell.execute("stats")
        text = out.getvalue()
        assert "ThresholdLogicConfig" in text
        assert '"warning"' in text
