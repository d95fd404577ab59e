"""Tests for configuration loading and startup wiring."""

import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import ManualThread
from configs.loaders import (
    controller_entries,
    load_controllers_config,
    load_ipc_config,
    load_runtime_config,
    load_yaml,
)
from core.device_transport import S7Transport, SimulatedTransport, build_transport
from core.exceptions import ConfigError
from core.logging_setup import setup_logging
from health.fault_classifier import FaultClassifier
from main import create_configured_controllers
from pipeline.port_manager import PortManager


class TestLoadYaml:
    def test_bundled_configs(self):
        assert "logging" in load_runtime_config()
        assert "api_server" in load_ipc_config()
        assert controller_entries(load_controllers_config())

    def test_missing_file_yields_empty(self, tmp_path):
        assert load_yaml(tmp_path / "missing.yaml") == {}

    def test_missing_required_file_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            load_yaml(tmp_path / "missing.yaml", required=True)

    def test_malformed_file(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("controllers: [unclosed\n", encoding="utf-8")
        assert load_yaml(bad) == {}
        with pytest.raises(ConfigError):
            load_yaml(bad, required=True)

    def test_non_mapping_required(self, tmp_path):
        p = tmp_path / "list.yaml"
        p.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_yaml(p, required=True)

    def test_controller_entries_skips_unnamed(self):
        cfg = {"controllers": [{"port_name": "TH1"}, {"device_port": "DEV1"}, "junk"]}
        assert controller_entries(cfg) == [{"port_name": "TH1"}]


class TestStartupWiring:
    def test_create_configured_controllers(self):
        manager = PortManager(
            FaultClassifier(),
            transport_factory=SimulatedTransport,
            controller_kwargs={"thread_factory": ManualThread, "stop_timeout": 0.5},
        )
        cfg = {
            "controllers": [
                {"port_name": "TH1", "device_port": "DEV1", "device_addr": 0,
                 "threshold": 2.0, "hysteresis": 0.5, "update_rate": 20.0, "enable": True},
                {"port_name": "TH2", "device_port": "DEV1", "device_addr": 1, "threshold": 50.0},
                {"port_name": "TH3", "device_port": "", "device_addr": 0},
            ]
        }
        try:
            assert create_configured_controllers(manager, cfg) == 2
            th1 = manager.get("TH1")
            assert th1.enabled
            assert th1.update_rate == 20.0
            assert manager.get("TH2").threshold == 0.0
        finally:
            manager.shutdown()

    def test_build_transport(self):
        assert isinstance(build_transport({}), SimulatedTransport)
        s7 = build_transport({"s7": {"ports": {"DEV1": {"ip": "10.0.0.1"}}}}, mode="s7")
        assert isinstance(s7, S7Transport)

    def test_setup_logging_without_file(self):
        root = logging.getLogger()
        saved = list(root.handlers), root.level
        try:
            setup_logging({"level": "DEBUG", "file": None})
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
        finally:
            root.handlers, root.level = saved[0], saved[1]

    def test_setup_logging_with_file(self, tmp_path):
        root = logging.getLogger()
        saved = list(root.handlers), root.level
        try:
            setup_logging({"file": str(tmp_path / "svc.log")})
            assert len(root.handlers) == 2
            for h in root.handlers:
                h.close()
        finally:
            root.handlers, root.level = saved[0], saved[1]
