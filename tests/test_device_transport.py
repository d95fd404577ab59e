"""Unit tests for device transports and the parameter registry."""

import struct
import sys
import types
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from core.device_transport import S7Transport, SimulatedTransport
from core.exceptions import CommunicationFailure
from health.fault_codes import EpicsAlarmSeverity, EpicsAlarmStatus
from integration.param_registry import ParameterRegistry, ParamType


class TestSimulatedTransport:
    def test_replays_then_holds_last_value(self):
        t = SimulatedTransport(values=[1.0, 2.0])
        s = t.connect("DEV1", 0)
        assert [t.read_value(s) for _ in range(3)] == [1.0, 2.0, 2.0]

    def test_waveform_without_samples(self):
        t = SimulatedTransport()
        value = t.read_value(t.connect("DEV1", 0))
        assert 0.9 <= value <= 9.1

    def test_injected_failures(self):
        t = SimulatedTransport(values=[1.0])
        s = t.connect("DEV1", 0)
        t.fail_reads = True
        with pytest.raises(CommunicationFailure):
            t.read_value(s)
        t.fail_writes = True
        with pytest.raises(CommunicationFailure):
            t.write_output(s, True)
        t.fail_connect = True
        with pytest.raises(CommunicationFailure):
            t.connect("DEV1", 0)


class _FakeClient:
    def __init__(self):
        self.db = bytearray(8)
        self.db[0:4] = struct.pack(">f", 3.5)
        self.connected = None

    def connect(self, ip, rack, slot):
        self.connected = (ip, rack, slot)

    def db_read(self, db_number, start, size):
        return self.db[start:start + size]

    def db_write(self, db_number, start, data):
        self.db[start:start + len(data)] = data

    def disconnect(self):
        self.connected = None


@pytest.fixture
def fake_snap7(monkeypatch):
    module = types.ModuleType("snap7")
    module.client = types.SimpleNamespace(Client=_FakeClient)
    monkeypatch.setitem(sys.modules, "snap7", module)
    return module


class TestS7Transport:
    def test_read_and_write(self, fake_snap7):
        t = S7Transport({"DEV1": {"ip": "10.0.0.1", "rack": 0, "slot": 1}})
        session = t.connect("DEV1", 9)
        client, db_number = session
        assert db_number == 9
        assert client.connected == ("10.0.0.1", 0, 1)
        assert t.read_value(session) == pytest.approx(3.5)
        t.write_output(session, True)
        assert client.db[4] == 1
        t.disconnect(session)
        assert client.connected is None

    def test_unknown_port(self, fake_snap7):
        with pytest.raises(CommunicationFailure):
            S7Transport({}).connect("DEV1", 1)


class TestParameterRegistry:
    def test_duplicate_and_missing(self):
        reg = ParameterRegistry("P")
        reg.create_param("A", ParamType.FLOAT64)
        with pytest.raises(ValueError):
            reg.create_param("A", ParamType.INT32)
        with pytest.raises(KeyError):
            reg.find_param("B")

    def test_only_changes_are_delivered(self):
        reg = ParameterRegistry("P")
        a = reg.create_param("A", ParamType.FLOAT64)
        b = reg.create_param("B", ParamType.INT32)
        batches = []
        reg.subscribe(lambda port, changed: batches.append(sorted(changed)))
        reg.set_param(a, 1.0)
        reg.set_param(b, 0)
        reg.call_param_callbacks()
        assert reg.get_param(a) == 1.0
        reg.set_param(a, 1.0)
        reg.call_param_callbacks()
        reg.set_param_alarm(b, EpicsAlarmStatus.COMM_ALARM, EpicsAlarmSeverity.MAJOR_ALARM)
        reg.call_param_callbacks()
        assert batches == [["A", "B"], ["B"]]

    def test_callback_errors_are_isolated(self):
        reg = ParameterRegistry("P")
        a = reg.create_param("A", ParamType.FLOAT64)
        seen = []

        def broken(port, changed):
            raise RuntimeError("boom")

        reg.subscribe(broken)
        reg.subscribe(lambda port, changed: seen.append(port))
        reg.set_param(a, 2.0)
        reg.call_param_callbacks()
        assert seen == ["P"]
