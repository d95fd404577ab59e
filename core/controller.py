"""Threshold logic controller.

Monitors an analog input through a device transport, compares it with a
threshold using hysteresis and drives a digital output.  Every external
setting is validated before it touches the controller state; the periodic
work is delegated to an owned :class:`MonitorLoop`.

Known inconsistency
-------------------
When the output changes, ``output_state`` is updated *before* the device
write is attempted and is not rolled back if the write fails.  The in-memory
state and the physical output can therefore disagree until the next
successful write; the failure is classified and raises a MAJOR alarm.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Any, Callable, Dict, Optional

from core.device_transport import DeviceTransport, SimulatedTransport
from core.exceptions import (
    CommunicationFailure,
    ParameterLockedError,
    ReadOnlyParameterError,
    ThreadLifecycleFailure,
    ValidationFailure,
)
from core.hysteresis import next_state
from core.monitor_loop import STOP_TIMEOUT, MonitorLoop
from core.validation import (
    DEFAULT_PRIORITY,
    DEVICE_ADDR_RANGE,
    HYSTERESIS_RANGE,
    IDENTIFIER_MAX_LENGTH,
    IDENTIFIER_PATTERN,
    THRESHOLD_RANGE,
    UPDATE_RATE_RANGE,
    ThresholdConfig,
    Validator,
    check_range,
)
from health.fault_classifier import FaultClassifier
from health.fault_codes import (
    AlarmStatus,
    EpicsAlarmSeverity,
    EpicsAlarmStatus,
    FaultLevel,
    alarm_for,
    alarm_status_for_level,
)
from integration.param_registry import ParameterRegistry, ParamType

logger = logging.getLogger(__name__)

# Exposed parameter names
THRESHOLD_VALUE = "ThresholdValue"
CURRENT_VALUE = "CurrentValue"
OUTPUT_STATE = "OutputState"
COMPARE_RESULT = "CompareResult"
ENABLE = "Enable"
HYSTERESIS = "Hysteresis"
UPDATE_RATE = "UpdateRate"
ALARM_STATUS = "AlarmStatus"
DEVICE_PORT = "DevicePort"
DEVICE_ADDRESS = "DeviceAddress"

PARAM_TYPES = {
    THRESHOLD_VALUE: ParamType.FLOAT64,
    CURRENT_VALUE: ParamType.FLOAT64,
    OUTPUT_STATE: ParamType.INT32,
    COMPARE_RESULT: ParamType.INT32,
    ENABLE: ParamType.INT32,
    HYSTERESIS: ParamType.FLOAT64,
    UPDATE_RATE: ParamType.FLOAT64,
    ALARM_STATUS: ParamType.INT32,
    DEVICE_PORT: ParamType.OCTET,
    DEVICE_ADDRESS: ParamType.INT32,
}

READ_ONLY_PARAMS = frozenset({CURRENT_VALUE, OUTPUT_STATE, COMPARE_RESULT, ALARM_STATUS})

VALUE_LIMIT = 10.0


class ThresholdLogicController:
    """Stateful facade over one monitored channel.

    Parameters
    ----------
    port_name : str
        Name of this controller port.
    device_port : str
        Device port the value is read from and the output written to.
    device_addr : int
        Device address, 0-255.  Not rejected here (only logged) so that
        enabling can refuse an inconsistent configuration.
    transport : DeviceTransport, optional
        Defaults to a :class:`SimulatedTransport`.
    classifier : FaultClassifier, optional
        Shared fault classifier; a private one is created if omitted.
    registry : ParameterRegistry, optional
        Parameter table this controller publishes to.
    """

    def __init__(
        self,
        port_name: str,
        device_port: str,
        device_addr: int,
        transport: Optional[DeviceTransport] = None,
        classifier: Optional[FaultClassifier] = None,
        registry: Optional[ParameterRegistry] = None,
        threshold: float = 0.0,
        hysteresis: float = 0.1,
        update_rate: float = 10.0,
        priority: int = DEFAULT_PRIORITY,
        thread_factory: Optional[Callable[..., threading.Thread]] = None,
        stop_timeout: float = STOP_TIMEOUT,
    ):
        self.port_name = port_name
        self._classifier = classifier if classifier is not None else FaultClassifier()
        self._validator = Validator(self._classifier)
        self._transport = transport if transport is not None else SimulatedTransport()
        self._registry = registry if registry is not None else ParameterRegistry(port_name)
        self._lock = threading.RLock()

        # Configuration
        self._device_port = device_port or ""
        self._device_addr = device_addr
        self._threshold = threshold
        self._hysteresis = hysteresis
        self._update_rate = update_rate
        self._priority = priority

        # State
        self._current_value = 0.0
        self._output_state = False
        self._previous_output_state = False
        self._enabled = False
        self._alarm_status = AlarmStatus.NONE
        self._last_update = time.time()

        self._loop = MonitorLoop(
            self,
            name=f"ThresholdMonitor_{port_name}",
            classifier=self._classifier,
            thread_factory=thread_factory,
            stop_timeout=stop_timeout,
        )

        self._handles: Dict[str, int] = {
            name: self._registry.create_param(name, kind) for name, kind in PARAM_TYPES.items()
        }
        self._publish_all()

        result = self._validator.validate_configuration(self.config)
        if not result.is_valid:
            self._classifier.log_error(
                FaultLevel.WARNING, self._source("__init__"),
                f"configuration validation reported problems: {result.message} ({result.suggestion})",
            )
        self._registry.call_param_callbacks()
        self._classifier.log_error(
            FaultLevel.INFO, self._source("__init__"),
            f"controller created: port={port_name}, device port={device_port}, address={device_addr}",
        )

    # -- read access ---------------------------------------------------------

    @property
    def config(self) -> ThresholdConfig:
        with self._lock:
            return ThresholdConfig(
                port_name=self.port_name,
                device_port=self._device_port,
                device_addr=self._device_addr,
                update_rate=self._update_rate,
                priority=self._priority,
                threshold_value=self._threshold,
                hysteresis=self._hysteresis,
            )

    @property
    def registry(self) -> ParameterRegistry:
        return self._registry

    @property
    def loop(self) -> MonitorLoop:
        return self._loop

    @property
    def threshold(self) -> float:
        with self._lock:
            return self._threshold

    @property
    def hysteresis(self) -> float:
        with self._lock:
            return self._hysteresis

    @property
    def update_rate(self) -> float:
        with self._lock:
            return self._update_rate

    @property
    def enabled(self) -> bool:
        with self._lock:
            return self._enabled

    @property
    def current_value(self) -> float:
        with self._lock:
            return self._current_value

    @property
    def output_state(self) -> bool:
        with self._lock:
            return self._output_state

    @property
    def previous_output_state(self) -> bool:
        with self._lock:
            return self._previous_output_state

    @property
    def alarm_status(self) -> AlarmStatus:
        with self._lock:
            return self._alarm_status

    @property
    def last_update(self) -> float:
        with self._lock:
            return self._last_update

    @property
    def device_port(self) -> str:
        with self._lock:
            return self._device_port

    @property
    def device_addr(self) -> int:
        with self._lock:
            return self._device_addr

    # -- setters -------------------------------------------------------------

    def set_threshold(self, value: float) -> None:
        source = self._source("set_threshold")
        if not self._validator.validate_range("thresholdValue", value, *THRESHOLD_RANGE, source=source):
            raise self._reject(source, "threshold is outside -10.0V to +10.0V")
        value = float(value)
        with self._lock:
            hysteresis = self._hysteresis
            self._threshold = value
        if abs(value) < hysteresis:
            self._classifier.log_error(
                FaultLevel.WARNING, source,
                f"threshold smaller than hysteresis - threshold: {value:f}, hysteresis: {hysteresis:f}",
            )
        self._set_and_notify(THRESHOLD_VALUE, value)
        logger.debug("%s: threshold set to %f V", self.port_name, value)

    def set_hysteresis(self, value: float) -> None:
        source = self._source("set_hysteresis")
        if not self._validator.validate_range("hysteresis", value, *HYSTERESIS_RANGE, source=source):
            raise self._reject(source, "hysteresis is outside 0.0V to 5.0V")
        value = float(value)
        with self._lock:
            threshold = self._threshold
            self._hysteresis = value
        if value > abs(threshold):
            self._classifier.log_error(
                FaultLevel.WARNING, source,
                f"hysteresis larger than threshold - hysteresis: {value:f}, threshold: {threshold:f}",
            )
        self._set_and_notify(HYSTERESIS, value)
        logger.debug("%s: hysteresis set to %f V", self.port_name, value)

    def set_update_rate(self, value: float) -> None:
        source = self._source("set_update_rate")
        if not self._validator.validate_range("updateRate", value, *UPDATE_RATE_RANGE, source=source):
            raise self._reject(source, "update rate is outside 0.1Hz to 1000Hz")
        value = float(value)
        with self._lock:
            old = self._update_rate
            self._update_rate = value
        self._set_and_notify(UPDATE_RATE, value)
        logger.info("%s: update rate changed %f Hz -> %f Hz", self.port_name, old, value)
        if self._loop.is_running:
            logger.debug("%s: new update rate applies from the next loop iteration", self.port_name)

    def reset_update_rate(self, value: float) -> None:
        """Force the update rate without validation (used by the monitor loop)."""
        with self._lock:
            self._update_rate = value
        self._set_and_notify(UPDATE_RATE, value)

    def set_enabled(self, value: Any) -> None:
        source = self._source("set_enabled")
        try:
            raw = int(value)
        except (TypeError, ValueError):
            raise self._reject(source, f"enable value is not an integer: {value!r}")
        if raw not in (0, 1):
            logger.warning("%s: enable value %d is not 0 or 1, treated as %d", self.port_name, raw, int(raw != 0))
        new_enabled = raw != 0

        if new_enabled == self.enabled:
            if not new_enabled or self._loop.is_running:
                self._set_and_notify(ENABLE, int(new_enabled))
                logger.debug("%s: enable state unchanged (%s)", self.port_name, new_enabled)
                return
            logger.warning("%s: enabled but monitor loop not running, restarting it", self.port_name)

        if not new_enabled:
            with self._lock:
                self._enabled = False
            self._loop.stop()
            self._set_and_notify(ENABLE, 0)
            logger.info("%s: threshold logic disabled", self.port_name)
            return

        if not self.validate_parameters():
            raise self._reject(source, "parameter validation failed - cannot enable")
        if not self.device_port:
            raise self._reject(source, "device port not set - cannot enable")

        with self._lock:
            self._enabled = True
        try:
            self._loop.start()
        except ThreadLifecycleFailure:
            with self._lock:
                self._enabled = False
            self._set_and_notify(ENABLE, 0)
            raise
        self._set_and_notify(ENABLE, 1)
        logger.info(
            "%s: threshold logic enabled (device port: %s, address: %d)",
            self.port_name, self.device_port, self.device_addr,
        )

    def set_device_address(self, value: int) -> None:
        source = self._source("set_device_address")
        if not self._validator.validate_int_range("deviceAddr", value, *DEVICE_ADDR_RANGE, source=source):
            raise self._reject(source, f"device address out of range: {value!r} (range: 0-255)")
        with self._lock:
            if self._enabled:
                raise self._reject(source, "cannot change the device address while enabled", ParameterLockedError)
            self._device_addr = value
        self._set_and_notify(DEVICE_ADDRESS, value)
        logger.info("%s: device address set to %d", self.port_name, value)

    def set_device_port(self, value: str) -> None:
        source = self._source("set_device_port")
        if not self._validator.validate_string(
            "devicePort", value, IDENTIFIER_MAX_LENGTH, allow_empty=True,
            source=source, pattern=IDENTIFIER_PATTERN,
        ):
            raise self._reject(source, f"invalid device port name: {value!r}")
        with self._lock:
            if self._enabled:
                raise self._reject(source, "cannot change the device port while enabled", ParameterLockedError)
            self._device_port = value
        self._set_and_notify(DEVICE_PORT, value)
        logger.info("%s: device port set to '%s'", self.port_name, value)

    # -- parameter table -----------------------------------------------------

    def write_param(self, name: str, value: Any) -> None:
        """Write a parameter by its exposed name."""
        if name in READ_ONLY_PARAMS:
            self._classifier.log_error(
                FaultLevel.ERROR, self._source("write_param"),
                f"{name} is a read-only parameter (attempted value: {value!r})",
            )
            raise ReadOnlyParameterError(f"{name} is read-only")
        writers: Dict[str, Callable[[Any], None]] = {
            THRESHOLD_VALUE: self.set_threshold,
            HYSTERESIS: self.set_hysteresis,
            UPDATE_RATE: self.set_update_rate,
            ENABLE: self.set_enabled,
            DEVICE_PORT: self.set_device_port,
            DEVICE_ADDRESS: self.set_device_address,
        }
        try:
            writer = writers[name]
        except KeyError:
            raise KeyError(f"unknown parameter '{name}'") from None
        writer(value)

    def read_param(self, name: str) -> Any:
        """Read the live value of a parameter by its exposed name."""
        with self._lock:
            readers = {
                THRESHOLD_VALUE: self._threshold,
                CURRENT_VALUE: self._current_value,
                OUTPUT_STATE: int(self._output_state),
                COMPARE_RESULT: int(self._output_state),
                ENABLE: int(self._enabled),
                HYSTERESIS: self._hysteresis,
                UPDATE_RATE: self._update_rate,
                ALARM_STATUS: int(self._alarm_status),
                DEVICE_PORT: self._device_port,
                DEVICE_ADDRESS: self._device_addr,
            }
        try:
            return readers[name]
        except KeyError:
            raise KeyError(f"unknown parameter '{name}'") from None

    # -- validation ----------------------------------------------------------

    def validate_parameters(self) -> bool:
        """Full parameter check performed before enabling."""
        source = self._source("validate_parameters")
        problems = []
        with self._lock:
            if not check_range("thresholdValue", self._threshold, *THRESHOLD_RANGE).is_valid:
                problems.append(f"threshold out of range: {self._threshold}")
            if not check_range("hysteresis", self._hysteresis, *HYSTERESIS_RANGE).is_valid:
                problems.append(f"hysteresis out of range: {self._hysteresis}")
            if self._hysteresis > abs(self._threshold):
                logger.warning(
                    "%s: hysteresis %f larger than |threshold| %f (allowed)",
                    self.port_name, self._hysteresis, abs(self._threshold),
                )
            if not check_range("updateRate", self._update_rate, *UPDATE_RATE_RANGE).is_valid:
                problems.append(f"update rate out of range: {self._update_rate}")
            if not self._device_port:
                problems.append("device port not set")
            elif len(self._device_port) > IDENTIFIER_MAX_LENGTH:
                problems.append("device port name too long")
            lo, hi = DEVICE_ADDR_RANGE
            if not isinstance(self._device_addr, int) or not lo <= self._device_addr <= hi:
                problems.append(f"device address out of range: {self._device_addr}")
            if not -VALUE_LIMIT <= self._current_value <= VALUE_LIMIT:
                logger.warning("%s: current value %f outside expected range", self.port_name, self._current_value)
            try:
                self._alarm_status = AlarmStatus(self._alarm_status)
            except ValueError:
                logger.warning("%s: alarm status %r invalid, reset to NONE", self.port_name, self._alarm_status)
                self._alarm_status = AlarmStatus.NONE
                self._registry.set_param(self._handles[ALARM_STATUS], int(AlarmStatus.NONE))
            if self._enabled and not self._loop.is_running:
                logger.debug("%s: enabled but monitor thread not running yet", self.port_name)
            if self._enabled and not self._loop.has_thread:
                problems.append("enabled without a monitor thread")

        for problem in problems:
            logger.error("%s: %s", source, problem)
        if problems:
            return False
        logger.debug("%s: parameter validation passed", source)
        return True

    # -- cycle processing ----------------------------------------------------

    def run_cycle(self) -> None:
        """One full read -> decide -> write -> publish cycle."""
        if not self.enabled:
            return
        source = self._source("run_cycle")

        try:
            value = self._read_device()
        except CommunicationFailure as exc:
            fault = self._classifier.handle_communication_error(
                source, self.device_port, self.device_addr, "read current value", str(exc)
            )
            with self._lock:
                self._alarm_status = alarm_status_for_level(fault.level)
            self._update_alarm_status()
            self._registry.call_param_callbacks()
            return

        with self._lock:
            self._current_value = value
            previous = self._output_state
            new_state = next_state(previous, value, self._threshold, self._hysteresis)
            changed = new_state != previous
            if changed:
                self._previous_output_state = previous
                self._output_state = new_state

        write_failed = False
        if changed:
            try:
                self._write_device(new_state)
            except CommunicationFailure as exc:
                write_failed = True
                fault = self._classifier.handle_communication_error(
                    source, self.device_port, self.device_addr, "write output state", str(exc)
                )
                with self._lock:
                    self._alarm_status = alarm_status_for_level(fault.level)
            else:
                with self._lock:
                    self._alarm_status = AlarmStatus.NONE
                logger.info(
                    "%s: output %s -> %s (value=%.4f V)",
                    self.port_name, _level_name(previous), _level_name(new_state), value,
                )
            self._registry.set_param(self._handles[OUTPUT_STATE], int(new_state))
        else:
            with self._lock:
                if self._alarm_status != AlarmStatus.NONE:
                    self._alarm_status = AlarmStatus.NONE

        with self._lock:
            self._last_update = time.time()
            output = self._output_state
        self._registry.set_param(self._handles[CURRENT_VALUE], value)
        self._registry.set_param(self._handles[COMPARE_RESULT], int(output))
        self._update_alarm_status(write_failed=write_failed)
        self._registry.call_param_callbacks()

    def run_idle_cycle(self) -> None:
        """Disabled cycle: keep the current value fresh, nothing else."""
        try:
            value = self._read_device()
        except CommunicationFailure as exc:
            logger.debug("%s: idle read failed: %s", self.port_name, exc)
            return
        with self._lock:
            self._current_value = value
        self._set_and_notify(CURRENT_VALUE, value)

    # -- diagnostics / teardown ----------------------------------------------

    def get_diagnostics(self) -> Dict[str, Any]:
        with self._lock:
            diag = {
                "port_name": self.port_name,
                "device_port": self._device_port,
                "device_addr": self._device_addr,
                "threshold": self._threshold,
                "hysteresis": self._hysteresis,
                "update_rate": self._update_rate,
                "enabled": self._enabled,
                "current_value": self._current_value,
                "output_state": self._output_state,
                "previous_output_state": self._previous_output_state,
                "alarm_status": self._alarm_status.name,
                "last_update": self._last_update,
            }
        diag["loop_state"] = self._loop.state.value
        diag["loop_running"] = self._loop.is_running
        diag["loop_stats"] = self._loop.stats
        return diag

    def close(self) -> None:
        """Disable and stop the monitor loop before the controller is dropped."""
        with self._lock:
            self._enabled = False
        self._loop.stop()
        self._set_and_notify(ENABLE, 0)
        logger.info("%s: controller closed", self.port_name)

    # -- internal ------------------------------------------------------------

    def _source(self, method: str) -> str:
        return f"ThresholdLogicController[{self.port_name}].{method}"

    def _reject(self, source: str, message: str, exc_type: type = ValidationFailure) -> Exception:
        self._classifier.log_error(FaultLevel.ERROR, source, message)
        return exc_type(message)

    def _set_and_notify(self, name: str, value: Any) -> None:
        self._registry.set_param(self._handles[name], value)
        self._registry.call_param_callbacks()

    def _publish_all(self) -> None:
        for name in PARAM_TYPES:
            self._registry.set_param(self._handles[name], self.read_param(name))
        self._update_alarm_status()

    def _read_device(self) -> float:
        with self._lock:
            port, addr = self._device_port, self._device_addr
        session = self._connect(port, addr)
        try:
            value = float(self._transport.read_value(session))
        except CommunicationFailure:
            raise
        except Exception as exc:
            raise CommunicationFailure(f"read failed: {exc}") from exc
        finally:
            self._transport.disconnect(session)

        if math.isnan(value):
            raise CommunicationFailure("device returned NaN")
        if not -VALUE_LIMIT <= value <= VALUE_LIMIT:
            logger.warning("%s: value %f outside +/-%.1f V, clamped", self.port_name, value, VALUE_LIMIT)
            value = max(-VALUE_LIMIT, min(VALUE_LIMIT, value))
        return value

    def _write_device(self, state: bool) -> None:
        with self._lock:
            port, addr = self._device_port, self._device_addr
        session = self._connect(port, addr)
        try:
            self._transport.write_output(session, state)
        except CommunicationFailure:
            raise
        except Exception as exc:
            raise CommunicationFailure(f"write failed: {exc}") from exc
        finally:
            self._transport.disconnect(session)

    def _connect(self, port: str, addr: int) -> Any:
        try:
            return self._transport.connect(port, addr)
        except CommunicationFailure:
            raise
        except Exception as exc:
            raise CommunicationFailure(f"connect to {port} address {addr} failed: {exc}") from exc

    def _update_alarm_status(self, write_failed: bool = False) -> None:
        with self._lock:
            alarm = self._alarm_status
        status, severity = alarm_for(alarm)
        for name in (CURRENT_VALUE, OUTPUT_STATE, ALARM_STATUS):
            self._registry.set_param_alarm(self._handles[name], status, severity)
        if write_failed:
            self._registry.set_param_alarm(
                self._handles[OUTPUT_STATE], EpicsAlarmStatus.WRITE_ALARM, EpicsAlarmSeverity.MAJOR_ALARM
            )
        self._registry.set_param(self._handles[ALARM_STATUS], int(alarm))
        if alarm != AlarmStatus.NONE:
            logger.debug("%s: alarm %s (%s/%s)", self.port_name, alarm.name, status.name, severity.name)


def _level_name(state: bool) -> str:
    return "HIGH" if state else "LOW"
