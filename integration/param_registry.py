"""In-process parameter registry.

Holds the published value and alarm of every parameter of one controller
port.  Changes are batched: ``set_param`` marks a parameter dirty and
``call_param_callbacks`` delivers the dirty set to subscribers.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Set

from health.fault_codes import EpicsAlarmSeverity, EpicsAlarmStatus

logger = logging.getLogger(__name__)


class ParamType(enum.Enum):
    FLOAT64 = "float64"
    INT32 = "int32"
    OCTET = "octet"


@dataclass
class ParamEntry:
    name: str
    kind: ParamType
    value: Any = None
    alarm_status: EpicsAlarmStatus = EpicsAlarmStatus.NO_ALARM
    alarm_severity: EpicsAlarmSeverity = EpicsAlarmSeverity.NO_ALARM


ParamCallback = Callable[[str, Dict[str, ParamEntry]], None]


class ParameterRegistry:
    """Parameter table of one port."""

    def __init__(self, port_name: str):
        self.port_name = port_name
        self._lock = threading.Lock()
        self._params: List[ParamEntry] = []
        self._index: Dict[str, int] = {}
        self._dirty: Set[int] = set()
        self._subscribers: List[ParamCallback] = []

    def create_param(self, name: str, kind: ParamType) -> int:
        with self._lock:
            if name in self._index:
                raise ValueError(f"parameter '{name}' already exists on port {self.port_name}")
            handle = len(self._params)
            self._params.append(ParamEntry(name=name, kind=kind))
            self._index[name] = handle
            return handle

    def find_param(self, name: str) -> int:
        with self._lock:
            try:
                return self._index[name]
            except KeyError:
                raise KeyError(f"no parameter '{name}' on port {self.port_name}") from None

    def set_param(self, handle: int, value: Any) -> None:
        with self._lock:
            entry = self._params[handle]
            if entry.value != value:
                entry.value = value
                self._dirty.add(handle)

    def get_param(self, handle: int) -> Any:
        with self._lock:
            return self._params[handle].value

    def set_param_alarm(
        self, handle: int, status: EpicsAlarmStatus, severity: EpicsAlarmSeverity
    ) -> None:
        with self._lock:
            entry = self._params[handle]
            if (entry.alarm_status, entry.alarm_severity) != (status, severity):
                entry.alarm_status = EpicsAlarmStatus(status)
                entry.alarm_severity = EpicsAlarmSeverity(severity)
                self._dirty.add(handle)

    def get_param_alarm(self, handle: int):
        with self._lock:
            entry = self._params[handle]
            return entry.alarm_status, entry.alarm_severity

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                p.name: {
                    "value": p.value,
                    "alarm_status": p.alarm_status.name,
                    "alarm_severity": p.alarm_severity.name,
                }
                for p in self._params
            }

    # -- change notification -------------------------------------------------

    def subscribe(self, cb: ParamCallback) -> None:
        self._subscribers.append(cb)

    def call_param_callbacks(self) -> None:
        """Deliver every parameter changed since the previous call."""
        with self._lock:
            if not self._dirty:
                return
            changed = {
                self._params[h].name: ParamEntry(**vars(self._params[h])) for h in sorted(self._dirty)
            }
            self._dirty.clear()
            subscribers = list(self._subscribers)
        for cb in subscribers:
            try:
                cb(self.port_name, changed)
            except Exception as exc:
                logger.error("Parameter callback error on %s: %s", self.port_name, exc)
