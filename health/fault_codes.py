"""Fault kind registry for the error handling subsystem.

Each fault kind has a fixed severity level and a recoverable verdict.  The
second half of the module maps the controller's alarm status onto the EPICS
alarm status/severity pair published to the host.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Tuple, Union


class FaultLevel(enum.IntEnum):
    INFO = 0
    WARNING = 1
    ERROR = 2
    FATAL = 3


class FaultKind(enum.Enum):
    ALLOCATION_FAILURE = "ALLOCATION_FAILURE"
    THREAD_CREATION_FAILURE = "THREAD_CREATION_FAILURE"
    PARAMETER_VALIDATION_FAILURE = "PARAMETER_VALIDATION_FAILURE"
    DEVICE_COMMUNICATION_FAILURE = "DEVICE_COMMUNICATION_FAILURE"
    TIMEOUT = "TIMEOUT"
    THREAD_FATAL = "THREAD_FATAL"


@dataclass(frozen=True)
class FaultCode:
    kind: str
    level: FaultLevel
    recoverable: bool
    description: str


# Fault kind registry
FAULT_CODES = {
    FaultKind.ALLOCATION_FAILURE: FaultCode(
        "ALLOCATION_FAILURE", FaultLevel.FATAL, False, "memory allocation failed, restart required"),
    FaultKind.THREAD_CREATION_FAILURE: FaultCode(
        "THREAD_CREATION_FAILURE", FaultLevel.ERROR, True, "thread creation failed, retry possible"),
    FaultKind.PARAMETER_VALIDATION_FAILURE: FaultCode(
        "PARAMETER_VALIDATION_FAILURE", FaultLevel.WARNING, True, "parameter validation failed, using defaults"),
    FaultKind.DEVICE_COMMUNICATION_FAILURE: FaultCode(
        "DEVICE_COMMUNICATION_FAILURE", FaultLevel.ERROR, True, "device communication error, check connection"),
    FaultKind.TIMEOUT: FaultCode(
        "TIMEOUT", FaultLevel.WARNING, True, "timeout, retry recommended"),
    FaultKind.THREAD_FATAL: FaultCode(
        "THREAD_FATAL", FaultLevel.FATAL, False, "fatal thread error, restart not possible"),
}

# Substrings that make a thread fault non-recoverable
FATAL_MARKERS = ("FATAL", "SEGFAULT", "CRASH")


def get_fault(kind: Union[FaultKind, str]) -> FaultCode:
    """Look up a fault kind; returns a generic recoverable ERROR if unknown."""
    if isinstance(kind, FaultKind):
        return FAULT_CODES[kind]
    try:
        return FAULT_CODES[FaultKind(kind)]
    except ValueError:
        return FaultCode(str(kind), FaultLevel.ERROR, True, f"unknown fault {kind}")


# ---------------------------------------------------------------------------
# Alarm mapping
# ---------------------------------------------------------------------------

class AlarmStatus(enum.IntEnum):
    """Controller-level alarm status, exposed as the AlarmStatus parameter."""
    NONE = 0
    WARNING = 1
    MAJOR = 2
    INVALID = 3


class EpicsAlarmSeverity(enum.IntEnum):
    NO_ALARM = 0
    MINOR_ALARM = 1
    MAJOR_ALARM = 2
    INVALID_ALARM = 3


class EpicsAlarmStatus(enum.IntEnum):
    NO_ALARM = 0
    READ_ALARM = 1
    WRITE_ALARM = 2
    HIHI_ALARM = 3
    HIGH_ALARM = 4
    LOLO_ALARM = 5
    LOW_ALARM = 6
    STATE_ALARM = 7
    COS_ALARM = 8
    COMM_ALARM = 9
    TIMEOUT_ALARM = 10
    HW_LIMIT_ALARM = 11
    CALC_ALARM = 12
    SCAN_ALARM = 13
    LINK_ALARM = 14
    SOFT_ALARM = 15
    BAD_SUB_ALARM = 16
    UDF_ALARM = 17
    DISABLE_ALARM = 18
    SIMM_ALARM = 19
    READ_ACCESS_ALARM = 20
    WRITE_ACCESS_ALARM = 21


AlarmPair = Tuple[EpicsAlarmStatus, EpicsAlarmSeverity]

ALARM_TABLE = {
    AlarmStatus.NONE: (EpicsAlarmStatus.NO_ALARM, EpicsAlarmSeverity.NO_ALARM),
    AlarmStatus.WARNING: (EpicsAlarmStatus.STATE_ALARM, EpicsAlarmSeverity.MINOR_ALARM),
    AlarmStatus.MAJOR: (EpicsAlarmStatus.COMM_ALARM, EpicsAlarmSeverity.MAJOR_ALARM),
    AlarmStatus.INVALID: (EpicsAlarmStatus.UDF_ALARM, EpicsAlarmSeverity.INVALID_ALARM),
}

_LEVEL_TO_ALARM = {
    FaultLevel.INFO: AlarmStatus.NONE,
    FaultLevel.WARNING: AlarmStatus.WARNING,
    FaultLevel.ERROR: AlarmStatus.MAJOR,
    FaultLevel.FATAL: AlarmStatus.INVALID,
}


def alarm_for(status: object) -> AlarmPair:
    """Map an alarm status onto the host's (status, severity) pair.

    Unknown input falls back to a communication alarm at MAJOR severity.
    """
    try:
        return ALARM_TABLE[AlarmStatus(status)]
    except (ValueError, TypeError):
        return EpicsAlarmStatus.COMM_ALARM, EpicsAlarmSeverity.MAJOR_ALARM


def alarm_status_for_level(level: FaultLevel) -> AlarmStatus:
    return _LEVEL_TO_ALARM.get(level, AlarmStatus.MAJOR)
