"""Fault classifier – centralised fault event handling.

Maps raw fault kinds to a severity and a recoverable verdict, counts every
recorded fault in the shared error statistics, logs it, and hands the event
to registered callbacks (e.g. the alarm pusher).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from health.error_stats import ErrorStatistics
from health.fault_codes import (
    FATAL_MARKERS,
    FaultKind,
    FaultLevel,
    get_fault,
)

logger = logging.getLogger(__name__)


@dataclass
class Classification:
    kind: str
    level: FaultLevel
    recoverable: bool
    message: str


@dataclass
class FaultEvent:
    classification: Classification
    source: str
    code: int = 0
    timestamp: float = field(default_factory=time.time)


class FaultClassifier:
    """Classifies faults and records them.

    Parameters
    ----------
    stats : ErrorStatistics, optional
        Shared statistics collector.  A private one is created if omitted.
    """

    def __init__(self, stats: Optional[ErrorStatistics] = None):
        self.stats = stats if stats is not None else ErrorStatistics()
        self._on_fault_callbacks: List[Callable[[FaultEvent], None]] = []

    def register_callback(self, cb: Callable[[FaultEvent], None]) -> None:
        """Register a callback invoked whenever a fault is classified."""
        self._on_fault_callbacks.append(cb)

    # -- logging -------------------------------------------------------------

    def log_error(self, level: FaultLevel, source: str, message: str) -> None:
        """Count and log a message at *level*."""
        self.stats.increment(level)
        logger.log(_level_to_int(level), "[%s] %s", source, message)

    def log_detailed_error(
        self, level: FaultLevel, source: str, message: str, details: str = "", code: int = 0
    ) -> None:
        if details:
            self.log_error(level, source, f"{message} [details: {details}] [code: {code}]")
        else:
            self.log_error(level, source, f"{message} [code: {code}]")

    # -- classification ------------------------------------------------------

    def classify(
        self,
        kind: Union[FaultKind, str],
        code: int = 0,
        message: str = "",
        source: str = "",
    ) -> Classification:
        """Classify a fault, count it once, and notify callbacks.

        Never raises.
        """
        fc = get_fault(kind)
        level = fc.level
        recoverable = fc.recoverable

        if fc.kind == FaultKind.THREAD_CREATION_FAILURE.value and _has_fatal_marker(message):
            level = FaultLevel.FATAL
            recoverable = False

        if fc.kind in FaultKind.__members__:
            text = f"{fc.description}: {message}" if message else fc.description
        else:
            text = f"runtime error - type: {kind}, code: {code}"
            if message:
                text = f"{text}, {message}"

        result = Classification(kind=fc.kind, level=level, recoverable=recoverable, message=text)
        self.log_error(level, source or "FaultClassifier", text)

        event = FaultEvent(classification=result, source=source, code=code)
        for cb in self._on_fault_callbacks:
            try:
                cb(event)
            except Exception as exc:
                logger.error("Fault callback error: %s", exc)
        return result

    def handle_communication_error(
        self, source: str, device_port: str, device_addr: int, operation: str, details: str = ""
    ) -> Classification:
        """Classify a failed device operation.  Always recoverable."""
        message = f"port: {device_port}, address: {device_addr}, operation: {operation}"
        if details:
            message = f"{message} ({details})"
        return self.classify(
            FaultKind.DEVICE_COMMUNICATION_FAILURE, message=message, source=source
        )

    def handle_thread_error(self, source: str, thread_name: str, message: str) -> Classification:
        """Classify a thread fault; crash markers make it non-recoverable."""
        return self.classify(
            FaultKind.THREAD_CREATION_FAILURE,
            message=f"thread: {thread_name}, message: {message}",
            source=source,
        )


def _has_fatal_marker(message: str) -> bool:
    upper = message.upper()
    return any(marker in upper for marker in FATAL_MARKERS)


def _level_to_int(level: FaultLevel) -> int:
    return {
        FaultLevel.INFO: logging.INFO,
        FaultLevel.WARNING: logging.WARNING,
        FaultLevel.ERROR: logging.ERROR,
        FaultLevel.FATAL: logging.CRITICAL,
    }.get(level, logging.ERROR)
