"""Thread-safe error statistics counters."""

from __future__ import annotations

import logging
import threading
from typing import Dict

from health.fault_codes import FaultLevel

logger = logging.getLogger(__name__)


class ErrorStatistics:
    """Per-severity counters guarded by one dedicated lock.

    One instance is shared by every component that records faults, so
    several controllers may increment it concurrently.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Dict[FaultLevel, int] = {level: 0 for level in FaultLevel}

    def increment(self, level: FaultLevel) -> None:
        with self._lock:
            self._counts[FaultLevel(level)] += 1

    def count(self, level: FaultLevel) -> int:
        with self._lock:
            return self._counts[FaultLevel(level)]

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {level.name.lower(): n for level, n in self._counts.items()}

    def reset(self) -> None:
        with self._lock:
            for level in self._counts:
                self._counts[level] = 0
        logger.info("Error statistics reset")
