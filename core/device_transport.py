"""Device transport ports used by the controller.

A transport opens a session to a named device port at an address, reads the
analog input value and writes the digital output.  The controller brackets
every read and write with its own connect/disconnect, so no session is held
across cycles.
"""

from __future__ import annotations

import logging
import math
import random
import struct
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple

from core.exceptions import CommunicationFailure

logger = logging.getLogger(__name__)


class DeviceTransport(ABC):
    """Abstract connect/read/write/disconnect port."""

    @abstractmethod
    def connect(self, port: str, address: int) -> Any:
        """Open a session; raise :class:`CommunicationFailure` on error."""

    @abstractmethod
    def read_value(self, session: Any) -> float:
        """Return the current analog input value in volts."""

    @abstractmethod
    def write_output(self, session: Any, state: bool) -> None:
        """Drive the digital output."""

    @abstractmethod
    def disconnect(self, session: Any) -> None:
        """Release the session.  Must not raise."""


# ---------------------------------------------------------------------------
# Simulated transport for development / testing
# ---------------------------------------------------------------------------

@dataclass
class SimSession:
    port: str
    address: int


class SimulatedTransport(DeviceTransport):
    """Generates a slow sine wave (5 V +/- 4 V with noise) or replays queued samples.

    Failures can be injected per operation to exercise the fault paths.
    """

    def __init__(self, values: Optional[Iterable[float]] = None):
        self._lock = threading.Lock()
        self._queue: Deque[float] = deque(values or [])
        self._last_value: Optional[float] = None
        self.fail_connect = False
        self.fail_reads = False
        self.fail_writes = False
        self.writes: List[Tuple[str, int, bool]] = []
        self.connects = 0
        self.disconnects = 0

    def queue_values(self, values: Iterable[float]) -> None:
        with self._lock:
            self._queue.extend(values)

    def connect(self, port: str, address: int) -> SimSession:
        if self.fail_connect:
            raise CommunicationFailure(f"cannot connect to {port} address {address}")
        with self._lock:
            self.connects += 1
        return SimSession(port, address)

    def read_value(self, session: SimSession) -> float:
        if self.fail_reads:
            raise CommunicationFailure(f"read failed on {session.port}")
        with self._lock:
            if self._queue:
                self._last_value = self._queue.popleft()
                return self._last_value
            if self._last_value is not None:
                return self._last_value
        t = time.time()
        return 5.0 + 4.0 * math.sin(t * 0.1) + 0.1 * (random.random() - 0.5)

    def write_output(self, session: SimSession, state: bool) -> None:
        if self.fail_writes:
            raise CommunicationFailure(f"write failed on {session.port}")
        with self._lock:
            self.writes.append((session.port, session.address, bool(state)))
        logger.debug("SimulatedTransport write %s addr=%d -> %s",
                     session.port, session.address, "HIGH" if state else "LOW")

    def disconnect(self, session: SimSession) -> None:
        with self._lock:
            self.disconnects += 1


# ---------------------------------------------------------------------------
# S7 transport (thin abstraction over snap7)
# ---------------------------------------------------------------------------

class S7Transport(DeviceTransport):
    """Reads a REAL and writes an output byte on a Siemens S7 PLC.

    The device port name selects an entry of *ports* (ip/rack/slot) and the
    device address is the data block number.

    Parameters
    ----------
    ports : dict
        ``{port_name: {"ip": ..., "rack": 0, "slot": 1}}``.
    read_offset : int
        Byte offset of the analog value (big-endian REAL) in the data block.
    write_offset : int
        Byte offset of the output byte in the data block.
    """

    def __init__(self, ports: Dict[str, Dict[str, Any]], read_offset: int = 0, write_offset: int = 4):
        self._ports = ports
        self._read_offset = read_offset
        self._write_offset = write_offset

    def connect(self, port: str, address: int) -> Tuple[Any, int]:
        cfg = self._ports.get(port)
        if cfg is None:
            raise CommunicationFailure(f"unknown S7 device port '{port}'")
        try:
            import snap7
            client = snap7.client.Client()
            client.connect(cfg.get("ip", "192.168.0.10"), cfg.get("rack", 0), cfg.get("slot", 1))
        except Exception as exc:
            raise CommunicationFailure(f"cannot connect to PLC {cfg.get('ip')}: {exc}") from exc
        return client, address

    def read_value(self, session: Tuple[Any, int]) -> float:
        client, db_number = session
        try:
            raw = client.db_read(db_number, self._read_offset, 4)
        except Exception as exc:
            raise CommunicationFailure(f"db_read failed: {exc}") from exc
        return struct.unpack(">f", bytes(raw))[0]

    def write_output(self, session: Tuple[Any, int], state: bool) -> None:
        client, db_number = session
        try:
            client.db_write(db_number, self._write_offset, bytearray(struct.pack(">B", 1 if state else 0)))
        except Exception as exc:
            raise CommunicationFailure(f"db_write failed: {exc}") from exc

    def disconnect(self, session: Tuple[Any, int]) -> None:
        client, _ = session
        try:
            client.disconnect()
        except Exception as exc:
            logger.debug("S7 disconnect error ignored: %s", exc)


def build_transport(transport_cfg: Dict[str, Any], mode: str = "simulated") -> DeviceTransport:
    """Create the transport selected by *mode* from the ``transport`` config section."""
    if mode == "s7":
        s7_cfg = transport_cfg.get("s7", {})
        return S7Transport(
            ports=s7_cfg.get("ports", {}),
            read_offset=s7_cfg.get("read_offset", 0),
            write_offset=s7_cfg.get("write_offset", 4),
        )
    return SimulatedTransport()
