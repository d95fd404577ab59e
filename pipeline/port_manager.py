"""Controller port management – the creation and help commands.

``threshold_logic_config`` creates a controller for a new port name and
``threshold_logic_help`` returns the usage text.  Both follow the shell
convention of returning 0 on success and -1 on failure instead of raising.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from core.controller import ThresholdLogicController
from core.device_transport import DeviceTransport, SimulatedTransport
from core.validation import DEVICE_ADDR_RANGE
from health.fault_classifier import FaultClassifier
from health.fault_codes import FaultKind

logger = logging.getLogger(__name__)

HELP_TEXT = """
=== ThresholdLogicController usage ===

1. ThresholdLogicConfig - create a threshold logic controller
   usage: ThresholdLogicConfig(portName, devicePort, deviceAddr)
     portName   : name of the new controller port (string)
     devicePort : device port to read from / write to (string)
     deviceAddr : device address (integer, 0-255)
   example:
     ThresholdLogicConfig("THRESHOLD1", "USB1608G_2AO_PORT", 0)

2. Features
   - live monitoring of the analog input value
   - configurable threshold and hysteresis
   - automatic digital output control
   - alarm and status reporting

3. Parameters
   ThresholdValue  threshold (V)              rw
   CurrentValue    measured value (V)         ro
   OutputState     output state (0/1)         ro
   CompareResult   mirrors OutputState        ro
   Enable          enable control (0/1)       rw
   Hysteresis      hysteresis (V)             rw
   UpdateRate      update rate (Hz)           rw
   AlarmStatus     alarm status (0-3)         ro
   DevicePort      device port name           rw while disabled
   DeviceAddress   device address             rw while disabled

4. Typical sequence
   a) create the controller with ThresholdLogicConfig
   b) set threshold and hysteresis
   c) set Enable=1 to start monitoring

5. Troubleshooting
   - duplicate port name: choose another port name
   - device connection failure: check device port and address
   - alarms: check AlarmStatus
   - performance problems: lower UpdateRate
"""


class PortManager:
    """Owns every controller created through the creation command.

    Parameters
    ----------
    classifier : FaultClassifier
        Shared by all controllers so error statistics are process-wide.
    transport_factory : callable, optional
        Returns the transport for a new controller; defaults to a
        :class:`SimulatedTransport` per controller.
    controller_kwargs : dict, optional
        Extra keyword arguments for every new controller.
    """

    def __init__(
        self,
        classifier: FaultClassifier,
        transport_factory: Optional[Callable[[], DeviceTransport]] = None,
        controller_kwargs: Optional[Dict[str, Any]] = None,
    ):
        self._classifier = classifier
        self._transport_factory = transport_factory or SimulatedTransport
        self._controller_kwargs = controller_kwargs or {}
        self._controllers: Dict[str, ThresholdLogicController] = {}
        self._lock = threading.Lock()

    @property
    def classifier(self) -> FaultClassifier:
        return self._classifier

    def threshold_logic_config(self, port_name: str, device_port: str, device_addr: int) -> int:
        """Create a controller; returns 0 on success, -1 on failure."""
        if not port_name:
            logger.error("ThresholdLogicConfig: port name is empty")
            return -1
        if not device_port:
            logger.error("ThresholdLogicConfig: device port name is empty")
            return -1
        lo, hi = DEVICE_ADDR_RANGE
        if not isinstance(device_addr, int) or not lo <= device_addr <= hi:
            logger.error("ThresholdLogicConfig: device address out of range (0-255): %s", device_addr)
            return -1

        with self._lock:
            if port_name in self._controllers:
                logger.error("ThresholdLogicConfig: port name '%s' is already in use", port_name)
                return -1
            try:
                controller = ThresholdLogicController(
                    port_name,
                    device_port,
                    device_addr,
                    transport=self._transport_factory(),
                    classifier=self._classifier,
                    **self._controller_kwargs,
                )
            except MemoryError as exc:
                self._classifier.classify(FaultKind.ALLOCATION_FAILURE, message=str(exc),
                                          source="ThresholdLogicConfig")
                return -1
            except Exception as exc:
                logger.error("ThresholdLogicConfig: controller creation failed: %s", exc, exc_info=True)
                return -1
            self._controllers[port_name] = controller

        logger.info(
            "ThresholdLogicConfig: created port=%s device port=%s address=%d",
            port_name, device_port, device_addr,
        )
        return 0

    @staticmethod
    def threshold_logic_help() -> str:
        return HELP_TEXT

    def get(self, port_name: str) -> ThresholdLogicController:
        with self._lock:
            try:
                return self._controllers[port_name]
            except KeyError:
                raise KeyError(f"no controller on port '{port_name}'") from None

    def ports(self) -> List[str]:
        with self._lock:
            return sorted(self._controllers)

    def destroy(self, port_name: str) -> None:
        with self._lock:
            controller = self._controllers.pop(port_name, None)
        if controller is None:
            raise KeyError(f"no controller on port '{port_name}'")
        controller.close()

    def shutdown(self) -> None:
        with self._lock:
            controllers = list(self._controllers.values())
            self._controllers.clear()
        for controller in controllers:
            try:
                controller.close()
            except Exception as exc:
                logger.error("Error closing controller %s: %s", controller.port_name, exc)
