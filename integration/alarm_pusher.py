"""Alarm pusher – sends HTTP POST alerts for classified faults.

Runs asynchronously to avoid blocking the monitor loops.
Supports multiple targets with configurable retries.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict

from health.fault_classifier import FaultEvent
from health.fault_codes import FaultLevel

logger = logging.getLogger(__name__)


class AlarmPusher:
    """Push fault notifications to external systems via HTTP POST.

    Parameters
    ----------
    ipc_cfg : dict
        The full content of ``ipc.yaml``; the ``alarm_pusher`` section is used.
    """

    def __init__(self, ipc_cfg: Dict[str, Any]):
        cfg = ipc_cfg.get("alarm_pusher", {})
        self._enabled = cfg.get("enabled", False)
        self._targets = cfg.get("targets", [])
        self._min_level = str(cfg.get("min_fault_level_to_push", "ERROR")).upper()
        self._retry_delay = cfg.get("retry_delay_s", 1.0)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def should_push(self, level: str) -> bool:
        """Check if the given level name meets the minimum push threshold."""
        order = FaultLevel.__members__
        current = order.get(str(level).upper(), FaultLevel.INFO)
        minimum = order.get(self._min_level, FaultLevel.ERROR)
        return current >= minimum

    def on_fault(self, event: FaultEvent) -> None:
        """Fault classifier callback."""
        c = event.classification
        self.push_alarm(
            c.kind,
            f"[{event.source}] {c.message} (code={event.code}, recoverable={c.recoverable})",
            c.level.name,
        )

    def push_alarm(self, fault_kind: str, message: str, level: str = "ERROR") -> None:
        """Send an alarm to all configured targets (non-blocking).

        Parameters
        ----------
        fault_kind : str
            The fault kind (e.g. ``"DEVICE_COMMUNICATION_FAILURE"``).
        message : str
            Human-readable description.
        level : str
            Severity level name.
        """
        if not self._enabled:
            return
        if not self.should_push(level):
            return

        payload = {
            "source": "threshold_logic",
            "fault_kind": fault_kind,
            "message": message,
            "level": level,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
        }

        t = threading.Thread(
            target=self._send_to_all,
            args=(payload,),
            daemon=True,
            name="alarm-push",
        )
        t.start()

    def _send_to_all(self, payload: Dict[str, Any]) -> None:
        for target in self._targets:
            url = target.get("url", "")
            timeout = target.get("timeout_s", 5)
            retries = target.get("retries", 3)
            self._send_with_retry(url, payload, timeout, retries)

    def _send_with_retry(
        self, url: str, payload: Dict[str, Any], timeout: float, retries: int
    ) -> bool:
        import httpx

        for attempt in range(1, retries + 1):
            try:
                resp = httpx.post(
                    url,
                    json=payload,
                    timeout=timeout,
                    headers={"Content-Type": "application/json"},
                )
                if resp.status_code < 300:
                    logger.info("Alarm pushed to %s (attempt %d)", url, attempt)
                    return True
                logger.warning(
                    "Alarm push to %s returned %d (attempt %d)",
                    url, resp.status_code, attempt,
                )
            except Exception as exc:
                logger.warning("Alarm push to %s failed (attempt %d): %s", url, attempt, exc)

            if attempt < retries:
                time.sleep(self._retry_delay)

        logger.error("Alarm push to %s exhausted all %d retries", url, retries)
        return False
