#!/usr/bin/env python3
"""Threshold logic service.

Entry point that wires all subsystems together and runs until quit.

Usage
-----
    python main.py                    # simulated device transport
    python main.py --transport s7     # real PLC via snap7
    python main.py --no-shell         # no interactive stdin shell
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

# ---------------------------------------------------------------------------
# Ensure project root is on sys.path
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))

from configs.loaders import (
    controller_entries,
    load_controllers_config,
    load_ipc_config,
    load_runtime_config,
)
from core.device_transport import build_transport
from core.exceptions import ConfigError, ThresholdLogicError
from core.logging_setup import setup_logging
from health.error_stats import ErrorStatistics
from health.fault_classifier import FaultClassifier
from integration.alarm_pusher import AlarmPusher
from integration.api_server import APIServer
from pipeline.control import CommandController
from pipeline.port_manager import PortManager

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Threshold logic monitoring service")
    parser.add_argument(
        "--transport",
        choices=["simulated", "s7"],
        default="simulated",
        help="Device transport: 's7' for a real PLC, 'simulated' for synthetic data",
    )
    parser.add_argument(
        "--no-shell",
        action="store_true",
        help="Do not start the interactive command shell",
    )
    parser.add_argument(
        "--controllers",
        default=None,
        help="Controllers YAML file to use instead of configs/controllers.yaml (must exist)",
    )
    return parser.parse_args()


def create_configured_controllers(manager: PortManager, controllers_cfg) -> int:
    """Create (and optionally enable) the controllers listed in controllers.yaml.

    Returns the number of controllers created.
    """
    created = 0
    for entry in controller_entries(controllers_cfg):
        port = entry["port_name"]
        status = manager.threshold_logic_config(
            port, entry.get("device_port", ""), entry.get("device_addr", 0)
        )
        if status != 0:
            continue
        created += 1
        controller = manager.get(port)
        try:
            if "threshold" in entry:
                controller.set_threshold(entry["threshold"])
            if "hysteresis" in entry:
                controller.set_hysteresis(entry["hysteresis"])
            if "update_rate" in entry:
                controller.set_update_rate(entry["update_rate"])
            if entry.get("enable", False):
                controller.set_enabled(1)
        except ThresholdLogicError as exc:
            logger.error("Initial settings for %s rejected: %s", port, exc)
    return created


def main() -> None:
    global logger

    args = parse_args()

    # ── 1. Load configurations ──────────────────────────────────────────
    runtime_cfg = load_runtime_config()
    if args.controllers:
        try:
            controllers_cfg = load_controllers_config(Path(args.controllers).resolve(), required=True)
        except ConfigError as exc:
            print(f"Configuration error: {exc}", file=sys.stderr)
            sys.exit(2)
    else:
        controllers_cfg = load_controllers_config()
    ipc_cfg = load_ipc_config()

    # ── 2. Logging ──────────────────────────────────────────────────────
    logger = setup_logging(runtime_cfg.get("logging", {}))
    logger.info("=" * 60)
    logger.info("Threshold logic service starting (transport=%s)", args.transport)
    logger.info("=" * 60)

    # ── 3. Error statistics / fault classifier ──────────────────────────
    stats = ErrorStatistics()
    classifier = FaultClassifier(stats)

    # ── 4. Alarm pusher ─────────────────────────────────────────────────
    alarm_pusher = AlarmPusher(ipc_cfg)
    if alarm_pusher.enabled:
        classifier.register_callback(alarm_pusher.on_fault)

    # ── 5. Controllers ──────────────────────────────────────────────────
    transport_cfg = runtime_cfg.get("transport", {})
    monitor_cfg = runtime_cfg.get("monitor", {})
    manager = PortManager(
        classifier,
        transport_factory=lambda: build_transport(transport_cfg, mode=args.transport),
        controller_kwargs={"stop_timeout": monitor_cfg.get("stop_timeout_s", 5.0)},
    )
    count = create_configured_controllers(manager, controllers_cfg)
    logger.info("%d controller(s) configured", count)

    # ── 6. API server ───────────────────────────────────────────────────
    api_server = APIServer(ipc_cfg)
    api_server.set_references(port_manager=manager, classifier=classifier)
    api_server.start()

    # ── 7. Command shell ────────────────────────────────────────────────
    quit_event = threading.Event()
    ctrl = None
    if not args.no_shell:
        ctrl = CommandController(manager)
        ctrl.register("quit", lambda _args: quit_event.set())
        ctrl.register("q", lambda _args: quit_event.set())
        ctrl.register("status", lambda _args: print(json.dumps(
            {p: manager.get(p).get_diagnostics() for p in manager.ports()}, indent=2, default=str)))
        ctrl.start()

    # ── 8. Graceful shutdown on signals ─────────────────────────────────
    def signal_handler(sig, frame):
        quit_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # ── 9. Main loop ────────────────────────────────────────────────────
    logger.info("System ready.")
    try:
        while not quit_event.wait(0.5):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        _shutdown(ctrl, api_server, manager)


def _shutdown(ctrl, api_server, manager):
    logger.info("Shutting down...")
    if ctrl is not None:
        ctrl.stop()
    api_server.stop()
    manager.shutdown()
    logger.info("Shutdown complete.")


if __name__ == "__main__":
    main()
