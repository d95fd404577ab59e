"""Interactive command shell for the main loop.

Reads one command per line from stdin and dispatches it:
    config <port> <device_port> <addr>  - create a controller (ThresholdLogicConfig)
    help                                - print the usage text (ThresholdLogicHelp)
    list                                - list controller ports
    get <port> <param>                  - read a parameter
    set <port> <param> <value>          - write a parameter
    diag <port>                         - print controller diagnostics
    stats                               - print error statistics
    quit                                - quit the application
"""

from __future__ import annotations

import json
import logging
import shlex
import sys
import threading
from typing import Callable, Dict, List, Optional

from core.controller import PARAM_TYPES
from core.exceptions import ThresholdLogicError
from integration.param_registry import ParamType
from pipeline.port_manager import PortManager

logger = logging.getLogger(__name__)


class CommandController:
    """Line-oriented stdin listener that dispatches shell commands."""

    HELP_TEXT = (
        "\n--- threshold-logic commands ---\n"
        "  config <port> <device_port> <addr>\n"
        "  help\n"
        "  list\n"
        "  get <port> <param>\n"
        "  set <port> <param> <value>\n"
        "  diag <port>\n"
        "  stats\n"
        "  quit\n"
        "--------------------------------\n"
    )

    def __init__(self, manager: PortManager, out=None):
        self._manager = manager
        self._out = out or sys.stdout
        self._handlers: Dict[str, Callable[[List[str]], None]] = {
            "config": self._cmd_config,
            "thresholdlogicconfig": self._cmd_config,
            "help": self._cmd_help,
            "thresholdlogichelp": self._cmd_help,
            "list": self._cmd_list,
            "get": self._cmd_get,
            "set": self._cmd_set,
            "diag": self._cmd_diag,
            "stats": self._cmd_stats,
        }
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def register(self, name: str, handler: Callable[[List[str]], None]) -> None:
        self._handlers[name.lower()] = handler

    def start(self) -> None:
        self._running = True
        self._thread = threading.Thread(target=self._listen, daemon=True, name="cmd-ctrl")
        self._thread.start()
        self._print(self.HELP_TEXT)

    def stop(self) -> None:
        self._running = False

    def execute(self, line: str) -> None:
        """Parse and run one command line."""
        try:
            tokens = shlex.split(line)
        except ValueError as exc:
            self._print(f"parse error: {exc}")
            return
        if not tokens:
            return
        name, args = tokens[0].lower(), tokens[1:]
        handler = self._handlers.get(name)
        if handler is None:
            self._print(f"unknown command: '{name}'  (type 'help')")
            return
        handler(args)

    def _listen(self) -> None:
        while self._running:
            try:
                line = sys.stdin.readline()
                if not line:
                    break
                self.execute(line.strip())
            except Exception as exc:
                logger.error("Command handler error: %s", exc)

    def _print(self, text: str) -> None:
        print(text, file=self._out)

    # -- commands ------------------------------------------------------------

    def _cmd_config(self, args: List[str]) -> None:
        if len(args) != 3:
            self._print("usage: config <port> <device_port> <addr>")
            return
        try:
            addr = int(args[2])
        except ValueError:
            self._print(f"device address must be an integer: {args[2]!r}")
            return
        status = self._manager.threshold_logic_config(args[0], args[1], addr)
        self._print("ok" if status == 0 else "failed")

    def _cmd_help(self, args: List[str]) -> None:
        self._print(self._manager.threshold_logic_help())

    def _cmd_list(self, args: List[str]) -> None:
        for port in self._manager.ports():
            self._print(port)

    def _cmd_get(self, args: List[str]) -> None:
        if len(args) != 2:
            self._print("usage: get <port> <param>")
            return
        try:
            value = self._manager.get(args[0]).read_param(args[1])
        except KeyError as exc:
            self._print(str(exc.args[0]))
            return
        self._print(f"{args[1]} = {value}")

    def _cmd_set(self, args: List[str]) -> None:
        if len(args) != 3:
            self._print("usage: set <port> <param> <value>")
            return
        port, name, raw = args
        try:
            controller = self._manager.get(port)
            controller.write_param(name, _coerce(name, raw))
        except KeyError as exc:
            self._print(str(exc.args[0]))
            return
        except ThresholdLogicError as exc:
            self._print(f"rejected: {exc}")
            return
        self._print(f"{name} = {controller.read_param(name)}")

    def _cmd_diag(self, args: List[str]) -> None:
        if len(args) != 1:
            self._print("usage: diag <port>")
            return
        try:
            diag = self._manager.get(args[0]).get_diagnostics()
        except KeyError as exc:
            self._print(str(exc.args[0]))
            return
        self._print(json.dumps(diag, indent=2, default=str))

    def _cmd_stats(self, args: List[str]) -> None:
        self._print(json.dumps(self._manager.classifier.stats.snapshot(), indent=2))


def _coerce(name: str, raw: str):
    """Convert a shell token to the declared type of parameter *name*.

    Octet parameters and tokens that do not parse stay strings, so the
    controller's validation reports them.
    """
    kind = PARAM_TYPES.get(name)
    converter = {ParamType.INT32: int, ParamType.FLOAT64: float}.get(kind)
    if converter is None:
        return raw
    try:
        return converter(raw)
    except ValueError:
        return raw
