"""Background monitor loop.

Runs in a dedicated daemon thread and invokes the host controller's cycle at
the configured update rate, correcting for processing time, counting
overruns and reporting the observed rate every ``REPORT_EVERY`` cycles.

The host object must provide:

* ``enabled`` – whether a full cycle should run,
* ``update_rate`` – target rate in Hz (read every iteration),
* ``reset_update_rate(rate)`` – used when the rate is invalid at start,
* ``run_cycle()`` – read, decide, write, publish,
* ``run_idle_cycle()`` – read and publish the current value only.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from core.exceptions import ThreadLifecycleFailure
from core.validation import UPDATE_RATE_RANGE
from health.fault_classifier import FaultClassifier
from health.fault_codes import FaultKind, FaultLevel

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_RATE = 10.0
MIN_SLEEP = 0.001
ERROR_BACKOFF = 1.0
REPORT_EVERY = 1000
STOP_TIMEOUT = 5.0
STOP_POLL_INTERVAL = 0.1


class LoopState(enum.Enum):
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


@dataclass
class RunState:
    """Bookkeeping of one started run, shared by the caller and the loop thread."""
    stop_requested: threading.Event = field(default_factory=threading.Event)
    exited: threading.Event = field(default_factory=threading.Event)
    thread_running: bool = False


class MonitorLoop:
    """Periodic execution unit owned by a controller.

    Parameters
    ----------
    host : object
        The controller driven by this loop (see module docstring).
    name : str
        Thread name.
    classifier : FaultClassifier
        Receives thread creation failures.
    thread_factory : callable, optional
        ``threading.Thread`` compatible factory.
    stop_timeout : float
        Seconds ``stop()`` waits for the loop to observe the stop flag.
    """

    def __init__(
        self,
        host: Any,
        name: str,
        classifier: FaultClassifier,
        thread_factory: Optional[Callable[..., threading.Thread]] = None,
        stop_timeout: float = STOP_TIMEOUT,
        error_backoff: float = ERROR_BACKOFF,
    ):
        self._host = host
        self._name = name
        self._classifier = classifier
        self._thread_factory = thread_factory or threading.Thread
        self._stop_timeout = stop_timeout
        self._error_backoff = error_backoff

        self._lock = threading.Lock()
        self._state = LoopState.STOPPED
        self._run_state: Optional[RunState] = None
        self._thread: Optional[threading.Thread] = None
        self._stats: Dict[str, Any] = {
            "cycles": 0,
            "overruns": 0,
            "errors": 0,
            "target_rate": 0.0,
            "observed_rate": 0.0,
            "last_processing_s": 0.0,
        }

    # -- public properties ---------------------------------------------------

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_running(self) -> bool:
        run_state = self._run_state
        return run_state is not None and run_state.thread_running

    @property
    def has_thread(self) -> bool:
        return self._thread is not None

    @property
    def stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> bool:
        """Spawn the loop thread.  Returns False if it is already running."""
        with self._lock:
            if self.is_running:
                logger.warning("Monitor loop %s already running, start ignored", self._name)
                return False
            self._state = LoopState.STARTING

            lo, hi = UPDATE_RATE_RANGE
            rate = self._host.update_rate
            if not lo <= rate <= hi:
                logger.warning(
                    "Monitor loop %s: update rate %.3f Hz invalid, reset to %.1f Hz",
                    self._name, rate, DEFAULT_UPDATE_RATE,
                )
                self._host.reset_update_rate(DEFAULT_UPDATE_RATE)

            run_state = RunState()
            try:
                thread = self._thread_factory(
                    target=self.run, args=(run_state,), daemon=True, name=self._name
                )
                run_state.thread_running = True
                thread.start()
            except Exception as exc:
                run_state.thread_running = False
                self._state = LoopState.STOPPED
                self._classifier.handle_thread_error("MonitorLoop.start", self._name, str(exc))
                raise ThreadLifecycleFailure(f"cannot start monitor thread {self._name}: {exc}") from exc

            self._run_state = run_state
            self._thread = thread
            self._state = LoopState.RUNNING
        logger.info("Monitor loop %s started (rate=%.3f Hz)", self._name, self._host.update_rate)
        return True

    def stop(self) -> bool:
        """Request the loop to exit and wait for it.

        Returns True if the exit was observed within the timeout.  A no-op
        returning True when the loop was never started.
        """
        with self._lock:
            run_state = self._run_state
            if run_state is None:
                return True
            self._state = LoopState.STOPPING
            run_state.stop_requested.set()

            exited = False
            waited = 0.0
            while waited < self._stop_timeout:
                if run_state.exited.wait(STOP_POLL_INTERVAL):
                    exited = True
                    break
                waited += STOP_POLL_INTERVAL

            if exited:
                logger.info("Monitor loop %s exited", self._name)
            else:
                logger.warning(
                    "Monitor loop %s did not exit within %.1fs; a device call may be stuck",
                    self._name, self._stop_timeout,
                )

            self._thread = None
            self._run_state = None
            self._state = LoopState.STOPPED
        return exited

    # -- execution -----------------------------------------------------------

    def run(self, run_state: RunState) -> None:
        """Loop body; runs until *run_state* requests a stop."""
        stop = run_state.stop_requested
        cycle_count = 0
        window_start = time.perf_counter()

        try:
            period = 1.0 / self._host.update_rate
            self._stats["target_rate"] = self._host.update_rate
            logger.debug("Monitor loop %s thread running (period=%.4fs)", self._name, period)
            while not stop.is_set():
                try:
                    t0 = time.perf_counter()

                    if self._host.enabled:
                        self._host.run_cycle()
                    else:
                        self._host.run_idle_cycle()

                    cycle_count += 1
                    self._stats["cycles"] += 1
                    if cycle_count % REPORT_EVERY == 0:
                        now = time.perf_counter()
                        observed = cycle_count / (now - window_start)
                        self._stats["observed_rate"] = observed
                        logger.info(
                            "Monitor loop %s: observed %.2f Hz (target %.2f Hz)",
                            self._name, observed, 1.0 / period,
                        )
                        cycle_count = 0
                        window_start = now

                    elapsed = time.perf_counter() - t0
                    self._stats["last_processing_s"] = elapsed
                    if elapsed > period:
                        self._stats["overruns"] += 1
                        logger.warning(
                            "Monitor loop %s overrun: processing %.4fs > period %.4fs",
                            self._name, elapsed, period,
                        )
                    stop.wait(max(period - elapsed, MIN_SLEEP))

                except Exception as exc:
                    self._stats["errors"] += 1
                    self._classifier.log_detailed_error(
                        FaultLevel.ERROR, f"MonitorLoop[{self._name}]", "cycle error", details=repr(exc)
                    )
                    logger.debug("Monitor loop %s cycle traceback", self._name, exc_info=True)
                    stop.wait(self._error_backoff)

                new_period = 1.0 / self._host.update_rate
                if abs(new_period - period) > 0.001:
                    logger.info(
                        "Monitor loop %s period changed: %.4fs -> %.4fs",
                        self._name, period, new_period,
                    )
                period = new_period
                self._stats["target_rate"] = 1.0 / period
        except Exception as exc:
            self._classifier.classify(
                FaultKind.THREAD_FATAL, message=f"thread: {self._name}, message: {exc}",
                source=f"MonitorLoop[{self._name}]",
            )
        finally:
            if self._run_state is run_state:
                self._state = LoopState.STOPPED
            run_state.thread_running = False
            run_state.exited.set()
            logger.debug("Monitor loop %s thread exiting", self._name)
