"""Parameter and configuration validation.

The ``check_*`` functions are pure: they return a :class:`ValidationResult`
carrying the verdict and its severity.  :class:`Validator` wraps them and
records every failure through the fault classifier so it is logged and
counted.

Severity policy
---------------
* NaN or infinite numbers always fail at ERROR, independent of the range.
* Out-of-range numbers fail at WARNING; the caller decides whether a
  warning blocks the operation.
* A ``None`` string fails at ERROR; empty (when not allowed), over-long or
  malformed strings fail at WARNING.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Optional, Pattern

from health.fault_classifier import FaultClassifier
from health.fault_codes import FaultLevel

logger = logging.getLogger(__name__)

IDENTIFIER_MAX_LENGTH = 63
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

THRESHOLD_RANGE = (-10.0, 10.0)
HYSTERESIS_RANGE = (0.0, 5.0)
UPDATE_RATE_RANGE = (0.1, 1000.0)
DEVICE_ADDR_RANGE = (0, 255)
PRIORITY_RANGE = (0, 99)

DEFAULT_PRIORITY = 50


@dataclass
class ValidationResult:
    is_valid: bool
    severity: FaultLevel = FaultLevel.INFO
    message: str = ""
    suggestion: str = ""


@dataclass(frozen=True)
class ThresholdConfig:
    """Immutable configuration snapshot validated as a unit."""
    port_name: str
    device_port: str
    device_addr: int
    update_rate: float = 10.0
    priority: int = DEFAULT_PRIORITY
    threshold_value: float = 0.0
    hysteresis: float = 0.1


# ---------------------------------------------------------------------------
# Pure checks
# ---------------------------------------------------------------------------

def check_range(name: str, value: float, min_value: float, max_value: float) -> ValidationResult:
    if isinstance(value, bool):
        return ValidationResult(False, FaultLevel.ERROR, f"parameter '{name}' is not a number: {value!r}")
    try:
        value = float(value)
    except (TypeError, ValueError):
        return ValidationResult(False, FaultLevel.ERROR, f"parameter '{name}' is not a number: {value!r}")
    if math.isnan(value) or math.isinf(value):
        return ValidationResult(
            False, FaultLevel.ERROR, f"parameter '{name}' has an invalid value (NaN or Inf)"
        )
    if value < min_value or value > max_value:
        return ValidationResult(
            False,
            FaultLevel.WARNING,
            f"parameter '{name}' value {value:f} is outside [{min_value:f}, {max_value:f}]",
        )
    return ValidationResult(True)


def check_int_range(name: str, value: int, min_value: int, max_value: int) -> ValidationResult:
    if isinstance(value, bool) or not isinstance(value, int):
        return ValidationResult(False, FaultLevel.ERROR, f"parameter '{name}' is not an integer: {value!r}")
    if value < min_value or value > max_value:
        return ValidationResult(
            False,
            FaultLevel.WARNING,
            f"integer parameter '{name}' value {value} is outside [{min_value}, {max_value}]",
        )
    return ValidationResult(True)


def check_string(
    name: str,
    value: Optional[str],
    max_length: int = IDENTIFIER_MAX_LENGTH,
    allow_empty: bool = False,
    pattern: Optional[Pattern[str]] = None,
) -> ValidationResult:
    if value is None:
        return ValidationResult(False, FaultLevel.ERROR, f"string parameter '{name}' is None")
    if not isinstance(value, str):
        return ValidationResult(False, FaultLevel.ERROR, f"parameter '{name}' is not a string: {value!r}")
    if not value:
        if allow_empty:
            return ValidationResult(True)
        return ValidationResult(False, FaultLevel.WARNING, f"string parameter '{name}' is empty")
    if len(value) > max_length:
        return ValidationResult(
            False,
            FaultLevel.WARNING,
            f"string parameter '{name}' length {len(value)} exceeds maximum {max_length}",
        )
    if pattern is not None and not pattern.match(value):
        return ValidationResult(
            False, FaultLevel.WARNING, f"string parameter '{name}' has invalid characters: {value!r}"
        )
    return ValidationResult(True)


# ---------------------------------------------------------------------------
# Recording validator
# ---------------------------------------------------------------------------

class Validator:
    """Runs the checks and records failures through *classifier*."""

    def __init__(self, classifier: Optional[FaultClassifier] = None):
        self._classifier = classifier if classifier is not None else FaultClassifier()

    def _record(self, result: ValidationResult, source: str) -> bool:
        if not result.is_valid:
            self._classifier.log_error(result.severity, source, result.message)
        return result.is_valid

    def validate_range(
        self, name: str, value: float, min_value: float, max_value: float, source: str = "Validator"
    ) -> bool:
        return self._record(check_range(name, value, min_value, max_value), source)

    def validate_int_range(
        self, name: str, value: int, min_value: int, max_value: int, source: str = "Validator"
    ) -> bool:
        return self._record(check_int_range(name, value, min_value, max_value), source)

    def validate_string(
        self,
        name: str,
        value: Optional[str],
        max_length: int = IDENTIFIER_MAX_LENGTH,
        allow_empty: bool = False,
        source: str = "Validator",
        pattern: Optional[Pattern[str]] = None,
    ) -> bool:
        return self._record(check_string(name, value, max_length, allow_empty, pattern), source)

    def validate_configuration(self, cfg: ThresholdConfig) -> ValidationResult:
        """Validate a whole configuration.

        Fields are checked in a fixed order and evaluation stops at the first
        hard failure.  An out-of-range priority and a hysteresis wider than
        ``|threshold_value|`` are warnings and do not stop evaluation; the
        latter still reports the configuration as valid.
        """
        source = "Validator.validate_configuration"
        result = ValidationResult(True)

        if not self.validate_string("port_name", cfg.port_name, source=source, pattern=IDENTIFIER_PATTERN):
            return ValidationResult(
                False, FaultLevel.ERROR, "port name is invalid",
                "use 1-63 alphanumeric or underscore characters",
            )
        if not self.validate_string("device_port", cfg.device_port, source=source, pattern=IDENTIFIER_PATTERN):
            return ValidationResult(
                False, FaultLevel.ERROR, "device port name is invalid",
                "specify a valid device port name",
            )
        if not self.validate_int_range("device_addr", cfg.device_addr, *DEVICE_ADDR_RANGE, source=source):
            return ValidationResult(
                False, FaultLevel.ERROR, "device address is out of range",
                "use a value in the range 0-255",
            )
        if not self.validate_range("update_rate", cfg.update_rate, *UPDATE_RATE_RANGE, source=source):
            return ValidationResult(
                False, FaultLevel.ERROR, "update rate is out of range",
                "use a value in the range 0.1-1000.0 Hz",
            )
        if not self.validate_int_range("priority", cfg.priority, *PRIORITY_RANGE, source=source):
            result = ValidationResult(
                False, FaultLevel.WARNING, "thread priority is outside the recommended range",
                f"use a value in the range 0-99 (default: {DEFAULT_PRIORITY})",
            )
        if not self.validate_range("threshold_value", cfg.threshold_value, *THRESHOLD_RANGE, source=source):
            return ValidationResult(
                False, FaultLevel.ERROR, "threshold value is out of range",
                "use a value in the range -10.0V to +10.0V",
            )
        if not self.validate_range("hysteresis", cfg.hysteresis, *HYSTERESIS_RANGE, source=source):
            return ValidationResult(
                False, FaultLevel.ERROR, "hysteresis is out of range",
                "use a value in the range 0.0V to 5.0V",
            )
        if cfg.hysteresis > abs(cfg.threshold_value):
            self._classifier.log_error(
                FaultLevel.WARNING, source,
                f"hysteresis {cfg.hysteresis:f} is larger than |threshold| {abs(cfg.threshold_value):f}",
            )
            result = ValidationResult(
                True, FaultLevel.WARNING, "hysteresis is larger than the threshold",
                "keep the hysteresis below the absolute threshold value",
            )

        if result.is_valid and result.severity == FaultLevel.INFO:
            result.message = "configuration is valid"
        return result
