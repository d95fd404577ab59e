"""Custom exception classes for the threshold logic controller.

Each exception type maps to a distinct failure domain so that the fault
classifier can map it to a severity and the caller can decide whether the
failure blocks the operation.
"""


class ThresholdLogicError(Exception):
    """Base exception for all threshold logic errors."""


class ValidationFailure(ThresholdLogicError):
    """Raised when a field is outside its declared domain or malformed."""


class ReadOnlyParameterError(ValidationFailure):
    """Raised on a write attempt to a read-only parameter."""


class ParameterLockedError(ValidationFailure):
    """Raised when a parameter can only be changed while the controller is disabled."""


class CommunicationFailure(ThresholdLogicError):
    """Raised when a device connect, read or write operation fails."""


class ThreadLifecycleFailure(ThresholdLogicError):
    """Raised when the monitor thread cannot be spawned or torn down."""


class ConfigError(ThresholdLogicError):
    """Raised when a configuration file is missing or malformed."""
