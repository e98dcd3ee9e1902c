"""Custom exception types for mafia session configuration and flow."""


class ConfigurationError(ValueError):
    """Raised when game configuration data is invalid."""


class ValidationError(ValueError):
    """Raised when an engine operation receives malformed input."""


class StateError(RuntimeError):
    """Raised when an operation is structurally impossible in the current state."""


class CollaboratorFailure(RuntimeError):
    """Raised by transports and task providers when an external call fails."""
