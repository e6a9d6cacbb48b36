"""Exception taxonomy for Sleuth.

Only failures that end a session are exceptions. Command rejections and
execution failures are plain result values (see ``validator`` and
``executor``) that the session turns into the next prompt.
"""


class SleuthError(Exception):
    """Base class for all Sleuth errors."""


class TransportError(SleuthError):
    """Raised when a call to the model provider fails."""


class SchemaError(SleuthError):
    """Raised when a model reply never satisfied the requested schema."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class DeadlineExceeded(SleuthError):
    """Raised when the session deadline passed or was cancelled."""


class ConfigError(SleuthError):
    """Raised for missing or invalid configuration."""
