"""Exception types raised across the aggregation pipeline."""


class EmonHubError(Exception):
    """Base class for all emonhub errors."""


class StoreError(EmonHubError):
    """The document store could not be reached or rejected an operation."""


class RecordDecodeError(EmonHubError):
    """A stored document does not decode into the expected record shape."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid document at {path}: {reason}")
        self.path = path
        self.reason = reason


class ConfigError(EmonHubError):
    """Configuration file is missing required values or cannot be parsed."""
