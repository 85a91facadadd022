from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised during init when an option is unknown or malformed. Never retried."""


class RegionDiscoveryError(RuntimeError):
    """Raised when the bucket's region cannot be determined from the AWS global endpoint."""

    def __init__(self, bucket: str, message: str) -> None:
        super().__init__(f"unable to determine region for bucket {bucket!r}: {message}")
        self.bucket = bucket


class ObjectStoreError(RuntimeError):
    """A provider call failed. ``operation`` and ``key`` say which call and on what."""

    def __init__(self, operation: str, key: str, cause: Exception | None = None) -> None:
        message = f"error {operation} {key}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.key = key
