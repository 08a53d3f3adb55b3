"""Error types raised by the validation bot."""
from __future__ import annotations


class BotError(Exception):
    """Base class for failures that abort a single work item."""


class DownloadError(BotError):
    """Raised when an artifact cannot be downloaded."""

    def __init__(self, url: str, status: int | None = None, reason: str | None = None):
        self.url = url
        self.status = status
        self.reason = reason
        detail = f"HTTP {status}" if status is not None else (reason or "network error")
        super().__init__(f"Failed to download {url}: {detail}")


class HashMismatchError(BotError):
    """Raised when a downloaded artifact does not match its declared hash."""

    def __init__(self, key: str, actual: str):
        self.key = key
        self.actual = actual
        super().__init__(f"Downloaded artifact {key} hashed to {actual}")


class ExecutableNotFoundError(BotError):
    """Raised when a build tree does not contain the emulator executable."""


class ProfileConfigError(BotError):
    """Raised when the emulator profile cannot be prepared."""


class UnsupportedPlatformError(BotError):
    """Raised when the host platform is not one we know how to run builds on."""


class CoordinatorError(Exception):
    """Raised when the coordinator cannot be reached or answers badly."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)
