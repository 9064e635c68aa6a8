"""Error taxonomy and the internal error reporting hook.

Failures in the append and upload paths never propagate to the host
application. They are converted into these exceptions and handed to an
``ErrorReporter`` callback, which by default just logs them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)

ErrorReporter = Callable[[Exception], None]


class AnalyticsError(Exception):
    """Base class for all errors reported by batchline."""


class StorageIOError(AnalyticsError):
    """A batch file could not be opened, read or written."""

    def __init__(self, path: Path | str, error: BaseException) -> None:
        """Initialise StorageIOError.

        Args:
            path: File the operation was acting on.
            error: The underlying OS error.
        """
        super().__init__(f"I/O error on {path}: {error}")
        self.path = Path(path)
        self.error = error


class BatchOpenError(AnalyticsError):
    """The upload request for a batch could not be built."""


class NetworkUnknownError(AnalyticsError):
    """The transport failed before an HTTP status was received."""

    def __init__(self, url: str | None, error: BaseException) -> None:
        super().__init__(f"Network error for {url}: {error}")
        self.url = url
        self.error = error


class _StatusCodeError(AnalyticsError):
    description = "Unexpected HTTP status"

    def __init__(self, url: str | None, status_code: int) -> None:
        super().__init__(f"{self.description} {status_code} for {url}")
        self.url = url
        self.status_code = status_code


class NetworkUnexpectedHTTPCodeError(_StatusCodeError):
    """The server answered with a status outside the accepted range."""


class NetworkServerLimitedError(_StatusCodeError):
    """The server is rate limiting this client (HTTP 429)."""

    description = "Rate limited with HTTP"


class NetworkServerRejectedError(_StatusCodeError):
    """The server refused the payload."""

    description = "Rejected with HTTP"


class NetworkInvalidDataError(AnalyticsError):
    """A successful response carried no usable body."""


class JsonUnableToDeserializeError(AnalyticsError):
    """A response body could not be decoded into the expected model."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(f"Unable to deserialize response: {error}")
        self.error = error


class SettingsFailError(AnalyticsError):
    """Fetching remote settings failed; ``cause`` says why."""

    def __init__(self, cause: AnalyticsError) -> None:
        super().__init__(f"Settings fetch failed: {cause}")
        self.cause = cause


class TaskCancelledError(AnalyticsError):
    """The transfer was cancelled by the holder of its task."""


def log_internal_error(error: Exception) -> None:
    """Default error reporter: log and carry on."""
    logger.warning("Internal error: %s", error)
