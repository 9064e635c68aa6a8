"""HTTP client that uploads sealed batches and fetches project settings.

Every upload is a single attempt. The outcome is classified from the HTTP
status (or transport error) and handed to the caller, which decides whether
the batch file is removed or kept for a later attempt.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable
from pathlib import Path
from urllib.parse import urlparse

from pydantic import ValidationError

from batchline.config_manager.analytics_config import ClientConfig
from batchline.const import (
    BATCH_UPLOAD_PATH,
    REJECTED_BATCH_LOG_LINES,
    SETTINGS_PATH_TEMPLATE,
)
from batchline.errors import (
    AnalyticsError,
    BatchOpenError,
    ErrorReporter,
    JsonUnableToDeserializeError,
    NetworkInvalidDataError,
    NetworkServerLimitedError,
    NetworkServerRejectedError,
    NetworkUnexpectedHTTPCodeError,
    NetworkUnknownError,
    SettingsFailError,
    log_internal_error,
)
from batchline.models import DeliveryOutcome, FailureReason, Settings
from batchline.storage_management.line_stream import read_leading_lines

from .session import DataTask, HTTPRequest, HTTPSession, RequestsSession

logger = logging.getLogger(__name__)

UploadCompletion = Callable[[DeliveryOutcome], None]
SettingsCompletion = Callable[[Settings | None, AnalyticsError | None], None]


def classify_response(
    status_code: int | None, error: BaseException | None = None
) -> DeliveryOutcome:
    """Map a transport error or HTTP status to a delivery outcome.

    Checked in order: transport error, 1-299, 300-399, 429, 400, anything else.

    Args:
        status_code: HTTP status, if a response was received.
        error: Transport error, if the request did not complete.

    Returns:
        The outcome; retriable outcomes keep the batch, the others remove it.
    """
    if error is not None or status_code is None:
        return DeliveryOutcome.retriable(FailureReason.UNKNOWN, error=error)
    if 1 <= status_code < 300:
        return DeliveryOutcome.success(status_code)
    if 300 <= status_code < 400:
        return DeliveryOutcome.retriable(
            FailureReason.UNEXPECTED_CODE, status_code=status_code
        )
    if status_code == 429:
        return DeliveryOutcome.retriable(
            FailureReason.SERVER_LIMITED, status_code=status_code
        )
    if status_code == 400:
        return DeliveryOutcome.terminal(
            FailureReason.UNEXPECTED_CODE, status_code=status_code
        )
    return DeliveryOutcome.terminal(
        FailureReason.SERVER_REJECTED, status_code=status_code
    )


def authorization_header_for_write_key(write_key: str) -> str:
    """Basic auth credential for a write key (key as user, empty password)."""
    return base64.b64encode(f"{write_key}:".encode()).decode("ascii")


class HTTPClient:
    """Builds requests and classifies their outcomes.

    Tasks are returned without being started; the caller resumes them.
    """

    def __init__(
        self,
        config: ClientConfig,
        session: HTTPSession | None = None,
        error_reporter: ErrorReporter | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            config: Hosts, user agent, timeout and request hook.
            session: Transport capability. Defaults to a ``RequestsSession``.
            error_reporter: Receives every network or decode failure.
        """
        self._config = config
        self.session: HTTPSession = session or RequestsSession()
        self._report_error = error_reporter or log_internal_error

    @staticmethod
    def build_url(host: str, path: str) -> str | None:
        """Return ``https://<host><path>``, or None if no usable URL results."""
        url = f"https://{host}{path}"
        parsed = urlparse(url)
        if not parsed.netloc or " " in url:
            return None
        return url

    def configured_request(self, url: str, method: str) -> HTTPRequest:
        """Build a request with the standard headers, then apply the request hook."""
        request = HTTPRequest(
            url=url,
            method=method,
            headers={
                "Content-Type": "application/json; charset=utf-8",
                "User-Agent": self._config.user_agent,
                "Accept-Encoding": "gzip",
            },
            timeout=self._config.timeout,
        )
        if self._config.request_factory is not None:
            request = self._config.request_factory(request)
        return request

    def _upload_url(self, completion: UploadCompletion) -> str | None:
        url = self.build_url(self._config.api_host, BATCH_UPLOAD_PATH)
        if url is None:
            error = BatchOpenError(
                f"Cannot build upload URL from host {self._config.api_host!r}"
            )
            self._report_error(error)
            completion(DeliveryOutcome.retriable(FailureReason.UNKNOWN, error=error))
        return url

    def start_batch_upload(
        self, write_key: str, batch: Path, completion: UploadCompletion
    ) -> DataTask | None:
        """Create an upload task streaming ``batch`` as the request body.

        Args:
            write_key: Write key the batch belongs to.
            batch: Sealed batch file.
            completion: Receives the classified outcome once.

        Returns:
            The suspended task, or None if no request could be built (in which
            case ``completion`` has already been called).
        """
        url = self._upload_url(completion)
        if url is None:
            return None

        request = self.configured_request(url, "POST")
        logger.debug("Uploading %s for %s\n%s", batch.name, write_key, request.to_curl())

        def on_complete(
            body: bytes | None, status: int | None, error: BaseException | None
        ) -> None:
            completion(self._handle_response(url, body, status, error, batch))

        return self.session.upload_file(request, batch, on_complete)

    def start_batch_upload_bytes(
        self, write_key: str, data: bytes, completion: UploadCompletion
    ) -> DataTask | None:
        """Like ``start_batch_upload`` but with an in-memory batch."""
        url = self._upload_url(completion)
        if url is None:
            return None

        request = self.configured_request(url, "POST")
        logger.debug("Uploading %d bytes for %s", len(data), write_key)

        def on_complete(
            body: bytes | None, status: int | None, error: BaseException | None
        ) -> None:
            completion(self._handle_response(url, body, status, error, None))

        return self.session.upload_bytes(request, data, on_complete)

    def _handle_response(
        self,
        url: str,
        body: bytes | None,
        status: int | None,
        error: BaseException | None,
        batch: Path | None,
    ) -> DeliveryOutcome:
        outcome = classify_response(status, error)

        if error is not None or status is None:
            logger.warning("Error uploading request to %s: %s", url, error)
            self._report_error(
                NetworkUnknownError(url, error or RuntimeError("No response"))
            )
        elif outcome.is_success:
            logger.info("Batch accepted by %s (HTTP %d)", url, status)
        elif status == 429:
            self._report_error(NetworkServerLimitedError(url, status))
        elif 300 <= status <= 400:
            if status == 400:
                self._log_rejected_payload(status, body, batch)
            self._report_error(NetworkUnexpectedHTTPCodeError(url, status))
        else:
            self._report_error(NetworkServerRejectedError(url, status))
        return outcome

    @staticmethod
    def _log_rejected_payload(
        status: int, body: bytes | None, batch: Path | None
    ) -> None:
        response_text = (body or b"").decode("utf-8", errors="replace")
        lines = read_leading_lines(batch, REJECTED_BATCH_LOG_LINES) if batch else []
        logger.error(
            "Batch %s rejected with HTTP %d, dropping it. Response: %s\n%s",
            batch.name if batch else "<bytes>",
            status,
            response_text,
            "\n".join(lines),
        )

    def settings_for(
        self, write_key: str, completion: SettingsCompletion
    ) -> DataTask | None:
        """Create a task fetching the project settings for ``write_key``.

        ``completion`` receives either the decoded settings or a
        ``SettingsFailError`` whose ``cause`` tells network failures apart
        from undecodable payloads. No retry guidance is given.
        """
        path = SETTINGS_PATH_TEMPLATE.format(write_key=write_key)
        url = self.build_url(self._config.cdn_host, path)
        if url is None:
            error = SettingsFailError(
                BatchOpenError(f"Cannot build settings URL for {write_key!r}")
            )
            self._report_error(error)
            completion(None, error)
            return None

        request = self.configured_request(url, "GET")

        def fail(cause: AnalyticsError) -> None:
            error = SettingsFailError(cause)
            self._report_error(error)
            completion(None, error)

        def on_complete(
            body: bytes | None, status: int | None, error: BaseException | None
        ) -> None:
            if error is not None or status is None:
                fail(NetworkUnknownError(url, error or RuntimeError("No response")))
                return
            if status > 300:
                fail(NetworkUnexpectedHTTPCodeError(url, status))
                return
            if not body:
                fail(NetworkInvalidDataError(f"Empty settings response from {url}"))
                return
            try:
                settings = Settings.model_validate_json(body)
            except ValidationError as e:
                fail(JsonUnableToDeserializeError(e))
                return
            completion(settings, None)

        return self.session.fetch(request, on_complete)
