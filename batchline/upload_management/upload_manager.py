"""Upload manager driving the fetch -> upload -> remove cycle.

Sealed batches are fetched from the store and uploaded concurrently, one
task per file. A file is only removed after its outcome says so: success or
terminal rejection. Retriable failures leave it on disk for the next flush.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from batchline.errors import ErrorReporter, log_internal_error
from batchline.event_emitter import Emitter
from batchline.models import DeliveryOutcome
from batchline.storage_management.directory_store import DirectoryStore

from .http_client import HTTPClient
from .session import DataTask

logger = logging.getLogger(__name__)


class UploadManager:
    """Uploads sealed batches from a DirectoryStore through an HTTPClient."""

    def __init__(
        self,
        store: DirectoryStore,
        client: HTTPClient,
        write_key: str,
        flush_count: int | None = None,
        max_batch_bytes: int | None = None,
        emitter: Emitter | None = None,
        error_reporter: ErrorReporter | None = None,
    ) -> None:
        """Initialise the upload manager.

        Args:
            store: Queue the batches come from and are removed from.
            client: Client performing single-attempt uploads.
            write_key: Write key the batches belong to.
            flush_count: Maximum number of files fetched per flush.
            max_batch_bytes: Byte budget per flush.
            emitter: Receives lifecycle events; a private one is created if omitted.
            error_reporter: Receives failures raised while starting an upload.
        """
        self._store = store
        self._client = client
        self._write_key = write_key
        self._flush_count = flush_count
        self._max_batch_bytes = max_batch_bytes
        self.emitter = emitter or Emitter()
        self._report_error = error_reporter or log_internal_error

        # None marks a path reserved while its task is being created.
        self._in_flight: dict[Path, DataTask | None] = {}
        self._condition = threading.Condition()
        self._shutting_down = False

    @property
    def in_flight(self) -> list[Path]:
        """Batch files reserved or currently uploading."""
        with self._condition:
            return list(self._in_flight)

    def flush(self) -> int:
        """Start uploads for every ready batch not already in flight.

        Returns:
            Number of uploads started.
        """
        if self._shutting_down:
            return 0

        result = self._store.fetch(
            count=self._flush_count, max_bytes=self._max_batch_bytes
        )
        if result is None:
            return 0

        started = 0
        for path in result.data_files:
            with self._condition:
                if path in self._in_flight:
                    continue
                # Reserve the path so a concurrent flush skips it.
                self._in_flight[path] = None

            try:
                task = self._client.start_batch_upload(
                    self._write_key, path, self._completion_for(path)
                )
            except Exception as e:
                logger.error("Failed to start upload of %s: %s", path.name, e)
                self._release(path)
                self._report_error(e)
                continue
            if task is None:
                continue

            with self._condition:
                if path not in self._in_flight:
                    continue
                self._in_flight[path] = task

            self.emitter.emit(Emitter.UPLOAD_STARTED, path)
            task.resume()
            started += 1

        if started:
            logger.info("Started %d batch upload(s)", started)
        return started

    def _completion_for(self, path: Path):
        def completion(outcome: DeliveryOutcome) -> None:
            self._on_upload_complete(path, outcome)

        return completion

    def _on_upload_complete(self, path: Path, outcome: DeliveryOutcome) -> None:
        try:
            if outcome.is_success:
                self._store.remove([path])
                self.emitter.emit(Emitter.UPLOAD_COMPLETE, path, outcome)
            elif outcome.should_remove:
                logger.warning(
                    "Dropping batch %s after terminal failure (%s, HTTP %s)",
                    path.name,
                    outcome.reason.value if outcome.reason else "unknown",
                    outcome.status_code,
                )
                self._store.remove([path])
                self.emitter.emit(Emitter.BATCH_DROPPED, path, outcome)
            else:
                logger.warning(
                    "Keeping batch %s for retry (%s)",
                    path.name,
                    outcome.reason.value if outcome.reason else "unknown",
                )
                self.emitter.emit(Emitter.UPLOAD_RETAINED, path, outcome)
        finally:
            self._release(path)

    def _release(self, path: Path) -> None:
        with self._condition:
            self._in_flight.pop(path, None)
            self._condition.notify_all()

    def wait_for_idle(self, timeout: float | None = None) -> bool:
        """Block until no upload is in flight.

        Returns:
            False if the timeout expired first.
        """
        with self._condition:
            return self._condition.wait_for(lambda: not self._in_flight, timeout)

    def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop starting uploads.

        Args:
            wait: If True, wait up to ``timeout`` for in-flight uploads to finish
                before cancelling whatever is left.
            timeout: Seconds to wait when ``wait`` is True.
        """
        self._shutting_down = True
        logger.info("Shutting down UploadManager...")

        if wait:
            self.wait_for_idle(timeout)

        with self._condition:
            remaining = [task for task in self._in_flight.values() if task is not None]
        for task in remaining:
            task.cancel()

        logger.info("UploadManager shutdown complete")
