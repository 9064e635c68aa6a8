"""Wire configuration into a store, client and upload manager."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from batchline.config_manager.analytics_config import AnalyticsConfig, RequestFactory
from batchline.errors import ErrorReporter
from batchline.event_emitter import Emitter
from batchline.storage_management.directory_store import DirectoryStore, FileValidator
from batchline.storage_management.index_store import IndexStore
from batchline.upload_management.http_client import HTTPClient
from batchline.upload_management.session import HTTPSession
from batchline.upload_management.upload_manager import UploadManager

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """The components serving one write key."""

    store: DirectoryStore
    client: HTTPClient
    uploads: UploadManager

    def append(self, event: str) -> None:
        """Queue one serialized event."""
        self.store.append(event)

    def flush(self) -> int:
        """Start uploads for the ready batches; returns how many started."""
        return self.uploads.flush()

    def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop uploads and release the HTTP session."""
        self.uploads.shutdown(wait=wait, timeout=timeout)
        self.client.session.finish_tasks_and_invalidate()


def build_pipeline(
    config: AnalyticsConfig,
    *,
    session: HTTPSession | None = None,
    index_store: IndexStore | None = None,
    error_reporter: ErrorReporter | None = None,
    file_validator: FileValidator | None = None,
    request_factory: RequestFactory | None = None,
    emitter: Emitter | None = None,
) -> Pipeline:
    """Build the store, client and upload manager for ``config``."""
    store = DirectoryStore(
        config.store_config(),
        index_store=index_store,
        error_reporter=error_reporter,
        file_validator=file_validator,
    )
    client = HTTPClient(
        config.client_config(request_factory),
        session=session,
        error_reporter=error_reporter,
    )
    uploads = UploadManager(
        store,
        client,
        config.write_key,
        flush_count=config.flush_count,
        max_batch_bytes=config.max_batch_bytes,
        emitter=emitter,
        error_reporter=error_reporter,
    )
    logger.info(
        "Pipeline ready for %s (storage=%s)", config.write_key, store.storage_location
    )
    return Pipeline(store=store, client=client, uploads=uploads)
