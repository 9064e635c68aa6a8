"""Pydantic models for batch store and delivery configuration."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from batchline import __version__
from batchline.config_manager.helpers import parse_bytes
from batchline.const import (
    API_HOST,
    CDN_HOST,
    DEFAULT_BASE_FILENAME,
    DEFAULT_FLUSH_COUNT,
    DEFAULT_INDEX_KEY,
    DEFAULT_MAX_BATCH_BYTES,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_STORAGE_PATH,
    REQUEST_TIMEOUT_SECS,
)
from batchline.upload_management.session import HTTPRequest

RequestFactory = Callable[[HTTPRequest], HTTPRequest]


class StoreConfig(BaseModel):
    """Configuration of a single ``DirectoryStore``; immutable once built.

    Attributes:
        write_key: Source write key; scopes the persisted index and is
            stamped into every sealed batch.
        storage_location: Directory holding the batch files.
        base_filename: Suffix shared by every batch filename.
        max_file_size: Size in bytes after which the active file is sealed.
        index_key: Key under which the queue index is persisted.
    """

    model_config = ConfigDict(frozen=True)

    write_key: str
    storage_location: Path
    base_filename: str = DEFAULT_BASE_FILENAME
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, gt=0)
    index_key: str = DEFAULT_INDEX_KEY


class ClientConfig(BaseModel):
    """Configuration for ``HTTPClient``.

    Attributes:
        write_key: Source write key.
        api_host: Host (and optional path prefix) receiving batch uploads.
        cdn_host: Host (and optional path prefix) serving project settings.
        user_agent: Value of the User-Agent header.
        timeout: Per-request deadline in seconds, enforced by the session.
        request_factory: Optional hook applied last to every request, e.g.
            to inject authentication headers.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    write_key: str
    api_host: str = API_HOST
    cdn_host: str = CDN_HOST
    user_agent: str = f"batchline-python/{__version__}"
    timeout: float = REQUEST_TIMEOUT_SECS
    request_factory: RequestFactory | None = None


class AnalyticsConfig(BaseModel):
    """User-facing settings, resolved by ``ConfigManager``.

    Size fields accept either integers or unit-suffixed strings such as
    ``"475kb"``.
    """

    write_key: str
    api_host: str = API_HOST
    cdn_host: str = CDN_HOST
    storage_path: Path = DEFAULT_STORAGE_PATH
    base_filename: str = DEFAULT_BASE_FILENAME
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    max_batch_bytes: int | None = DEFAULT_MAX_BATCH_BYTES
    flush_count: int | None = DEFAULT_FLUSH_COUNT
    index_key: str = DEFAULT_INDEX_KEY
    timeout: float = REQUEST_TIMEOUT_SECS

    @field_validator("max_file_size", "max_batch_bytes", mode="before")
    @classmethod
    def _parse_size(cls, value: int | str | None) -> int | None:
        if value is None:
            return None
        return parse_bytes(value)

    def store_config(self) -> StoreConfig:
        """Build the batch store configuration for this write key.

        Each write key gets its own sub-directory so two sources never share
        a queue.
        """
        return StoreConfig(
            write_key=self.write_key,
            storage_location=Path(self.storage_path).expanduser() / self.write_key,
            base_filename=self.base_filename,
            max_file_size=self.max_file_size,
            index_key=self.index_key,
        )

    def client_config(
        self, request_factory: RequestFactory | None = None
    ) -> ClientConfig:
        """Build the HTTP client configuration."""
        return ClientConfig(
            write_key=self.write_key,
            api_host=self.api_host,
            cdn_host=self.cdn_host,
            timeout=self.timeout,
            request_factory=request_factory,
        )
