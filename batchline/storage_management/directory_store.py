"""Directory-scoped durable queue of JSON batch files.

Each batch file is one JSON document built incrementally::

    { "batch": [
    <event>
    ,<event>
    ],"sentAt":"2024-03-02T10:00:00.000Z","writeKey":"<key>"}

While a file is active it holds a valid JSON prefix (header plus
comma-separated items). Sealing appends the footer, syncs, and renames the
file with a ``.temp`` extension marking it ready for delivery.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Protocol

from batchline.config_manager.analytics_config import StoreConfig
from batchline.const import (
    BATCH_HEADER,
    INDEX_DB_FILENAME,
    READY_EXTENSION,
    TAIL_WINDOW_BYTES,
)
from batchline.errors import ErrorReporter, StorageIOError, log_internal_error
from batchline.models import DataResult

from .index_store import IndexStore, SqliteIndexStore
from .line_stream import LineStreamReader, LineStreamWriter

logger = logging.getLogger(__name__)

_WHITESPACE = b" \t\n\r"


class FileValidator(Protocol):
    """Hook called with the final path of every sealed file, before rename."""

    def validate(self, path: Path) -> None:
        ...


class NoopFileValidator:
    """Default FileValidator that accepts every file."""

    def validate(self, path: Path) -> None:
        return None


def _iso8601_now() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def _index_of(path: Path) -> int:
    """Numeric index prefix of a batch filename, -1 if it has none."""
    prefix, _, _ = path.name.partition("-")
    return int(prefix) if prefix.isdigit() else -1


class DirectoryStore:
    """Append-only batch file queue owned by a single writer.

    Appends, seals, fetches and removals are serialized by an internal
    re-entrant lock, which also guards the read-modify-write of the persisted
    index. Separate processes must not share a storage directory.
    """

    def __init__(
        self,
        config: StoreConfig,
        index_store: IndexStore | None = None,
        error_reporter: ErrorReporter | None = None,
        file_validator: FileValidator | None = None,
    ) -> None:
        """Initialise the store and create its directory.

        Args:
            config: Store configuration.
            index_store: Persistence for the file index. Defaults to a SQLite
                database inside the storage directory, scoped by write key.
            error_reporter: Receives I/O failures swallowed on the append path.
            file_validator: Called with each sealed file before it is marked ready.
        """
        self.config = config
        self.storage_location = Path(config.storage_location)
        self.storage_location.mkdir(parents=True, exist_ok=True)

        self._index_store = index_store or SqliteIndexStore(
            self.storage_location / INDEX_DB_FILENAME, scope=config.write_key
        )
        self._report_error = error_reporter or log_internal_error
        self._file_validator = file_validator or NoopFileValidator()
        self._lock = RLock()
        self.writer: LineStreamWriter | None = None

    @property
    def has_data(self) -> bool:
        """True if any batch file, sealed or active, is on disk."""
        return self.count > 0

    @property
    def count(self) -> int:
        """Number of batch files on disk, active file included."""
        return len(self.list_files(only_ready=False))

    def _active_path(self) -> Path:
        return self.storage_location / f"{self.get_index()}-{self.config.base_filename}"

    @staticmethod
    def _ready_path(path: Path) -> Path:
        return path.with_name(f"{path.name}.{READY_EXTENSION}")

    def _skip_sealed_indexes(self) -> None:
        """Advance the index past slots that already hold a sealed file.

        A kill between the rename in ``finish_file`` and the index update
        leaves the persisted index naming a sealed batch; reusing it would
        overwrite that batch on the next seal.
        """
        while self._ready_path(self._active_path()).exists():
            logger.warning(
                "Index %d already sealed, advancing past it", self.get_index()
            )
            self.increment_index()

    def list_files(self, only_ready: bool = True) -> list[Path]:
        """List batch files in queue order.

        Args:
            only_ready: If True, only sealed files are returned; otherwise the
                in-progress file is included too.

        Returns:
            Files ordered by their numeric index, oldest first.
        """
        suffix = f"-{self.config.base_filename}"
        ready_suffix = f"{suffix}.{READY_EXTENSION}"
        try:
            entries = list(self.storage_location.iterdir())
        except FileNotFoundError:
            return []

        files = []
        for entry in entries:
            if not entry.is_file():
                continue
            if entry.name.endswith(ready_suffix):
                files.append(entry)
            elif not only_ready and entry.name.endswith(suffix):
                files.append(entry)
        return sorted(files, key=lambda p: (_index_of(p), p.name))

    def append(self, event: str) -> None:
        """Append one serialized event to the active batch file.

        I/O failures drop the event and are passed to the error reporter.

        Args:
            event: Already-serialized JSON text of one event.
        """
        with self._lock:
            try:
                self.start_file_if_needed()
            except OSError as e:
                self._report_error(StorageIOError(self._active_path(), e))
                return

            writer = self.writer
            if writer is None:
                return

            try:
                has_items = self._needs_comma_before_next_item(writer.path)
                # A fresh file has no items, so this recurses at most once and
                # an event larger than the cap still lands in the new file.
                if has_items and writer.bytes_written >= self.config.max_file_size:
                    self.finish_file()
                    self.append(event)
                    return

                writer.write_line(("," if has_items else "") + event)
            except OSError as e:
                logger.warning("Dropping event, write to %s failed: %s", writer.path, e)
                self._report_error(StorageIOError(writer.path, e))

    def start_file_if_needed(self) -> bool:
        """Make sure an active file with a valid header is open.

        A reopened file whose first line is not the batch header (a write
        torn by a crash) is truncated and restarted.

        Returns:
            True if a header was written.

        Raises:
            OSError: If the file cannot be opened or written.
        """
        with self._lock:
            if self.writer is not None:
                return False

            self._skip_sealed_indexes()
            path = self._active_path()
            writer = LineStreamWriter(path)
            try:
                if writer.bytes_written > 0 and self._file_begins_with_header(path):
                    logger.info(
                        "Resuming batch file %s at %d bytes", path, writer.bytes_written
                    )
                    self.writer = writer
                    return False

                if writer.bytes_written > 0:
                    logger.warning(
                        "Batch file %s has no valid header, discarding %d bytes",
                        path,
                        writer.bytes_written,
                    )
                writer.truncate(0)
                writer.write_line(BATCH_HEADER)
            except OSError:
                writer.close()
                raise

            self.writer = writer
            return True

    @staticmethod
    def _file_begins_with_header(path: Path) -> bool:
        try:
            with LineStreamReader(path) as reader:
                first_line = reader.read_line()
        except OSError:
            return False
        return first_line is not None and first_line.startswith(BATCH_HEADER)

    @staticmethod
    def _needs_comma_before_next_item(path: Path) -> bool:
        """Decide from the file's tail whether the next item needs a comma.

        Only the last ``TAIL_WINDOW_BYTES`` are read. If the last
        non-whitespace byte is the array's opening bracket, the next item is
        the first one.
        """
        with open(path, "rb") as fh:
            size = os.fstat(fh.fileno()).st_size
            fh.seek(max(0, size - TAIL_WINDOW_BYTES))
            tail = fh.read()

        stripped = tail.rstrip(_WHITESPACE)
        if not stripped:
            return False
        return not stripped.endswith(b"[")

    def finish_file(self) -> None:
        """Seal the active file and mark it ready for delivery."""
        with self._lock:
            writer = self.writer
            if writer is None:
                logger.debug("finish_file called with no active file")
                return

            path = writer.path
            sent_at = json.dumps(_iso8601_now())
            write_key = json.dumps(self.config.write_key)
            footer = f'],"sentAt":{sent_at},"writeKey":{write_key}}}'

            try:
                writer.write_line(footer)
                writer.synchronize()
                writer.truncate_to_current_size()
                writer.close()
            except OSError as e:
                logger.error("Failed to seal %s, discarding it: %s", path, e)
                self._report_error(StorageIOError(path, e))
                self._discard(writer)
                return

            try:
                self._file_validator.validate(path)
            except Exception as e:
                logger.error("Validator failed for %s: %s", path, e)
                self._report_error(e)

            ready_path = self._ready_path(path)
            try:
                path.rename(ready_path)
            except OSError as e:
                self._report_error(StorageIOError(path, e))
            else:
                logger.info("Sealed batch file %s", ready_path.name)

            self.writer = None
            self.increment_index()

    def _discard(self, writer: LineStreamWriter) -> None:
        try:
            writer.close()
        except OSError:
            pass
        writer.path.unlink(missing_ok=True)
        self.writer = None
        self.increment_index()

    def _resume_unfinished_file(self) -> None:
        """Pick up an active file left by a previous process if it has events."""
        self._skip_sealed_indexes()
        path = self._active_path()
        if not path.exists() or path.stat().st_size == 0:
            return
        if not self._file_begins_with_header(path):
            return
        if not self._needs_comma_before_next_item(path):
            return
        self.start_file_if_needed()

    def fetch(
        self, count: int | None = None, max_bytes: int | None = None
    ) -> DataResult | None:
        """Seal the active file and return sealed files ready to send.

        Args:
            count: Maximum number of files to return.
            max_bytes: Byte budget. Files are taken oldest first while their
                cumulative size stays below the budget; a file that does not
                fit is skipped.

        Returns:
            The selected files, or None if there are none.
        """
        with self._lock:
            if self.writer is None:
                try:
                    self._resume_unfinished_file()
                except OSError as e:
                    self._report_error(StorageIOError(self._active_path(), e))
            if self.writer is not None:
                self.finish_file()

            files = self.list_files()
            if max_bytes is not None:
                files = self._up_to_size(max_bytes, files)
            if count is not None and count <= len(files):
                files = files[:count]

            if not files:
                return None
            return DataResult(data_files=list(files), removable=list(files))

    @staticmethod
    def _up_to_size(max_bytes: int, files: list[Path]) -> list[Path]:
        result: list[Path] = []
        accumulated = 0
        for file in files:
            try:
                size = file.stat().st_size
            except OSError:
                continue
            if accumulated + size < max_bytes:
                result.append(file)
                accumulated += size
        return result

    def remove(self, files: list[Path]) -> None:
        """Delete the given files; already-missing files are ignored."""
        with self._lock:
            for file in files:
                try:
                    Path(file).unlink(missing_ok=True)
                except OSError as e:
                    self._report_error(StorageIOError(file, e))

    def reset(self) -> None:
        """Wipe the queue, the in-progress file included."""
        with self._lock:
            if self.writer is not None:
                try:
                    self.writer.close()
                except OSError as e:
                    self._report_error(StorageIOError(self.writer.path, e))
                self.writer = None
            self.remove(self.list_files(only_ready=False))

    def get_index(self) -> int:
        """Return the persisted index naming the active file."""
        return self._index_store.get(self.config.index_key)

    def increment_index(self) -> None:
        """Advance the persisted index by one."""
        with self._lock:
            self._index_store.set(self.config.index_key, self.get_index() + 1)
