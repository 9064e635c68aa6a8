"""Shared fixtures for batchline unit tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from batchline.config_manager.analytics_config import StoreConfig
from batchline.errors import TaskCancelledError
from batchline.storage_management.directory_store import DirectoryStore
from batchline.storage_management.index_store import MemoryIndexStore
from batchline.upload_management.session import HTTPRequest

WRITE_KEY = "test-write-key"
BASE_FILENAME = "test-events"


class FakeTask:
    """DataTask that completes with the session's next canned response."""

    def __init__(self, session: FakeSession, on_complete) -> None:
        self._session = session
        self._on_complete = on_complete
        self.resumed = False
        self.cancelled = False
        self.finished = False

    def resume(self) -> None:
        if self.resumed:
            return
        self.resumed = True
        if self._session.auto_complete:
            self.complete()

    def complete(self, response=None) -> None:
        if self.finished:
            return
        self.finished = True
        body, status, error = response or self._session.next_response()
        self._on_complete(body, status, error)

    def cancel(self) -> None:
        if self.finished:
            return
        self.finished = True
        self.cancelled = True
        self._on_complete(None, None, TaskCancelledError("cancelled"))


class FakeSession:
    """HTTPSession recording requests and answering from a script.

    ``responses`` holds ``(body, status, error)`` tuples consumed in order;
    once exhausted every request gets ``(b"", 200, None)``.
    """

    def __init__(self, responses=None, auto_complete: bool = True) -> None:
        self.responses = list(responses or [])
        self.auto_complete = auto_complete
        self.requests: list[tuple[HTTPRequest, object]] = []
        self.tasks: list[FakeTask] = []
        self.invalidated = False

    def next_response(self):
        if self.responses:
            return self.responses.pop(0)
        return (b"", 200, None)

    def _task(self, request: HTTPRequest, body, on_complete) -> FakeTask:
        self.requests.append((request, body))
        task = FakeTask(self, on_complete)
        self.tasks.append(task)
        return task

    def upload_file(self, request, file_path, on_complete) -> FakeTask:
        return self._task(request, file_path, on_complete)

    def upload_bytes(self, request, data, on_complete) -> FakeTask:
        return self._task(request, data, on_complete)

    def fetch(self, request, on_complete) -> FakeTask:
        return self._task(request, None, on_complete)

    def finish_tasks_and_invalidate(self) -> None:
        self.invalidated = True


@pytest.fixture
def fake_session_factory():
    """Build FakeSession instances."""
    return FakeSession


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    return tmp_path / "queue"


@pytest.fixture
def store_config_factory(storage_dir: Path):
    """Build a StoreConfig pointing at the test storage directory."""

    def factory(**overrides) -> StoreConfig:
        values = {
            "write_key": WRITE_KEY,
            "storage_location": storage_dir,
            "base_filename": BASE_FILENAME,
            "max_file_size": 475_000,
            "index_key": "test.index",
        }
        values.update(overrides)
        return StoreConfig(**values)

    return factory


@pytest.fixture
def index_store() -> MemoryIndexStore:
    return MemoryIndexStore()


@pytest.fixture
def make_store(store_config_factory, index_store):
    """Build DirectoryStore instances sharing one in-memory index."""

    def factory(**overrides) -> DirectoryStore:
        error_reporter = overrides.pop("error_reporter", None)
        file_validator = overrides.pop("file_validator", None)
        return DirectoryStore(
            store_config_factory(**overrides),
            index_store=index_store,
            error_reporter=error_reporter,
            file_validator=file_validator,
        )

    return factory


@pytest.fixture
def store(make_store) -> DirectoryStore:
    return make_store()
