"""Transport sessions issuing HTTP requests as resumable, cancellable tasks.

A session never starts a transfer by itself: every method returns a task in
the suspended state and the holder calls ``resume()``. The completion handler
is invoked exactly once with ``(body, status_code, error)``, from a worker
thread or the session's event loop, never from the caller of ``resume()``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Protocol

import aiohttp
import requests

from batchline.const import REQUEST_TIMEOUT_SECS
from batchline.errors import TaskCancelledError

logger = logging.getLogger(__name__)

CompletionHandler = Callable[[bytes | None, int | None, BaseException | None], None]


@dataclass(frozen=True)
class HTTPRequest:
    """An outbound request without a body."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = REQUEST_TIMEOUT_SECS

    def with_header(self, name: str, value: str) -> HTTPRequest:
        """Return a copy with ``name`` set to ``value``."""
        return replace(self, headers={**self.headers, name: value})

    def to_curl(self) -> str:
        """Render as a cURL command for debug logging."""
        components = ["$ curl -v"]
        if self.method != "GET":
            components.append(f"-X {self.method}")
        for name, value in self.headers.items():
            escaped = str(value).replace('"', '\\"')
            components.append(f'-H "{name}: {escaped}"')
        components.append(f'"{self.url}"')
        return " \\\n\t".join(components)


class DataTask(Protocol):
    """Handle to one transfer."""

    def resume(self) -> None:
        """Start the transfer; no effect if already started or finished."""
        ...

    def cancel(self) -> None:
        """Abort the transfer and complete with ``TaskCancelledError``."""
        ...


class HTTPSession(Protocol):
    """Capability that turns requests into tasks."""

    def upload_file(
        self, request: HTTPRequest, file_path: Path, on_complete: CompletionHandler
    ) -> DataTask:
        """Send ``file_path`` as the request body, streamed from disk."""
        ...

    def upload_bytes(
        self, request: HTTPRequest, data: bytes, on_complete: CompletionHandler
    ) -> DataTask:
        """Send ``data`` as the request body."""
        ...

    def fetch(self, request: HTTPRequest, on_complete: CompletionHandler) -> DataTask:
        """Send a request without a body."""
        ...

    def finish_tasks_and_invalidate(self) -> None:
        """Let running tasks finish, then release the underlying connection pool."""
        ...


class TaskState(str, Enum):
    """Lifecycle of a task."""

    SUSPENDED = "suspended"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class _BaseTask:
    """State machine shared by the session tasks.

    Guarantees the completion handler runs once: whichever of the transfer
    result and ``cancel()`` arrives first wins.
    """

    def __init__(self, on_complete: CompletionHandler) -> None:
        self._on_complete = on_complete
        self._lock = threading.Lock()
        self._done = threading.Event()
        self.state = TaskState.SUSPENDED

    def _start(self) -> bool:
        with self._lock:
            if self.state is not TaskState.SUSPENDED:
                return False
            self.state = TaskState.RUNNING
            return True

    def _finish(
        self,
        body: bytes | None,
        status_code: int | None,
        error: BaseException | None,
        final_state: TaskState = TaskState.COMPLETED,
    ) -> None:
        with self._lock:
            if self.state in (TaskState.COMPLETED, TaskState.CANCELLED):
                return
            self.state = final_state
        try:
            self._on_complete(body, status_code, error)
        except Exception:
            logger.exception("Completion handler raised")
        finally:
            self._done.set()

    def cancel(self) -> None:
        """Complete with ``TaskCancelledError`` unless already finished."""
        self._finish(
            None,
            None,
            TaskCancelledError("Task cancelled"),
            final_state=TaskState.CANCELLED,
        )

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the completion handler has run."""
        return self._done.wait(timeout)


class ThreadedTask(_BaseTask):
    """Task running a blocking send on its own daemon thread."""

    def __init__(
        self,
        send: Callable[[], requests.Response],
        on_complete: CompletionHandler,
    ) -> None:
        super().__init__(on_complete)
        self._send = send
        self._thread: threading.Thread | None = None

    def resume(self) -> None:
        """Start the send on a daemon thread; no effect unless suspended."""
        if not self._start():
            return
        self._thread = threading.Thread(
            target=self._run, name="batchline-upload", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        try:
            response = self._send()
        except (requests.RequestException, OSError) as e:
            self._finish(None, None, e)
            return
        self._finish(response.content, response.status_code, None)


class RequestsSession:
    """HTTPSession backed by ``requests`` with one thread per transfer."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()
        self._tasks: set[ThreadedTask] = set()
        self._tasks_lock = threading.Lock()
        self._invalidated = False

    def _make_task(
        self,
        send: Callable[[], requests.Response],
        on_complete: CompletionHandler,
    ) -> ThreadedTask:
        if self._invalidated:
            raise RuntimeError("Session has been invalidated")

        def tracked(
            body: bytes | None, status: int | None, error: BaseException | None
        ) -> None:
            with self._tasks_lock:
                self._tasks.discard(task)
            on_complete(body, status, error)

        task = ThreadedTask(send, tracked)
        with self._tasks_lock:
            self._tasks.add(task)
        return task

    def _request(self, request: HTTPRequest, data=None) -> requests.Response:
        return self._session.request(
            request.method,
            request.url,
            data=data,
            headers=request.headers,
            timeout=request.timeout,
        )

    def upload_file(
        self, request: HTTPRequest, file_path: Path, on_complete: CompletionHandler
    ) -> ThreadedTask:
        def send() -> requests.Response:
            with open(file_path, "rb") as fh:
                return self._request(request, data=fh)

        return self._make_task(send, on_complete)

    def upload_bytes(
        self, request: HTTPRequest, data: bytes, on_complete: CompletionHandler
    ) -> ThreadedTask:
        return self._make_task(lambda: self._request(request, data=data), on_complete)

    def fetch(
        self, request: HTTPRequest, on_complete: CompletionHandler
    ) -> ThreadedTask:
        return self._make_task(lambda: self._request(request), on_complete)

    def finish_tasks_and_invalidate(self, timeout: float | None = None) -> None:
        self._invalidated = True
        with self._tasks_lock:
            pending = list(self._tasks)
        for task in pending:
            if task.state is TaskState.RUNNING:
                task.wait(timeout)
        self._session.close()


class AsyncioTask(_BaseTask):
    """Task running a coroutine on an event loop, possibly in another thread."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        send: Callable[[], Awaitable[tuple[bytes, int]]],
        on_complete: CompletionHandler,
    ) -> None:
        super().__init__(on_complete)
        self._loop = loop
        self._send = send
        self._future: Future | None = None

    def resume(self) -> None:
        """Schedule the send on the loop; no effect unless suspended."""
        if not self._start():
            return
        self._future = asyncio.run_coroutine_threadsafe(self._run(), self._loop)

    async def _run(self) -> None:
        try:
            body, status = await self._send()
        except asyncio.CancelledError:
            self.cancel()
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._finish(None, None, e)
            return
        self._finish(body, status, None)

    def cancel(self) -> None:
        """Complete with ``TaskCancelledError`` and cancel the coroutine."""
        future = self._future
        super().cancel()
        if future is not None:
            future.cancel()


class AiohttpSession:
    """HTTPSession backed by ``aiohttp`` running on ``loop``.

    The loop must be running (in this or another thread) for resumed tasks
    to make progress.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        client_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._loop = loop
        self._client_session = client_session
        self._tasks: set[AsyncioTask] = set()
        self._invalidated = False

    def _client(self) -> aiohttp.ClientSession:
        # Created lazily so it binds to the session's loop.
        if self._client_session is None or self._client_session.closed:
            self._client_session = aiohttp.ClientSession()
        return self._client_session

    async def _request(self, request: HTTPRequest, data=None) -> tuple[bytes, int]:
        timeout = aiohttp.ClientTimeout(total=request.timeout)
        async with self._client().request(
            request.method,
            request.url,
            data=data,
            headers=request.headers,
            timeout=timeout,
        ) as response:
            body = await response.read()
            return body, response.status

    def _make_task(
        self,
        send: Callable[[], Awaitable[tuple[bytes, int]]],
        on_complete: CompletionHandler,
    ) -> AsyncioTask:
        if self._invalidated:
            raise RuntimeError("Session has been invalidated")

        def tracked(
            body: bytes | None, status: int | None, error: BaseException | None
        ) -> None:
            self._tasks.discard(task)
            on_complete(body, status, error)

        task = AsyncioTask(self._loop, send, tracked)
        self._tasks.add(task)
        return task

    def upload_file(
        self, request: HTTPRequest, file_path: Path, on_complete: CompletionHandler
    ) -> AsyncioTask:
        async def send() -> tuple[bytes, int]:
            with open(file_path, "rb") as fh:
                return await self._request(request, data=fh)

        return self._make_task(send, on_complete)

    def upload_bytes(
        self, request: HTTPRequest, data: bytes, on_complete: CompletionHandler
    ) -> AsyncioTask:
        return self._make_task(lambda: self._request(request, data=data), on_complete)

    def fetch(
        self, request: HTTPRequest, on_complete: CompletionHandler
    ) -> AsyncioTask:
        return self._make_task(lambda: self._request(request), on_complete)

    async def close(self) -> None:
        """Close the underlying aiohttp session."""
        if self._client_session is not None and not self._client_session.closed:
            await self._client_session.close()

    def finish_tasks_and_invalidate(self) -> None:
        """Stop accepting tasks and close the client once running ones finish.

        Must not be called from the loop's own thread.
        """
        self._invalidated = True
        for task in list(self._tasks):
            if task.state is TaskState.RUNNING:
                task.wait()
        asyncio.run_coroutine_threadsafe(self.close(), self._loop).result()
