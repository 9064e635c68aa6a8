"""Byte-accurate line writer and bounded-memory line reader for batch files."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import BinaryIO, Iterator

from batchline.const import LINE_DELIMITER, READ_BUFFER_SIZE

logger = logging.getLogger(__name__)


class LineStreamWriter:
    """Append newline-terminated lines to a single file.

    ``bytes_written`` always equals the logical size of the file: it starts at
    the size reported by the filesystem when the file is opened and grows by
    the exact number of bytes appended.
    """

    def __init__(self, path: Path | str) -> None:
        """Open (creating if necessary) ``path`` for appending.

        Args:
            path: File to write to.

        Raises:
            OSError: If the file cannot be created or opened.
        """
        self.path = Path(path)
        self.path.touch(exist_ok=True)
        self._fh: BinaryIO = open(self.path, "r+b")
        self.bytes_written = 0
        self.reset()

    @property
    def closed(self) -> bool:
        """True once the file handle has been closed."""
        return self._fh.closed

    def reset(self) -> None:
        """Seek to the true end of the file and record it as bytes written."""
        size = os.fstat(self._fh.fileno()).st_size
        self._fh.seek(size)
        self.bytes_written = size

    def write_line(self, text: str) -> int:
        """Append ``text`` followed by the line delimiter.

        The userspace buffer is flushed so readers opening the file
        separately see every appended byte.

        Args:
            text: Line content without the delimiter.

        Returns:
            Number of bytes appended.

        Raises:
            OSError: If the underlying write fails.
        """
        data = text.encode("utf-8") + LINE_DELIMITER
        self._fh.write(data)
        self._fh.flush()
        self.bytes_written += len(data)
        return len(data)

    def truncate(self, offset: int = 0) -> None:
        """Cut the file to ``offset`` bytes and continue writing from there."""
        self._fh.flush()
        self._fh.truncate(offset)
        self._fh.seek(offset)
        self.bytes_written = offset

    def truncate_to_current_size(self) -> None:
        """Drop anything beyond ``bytes_written``, e.g. sparse-file slack."""
        self.truncate(self.bytes_written)

    def synchronize(self) -> None:
        """Flush buffered data and force it to stable storage."""
        self._fh.flush()
        os.fsync(self._fh.fileno())

    def close(self) -> None:
        """Synchronize and close; safe to call more than once."""
        if self._fh.closed:
            return
        try:
            self.synchronize()
        finally:
            self._fh.close()

    def __enter__(self) -> LineStreamWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class LineStreamReader:
    """Stream a file as delimiter-separated lines.

    Memory use is bounded by ``buffer_size`` plus the longest line, no matter
    how large the file is. A final line without a trailing delimiter is still
    returned; a trailing delimiter does not produce an empty last line.
    """

    def __init__(self, path: Path | str, buffer_size: int = READ_BUFFER_SIZE) -> None:
        """Open ``path`` for reading.

        Args:
            path: File to read.
            buffer_size: Number of bytes read from disk per refill.

        Raises:
            OSError: If the file does not exist or cannot be opened.
        """
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self.path = Path(path)
        self.buffer_size = buffer_size
        self._fh: BinaryIO = open(self.path, "rb")
        self._buffer = bytearray()
        self._eof = False

    def reset(self) -> None:
        """Rewind to the start of the file."""
        self._fh.seek(0)
        self._buffer.clear()
        self._eof = False

    def read_line(self) -> str | None:
        """Return the next line, or None once the end of the file is reached."""
        if self._eof:
            return None

        search_from = 0
        while True:
            index = self._buffer.find(LINE_DELIMITER, search_from)
            if index != -1:
                line = bytes(self._buffer[:index])
                del self._buffer[: index + len(LINE_DELIMITER)]
                return line.decode("utf-8", errors="replace")

            # Bytes already scanned cannot hold the start of a delimiter.
            search_from = max(0, len(self._buffer) - len(LINE_DELIMITER) + 1)
            chunk = self._fh.read(self.buffer_size)
            if not chunk:
                self._eof = True
                if not self._buffer:
                    return None
                line = bytes(self._buffer)
                self._buffer.clear()
                return line.decode("utf-8", errors="replace")
            self._buffer.extend(chunk)

    def close(self) -> None:
        """Close the file handle."""
        self._fh.close()

    def __iter__(self) -> Iterator[str]:
        while True:
            line = self.read_line()
            if line is None:
                return
            yield line

    def __enter__(self) -> LineStreamReader:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def read_leading_lines(path: Path | str, limit: int) -> list[str]:
    """Return up to ``limit`` lines from the start of ``path``.

    Returns an empty list if the file cannot be read.
    """
    lines: list[str] = []
    try:
        with LineStreamReader(path) as reader:
            for line in reader:
                lines.append(line)
                if len(lines) >= limit:
                    break
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)
    return lines
