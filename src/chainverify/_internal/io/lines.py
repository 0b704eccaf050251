"""Line sources for record-stream verification."""

import io
import os
from contextlib import contextmanager
from pathlib import Path
from collections.abc import Iterable
from typing import IO, Any, Iterator, Union

LineSource = Union[str, os.PathLike, bytes, bytearray, memoryview, IO[bytes], Iterable[Union[str, bytes]]]


def _read_bounded(stream: IO[Any], max_line_bytes: int) -> Iterator[Union[bytes, str]]:
    """Yield lines without ever reading more than max_line_bytes + 2 of one line.

    The two extra bytes leave room for a CRLF terminator after a line of
    exactly max_line_bytes.
    """
    while True:
        chunk = stream.readline(max_line_bytes + 2)
        if not chunk:
            return
        newline = b"\n" if isinstance(chunk, bytes) else "\n"
        yield chunk
        if len(chunk) > max_line_bytes and not chunk.endswith(newline):
            # An over-long line always halts verification; nothing after it is read.
            return


@contextmanager
def open_lines(source: LineSource, max_line_bytes: int) -> Iterator[Iterator[Union[bytes, str]]]:
    """Open ``source`` and yield an iterator over its physical lines.

    Paths are opened in binary mode and closed on exit. Caller-owned file
    objects and iterables are left open.

    Raises:
        TypeError: If ``source`` is not a path, buffer, binary stream or iterable of lines
        OSError: If a path cannot be opened
    """
    if isinstance(source, (str, os.PathLike)):
        with open(Path(source), "rb") as handle:
            yield _read_bounded(handle, max_line_bytes)
    elif isinstance(source, (bytes, bytearray, memoryview)):
        yield _read_bounded(io.BytesIO(bytes(source)), max_line_bytes)
    elif hasattr(source, "readline"):
        yield _read_bounded(source, max_line_bytes)
    elif isinstance(source, Iterable):
        yield iter(source)
    else:
        raise TypeError(
            f"Unsupported input type {type(source).__name__}: expected a path, bytes, "
            "a binary stream or an iterable of lines"
        )
