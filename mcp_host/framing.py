"""
Newline-delimited JSON framing for the stdio transport.

Wire format: UTF-8 text, one JSON value per line, terminated by "\\n".
A trailing "\\r" is tolerated, blank lines are ignored.

    framer = MessageFramer()
    framer.append(chunk)            # bytes or str, any chunk boundary
    for message in framer.drain():  # every complete message, in order
        ...
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Iterator

from mcp_host.errors import FrameError

logger = logging.getLogger(__name__)


def serialize(message: Any) -> str:
    """JSON-encode a message and terminate it with exactly one newline."""
    return json.dumps(message, ensure_ascii=False, separators=(",", ":")) + "\n"


class MessageFramer:
    """
    Reassembles protocol messages from an arbitrarily chunked stream.

    The buffer always holds exactly the unparsed suffix of the stream:
    everything up to the last newline returned by read_next() is gone.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> int:
        """Number of buffered characters not yet framed."""
        return len(self._buffer)

    def append(self, chunk: bytes | str) -> None:
        if isinstance(chunk, (bytes, bytearray)):
            # The incremental decoder holds back a partial multi-byte sequence
            # until the rest of it arrives in a later chunk.
            self._buffer += self._decoder.decode(bytes(chunk))
        else:
            self._buffer += chunk

    def read_next(self) -> Any | None:
        """
        Return the next complete message, or None when no full line is buffered.

        Raises FrameError for a line that is not valid JSON. That line is
        already discarded, so the caller can keep calling read_next().
        A literal ``null`` line carries no message and is skipped.
        """
        while True:
            newline = self._buffer.find("\n")
            if newline < 0:
                return None

            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            if line.endswith("\r"):
                line = line[:-1]
            if not line.strip():
                continue

            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                raise FrameError(f"Invalid JSON line: {e}", line) from e

            if message is None:
                continue
            return message

    def drain(self) -> Iterator[Any]:
        """Yield every complete message currently buffered, skipping bad lines."""
        while True:
            try:
                message = self.read_next()
            except FrameError as e:
                logger.warning(f"Dropped malformed line: {e} ({e.line[:200]!r})")
                continue
            if message is None:
                return
            yield message

    def clear(self) -> None:
        self._buffer = ""
        self._decoder.reset()
