"""
Incremental parsers for interpreter output streams.

OutputFramer pulls marker-delimited frames out of stdout. ErrorAccumulator
collects stderr between frames. Both operate on raw bytes, so a multibyte
character split across two reads is decoded only once it is complete.
"""

import re
import threading
from typing import Optional

from md_playground.errors import FrameOverflow


class OutputFramer:
    """
    Resynchronizing frame parser over a growing byte buffer.

    A frame is everything strictly between `start_marker` and the next
    `end_marker`. Bytes before an unmatched start marker are discarded,
    which drops startup banners and output printed between frames.
    """

    def __init__(
        self,
        start_marker: str,
        end_marker: str,
        echo_prefix: Optional[str] = None,
        encoding: str = "utf-8",
        max_buffer: Optional[int] = None,
    ):
        """
        Args:
            start_marker: Text that opens a frame
            end_marker: Text that closes a frame
            echo_prefix: Regex for an interpreter's value-echo prefix,
                stripped from the start of each line
            encoding: Encoding of the stream
            max_buffer: Raise FrameOverflow when the buffer grows past this
        """
        self.encoding = encoding
        self._start = start_marker.encode(encoding)
        self._end = end_marker.encode(encoding)
        self._echo_prefix = re.compile(echo_prefix) if echo_prefix else None
        self._max_buffer = max_buffer
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[str]:
        """
        Append bytes and return every frame completed by them.

        Raises:
            FrameOverflow: if the buffer exceeds max_buffer
        """
        self._buffer += data
        frames = []

        while True:
            start = self._buffer.find(self._start)
            if start < 0:
                # Keep a tail that may be the beginning of a split marker
                keep = len(self._start) - 1
                if len(self._buffer) > keep:
                    del self._buffer[:len(self._buffer) - keep]
                break

            if start > 0:
                del self._buffer[:start]

            end = self._buffer.find(self._end, len(self._start))
            if end < 0:
                break

            content = bytes(self._buffer[len(self._start):end])
            del self._buffer[:end + len(self._end)]
            frames.append(self.decode(content))

        if self._max_buffer is not None and len(self._buffer) > self._max_buffer:
            size = len(self._buffer)
            self._buffer.clear()
            raise FrameOverflow(size, self._max_buffer)

        return frames

    def decode(self, content: bytes) -> str:
        """Turn the raw bytes between two markers into frame text."""
        text = content.decode(self.encoding, errors="replace")
        text = text.replace("\r\n", "\n")
        if text.startswith("\n"):
            text = text[1:]
        if text.endswith("\n"):
            text = text[:-1]

        lines = text.split("\n")
        if self._echo_prefix is not None:
            lines = [self._echo_prefix.sub("", line, count=1) for line in lines]
        return "\n".join(lines)

    def clear(self):
        """Drop any buffered bytes."""
        self._buffer.clear()


class ErrorAccumulator:
    """
    Collects stderr text between frames.

    Without a delimiter, everything received is attributed to the next
    frame that closes. With a delimiter (printed to stderr after each
    request) stderr is split into one segment per request, so a late
    stderr read cannot leak into the following request.
    """

    def __init__(self, delimiter: Optional[str] = None, encoding: str = "utf-8"):
        self.encoding = encoding
        self._delimiter = delimiter.encode(encoding) if delimiter else None
        self._buffer = bytearray()
        self._segments: list[bytes] = []
        self._lock = threading.Lock()

    @property
    def delimited(self) -> bool:
        return self._delimiter is not None

    def feed(self, data: bytes):
        """Append stderr bytes."""
        with self._lock:
            self._buffer += data
            if self._delimiter is None:
                return
            while True:
                index = self._buffer.find(self._delimiter)
                if index < 0:
                    break
                self._segments.append(bytes(self._buffer[:index]))
                del self._buffer[:index + len(self._delimiter)]

    def ready(self) -> bool:
        """True if drain() would return text for a complete request."""
        with self._lock:
            return self._delimiter is None or bool(self._segments)

    def drain(self) -> Optional[str]:
        """
        Remove and return the stderr belonging to the oldest request.

        Returns:
            Trimmed text, or None when there was nothing but whitespace
        """
        with self._lock:
            if self._delimiter is None:
                raw = bytes(self._buffer)
                self._buffer.clear()
            elif self._segments:
                raw = self._segments.pop(0)
            else:
                raw = b""
        text = raw.decode(self.encoding, errors="replace").strip()
        return text or None

    def clear(self):
        """Drop everything accumulated so far."""
        with self._lock:
            self._buffer.clear()
            self._segments.clear()
