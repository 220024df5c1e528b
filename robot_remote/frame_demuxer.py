"""
MJPEG Frame Demuxer - Splits a raw byte stream into JPEG frames.

Framing relies only on the JPEG start/end-of-image markers (FFD8 / FFD9).
Multipart boundaries and Content-Length headers are ignored because not
every camera server sends them correctly.

Bounds:
- A frame that grows past max_frame_bytes is abandoned; the frame buffer
  itself never holds more than max_frame_bytes
- A start-marker search that scans past max_search_bytes is abandoned
In both cases next_frame() returns None and the stream keeps being read.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from .config import MAX_FRAME_BYTES, MAX_MARKER_SEARCH_BYTES

logger = logging.getLogger(__name__)

SOI = b"\xff\xd8"
EOI = b"\xff\xd9"


@dataclass
class DemuxStats:
    """Counters for one demuxed stream."""
    frames: int = 0
    bytes_read: int = 0
    oversized_frames: int = 0
    abandoned_searches: int = 0
    truncated_frames: int = 0


class FrameDemuxer:
    """
    Marker-based JPEG frame extractor over an iterable of byte chunks.

    The chunk source is typically `response.iter_content(chunk_size)`.
    A demuxer is bound to one connection; make a new one per connection.
    """

    def __init__(
        self,
        chunks: Iterable[bytes],
        max_frame_bytes: int = MAX_FRAME_BYTES,
        max_search_bytes: int = MAX_MARKER_SEARCH_BYTES,
    ):
        self._chunks = iter(chunks)
        self._pending = bytearray()
        self._held = b""
        self.max_frame_bytes = max_frame_bytes
        self.max_search_bytes = max_search_bytes
        self.eof = False
        self.error: Optional[str] = None
        self.stats = DemuxStats()

    @property
    def buffered(self) -> int:
        """Bytes read from the stream but not yet consumed."""
        return len(self._pending)

    def next_frame(self) -> Optional[bytes]:
        """
        Read the next complete frame.

        Returns:
            The JPEG bytes including both markers, or None if this attempt
            was abandoned (size cap, search cap, end of stream, I/O error).
        """
        if not self._seek_start():
            return None
        return self._read_to_end()

    def frames(self) -> Iterator[bytes]:
        """Yield frames lazily until the stream ends."""
        while True:
            frame = self.next_frame()
            if frame is not None:
                yield frame
            elif self.eof and SOI not in self._pending:
                return

    def _fill(self, limit: Optional[int] = None) -> bool:
        """
        Append the next non-empty chunk. Returns False at end of stream.

        With a limit, the buffer never grows past `limit` bytes; the rest
        of the chunk is held back for the next read.
        """
        chunk = self._next_chunk()
        if chunk is None:
            return False
        if limit is not None:
            room = limit - len(self._pending)
            if len(chunk) > room:
                chunk, self._held = chunk[:room], chunk[room:]
        self._pending += chunk
        return True

    def _next_chunk(self) -> Optional[bytes]:
        if self._held:
            chunk, self._held = self._held, b""
            return chunk
        if self.eof:
            return None
        try:
            for chunk in self._chunks:
                if chunk:
                    self.stats.bytes_read += len(chunk)
                    return chunk
        except OSError as e:
            logger.warning(f"Stream read failed: {e}")
            self.error = str(e)
        self.eof = True
        return None

    def _seek_start(self) -> bool:
        """Discard bytes up to the next start marker."""
        scanned = 0
        while True:
            idx = self._pending.find(SOI)
            if idx != -1:
                if scanned + idx > self.max_search_bytes:
                    del self._pending[:self.max_search_bytes - scanned]
                    self._abandon_search()
                    return False
                del self._pending[:idx]
                return True

            # A trailing FF may be the first half of a split marker
            keep = 1 if self._pending.endswith(b"\xff") else 0
            drop = len(self._pending) - keep
            del self._pending[:drop]
            scanned += drop
            if scanned >= self.max_search_bytes:
                self._abandon_search()
                return False

            if not self._fill():
                return False

    def _read_to_end(self) -> Optional[bytes]:
        """Accumulate from the start marker through the end marker."""
        search_from = len(SOI)
        while True:
            idx = self._pending.find(EOI, search_from)
            if idx != -1:
                end = idx + len(EOI)
                if end > self.max_frame_bytes:
                    del self._pending[:end]
                    self._abandon_oversized(end)
                    return None
                frame = bytes(self._pending[:end])
                del self._pending[:end]
                self.stats.frames += 1
                return frame

            if len(self._pending) >= self.max_frame_bytes:
                size = len(self._pending)
                self._pending.clear()
                self._abandon_oversized(size)
                return None

            search_from = max(len(SOI), len(self._pending) - 1)
            if not self._fill(self.max_frame_bytes):
                if self._pending:
                    logger.debug(f"Dropping truncated frame of {len(self._pending)} bytes")
                    self.stats.truncated_frames += 1
                    self._pending.clear()
                return None

    def _abandon_search(self) -> None:
        self.stats.abandoned_searches += 1
        logger.warning(
            f"No start-of-image marker within {self.max_search_bytes} bytes"
        )

    def _abandon_oversized(self, size: int) -> None:
        self.stats.oversized_frames += 1
        logger.warning(
            f"Abandoning frame of {size} bytes (limit {self.max_frame_bytes})"
        )
