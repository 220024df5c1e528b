"""
Stream Supervisor - Keeps the robot's MJPEG camera feed flowing.

Opens a long-lived HTTP GET, feeds the body through FrameDemuxer, validates
each frame with OpenCV and publishes it as the latest frame. Any failure
closes the connection, waits a fixed delay and starts over, forever.
Blocking HTTP reads run in a worker thread; results are published through
thread-safe Observables.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

import cv2
import numpy as np
import requests

from .config import (
    MAX_FRAME_BYTES,
    MAX_MARKER_SEARCH_BYTES,
    STREAM_CHUNK_SIZE,
    STREAM_CONNECT_TIMEOUT_S,
    STREAM_READ_TIMEOUT_S,
    STREAM_RETRY_DELAY_S,
)
from .frame_demuxer import FrameDemuxer
from .observable import Observable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """
    One decoded camera frame.

    Attributes:
        data: Raw JPEG bytes as received
        image: Decoded BGR image
        sequence: 1-based index across the supervisor's lifetime
        received_at: Wall-clock time the frame was published
    """
    data: bytes
    image: np.ndarray = field(repr=False, compare=False)
    sequence: int
    received_at: float


@dataclass
class StreamStats:
    """Statistics about the video stream."""
    connect_attempts: int = 0
    connections: int = 0
    frames_published: int = 0
    decode_failures: int = 0
    last_frame_time: Optional[float] = None


def decode_frame(data: bytes) -> Optional[np.ndarray]:
    """Decode JPEG bytes into a BGR image, or None if they are not a valid image."""
    buf = np.frombuffer(data, dtype=np.uint8)
    try:
        image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    except cv2.error as e:
        logger.debug(f"imdecode raised: {e}")
        return None
    if image is None or image.size == 0:
        return None
    return image


class StreamSupervisor:
    """
    Resilient MJPEG ingestion loop.

    Observables:
    - connecting: True while an HTTP connection is being opened
    - latest_frame: most recent Frame (replaced, never queued)
    - last_error: message of the last failure, cleared on connect
    """

    def __init__(
        self,
        url: str,
        retry_delay: float = STREAM_RETRY_DELAY_S,
        connect_timeout: float = STREAM_CONNECT_TIMEOUT_S,
        read_timeout: float = STREAM_READ_TIMEOUT_S,
        chunk_size: int = STREAM_CHUNK_SIZE,
        max_frame_bytes: int = MAX_FRAME_BYTES,
        max_search_bytes: int = MAX_MARKER_SEARCH_BYTES,
        opener: Optional[Callable[..., Any]] = None,
        on_frame: Optional[Callable[[bytes], None]] = None,
    ):
        """
        Initialize the supervisor.

        Args:
            url: MJPEG stream URL
            retry_delay: Seconds to wait before reconnecting after a failure
            connect_timeout: HTTP connect timeout in seconds
            read_timeout: HTTP read timeout in seconds
            chunk_size: Bytes requested per read
            max_frame_bytes: Size cap for a single frame
            max_search_bytes: Lookahead cap for the start-marker search
            opener: Callable with the requests.get signature
            on_frame: Optional sink called with the JPEG bytes of each frame
        """
        self.url = url
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.chunk_size = chunk_size
        self.max_frame_bytes = max_frame_bytes
        self.max_search_bytes = max_search_bytes
        self._opener = opener or requests.get
        self.on_frame = on_frame

        self.connecting: Observable[bool] = Observable(False)
        self.latest_frame: Observable[Optional[Frame]] = Observable(None, always_notify=True)
        self.last_error: Observable[Optional[str]] = Observable(None)
        self.stats = StreamStats()

        self._stop_event = threading.Event()
        self._response_lock = threading.Lock()
        self._response = None
        self._sequence = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the supervisor as a background task on the running loop."""
        if self.running:
            return
        # One event per run; a worker thread from an earlier run keeps its own
        self._stop_event = threading.Event()
        self._task = asyncio.get_running_loop().create_task(self.run())
        logger.info(f"Video stream started: {self.url}")

    async def stop(self) -> None:
        """Stop the loop and close the current connection."""
        self._stop_event.set()
        self._close_response()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.connecting.set(False)
        logger.info("Video stream stopped")

    async def run(self) -> None:
        """Connect, read frames, and reconnect after a fixed delay, until stopped."""
        stop_event = self._stop_event
        while not stop_event.is_set():
            try:
                await asyncio.to_thread(self.stream_once, stop_event)
            except asyncio.CancelledError:
                stop_event.set()
                self._close_response()
                raise
            except Exception as e:
                if stop_event.is_set():
                    logger.debug(f"Stream closed during stop: {e}")
                else:
                    logger.error(f"Stream loop error: {e}")
                    self.last_error.set(f"Stream error: {e}")
                self._close_response()

            if stop_event.is_set():
                break

            logger.info(f"Reconnecting video stream in {self.retry_delay:.1f}s...")
            await asyncio.sleep(self.retry_delay)

    def stream_once(self, stop_event: Optional[threading.Event] = None) -> None:
        """
        Run one connection lifetime (blocking).

        Returns when the server closes the stream, a read fails, or
        stop_event is set. Connection errors are recorded in last_error.

        Args:
            stop_event: Stop request of the owning run (defaults to the current one)
        """
        stop_event = stop_event or self._stop_event
        self.connecting.set(True)
        self.stats.connect_attempts += 1
        logger.info(f"Connecting to video stream {self.url}...")
        try:
            response = self._opener(
                self.url,
                stream=True,
                timeout=(self.connect_timeout, self.read_timeout),
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            if not stop_event.is_set():
                logger.error(f"Video stream connection failed: {e}")
                self.last_error.set(f"Stream error: {e}")
                self.connecting.set(False)
            return

        # stop() sets the event before taking the lock, so either it sees
        # this response or this thread sees the stop request
        with self._response_lock:
            stale = stop_event.is_set()
            if not stale:
                self._response = response
        if stale:
            logger.debug("Discarding stream opened after stop")
            response.close()
            return

        self.stats.connections += 1
        self.last_error.set(None)
        self.connecting.set(False)
        logger.info("Video stream connected")

        demuxer = FrameDemuxer(
            self._read_chunks(response, stop_event),
            max_frame_bytes=self.max_frame_bytes,
            max_search_bytes=self.max_search_bytes,
        )
        try:
            for data in demuxer.frames():
                if stop_event.is_set():
                    break
                self._publish(data)
        finally:
            self._release_response(response)

        if demuxer.error and not stop_event.is_set():
            self.last_error.set(f"Stream error: {demuxer.error}")
        else:
            logger.info("Video stream ended")

    def _read_chunks(self, response, stop_event: threading.Event) -> Iterator[bytes]:
        for chunk in response.iter_content(chunk_size=self.chunk_size):
            if stop_event.is_set():
                return
            yield chunk

    def _publish(self, data: bytes) -> None:
        image = decode_frame(data)
        if image is None:
            self.stats.decode_failures += 1
            logger.debug(f"Dropping undecodable frame of {len(data)} bytes")
            return

        self._sequence += 1
        now = time.time()
        self.latest_frame.set(
            Frame(data=data, image=image, sequence=self._sequence, received_at=now)
        )
        self.stats.frames_published += 1
        self.stats.last_frame_time = now

        if self.on_frame:
            try:
                self.on_frame(data)
            except Exception as e:
                logger.warning(f"Frame sink failed: {e}")

    def _close_response(self) -> None:
        with self._response_lock:
            response, self._response = self._response, None
        if response is not None:
            response.close()

    def _release_response(self, response) -> None:
        """Close a response owned by this thread without touching a newer one."""
        with self._response_lock:
            if self._response is response:
                self._response = None
        response.close()

    def get_stats(self) -> dict:
        """Get stream statistics."""
        return {
            "url": self.url,
            "running": self.running,
            "connect_attempts": self.stats.connect_attempts,
            "connections": self.stats.connections,
            "frames_published": self.stats.frames_published,
            "decode_failures": self.stats.decode_failures,
            "last_frame_time": self.stats.last_frame_time,
            "last_error": self.last_error.value,
        }
