#!/usr/bin/env python3
"""
Robot Remote Client - Main Entry Point

Connects to the robot's WebSocket command server, streams its MJPEG camera
feed, and drives it from typed commands or preview-window keys.

Typed commands (one per line): forward, back, left, right, stop, ...
Preview keys: W/A/S/D to move, SPACE to stop, Q/ESC to quit.

Usage:
    python -m robot_remote.main --host 192.168.1.219
    python -m robot_remote.main --host 10.0.0.5 --command-port 8765 --video-port 8080 --preview
"""

import argparse
import asyncio
import logging
import signal
import sys
import threading
from typing import Callable, Optional

import cv2

from .config import GestureThresholds, RobotSettings
from .gesture import InputClassifier
from .message import Command
from .robot_controller import Action, CommandAction
from .stream_supervisor import StreamSupervisor
from .voice import parse_voice_command
from .ws_client import CommandLink

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

PREVIEW_WINDOW = "Robot Camera"


class RemoteControlClient:
    """
    One control session, wiring together:
    - CommandLink (WebSocket command channel)
    - CommandAction (sustained command emission)
    - InputClassifier (touch gestures)
    - StreamSupervisor (MJPEG feed)
    """

    def __init__(
        self,
        settings: RobotSettings,
        enable_video: bool = True,
        thresholds: Optional[GestureThresholds] = None,
        on_frame: Optional[Callable[[bytes], None]] = None,
        link: Optional[CommandLink] = None,
        stream: Optional[StreamSupervisor] = None,
    ):
        """
        Initialize the session.

        Args:
            settings: Robot host and ports
            enable_video: Whether to ingest the camera feed
            thresholds: Gesture thresholds
            on_frame: Optional sink for each frame's JPEG bytes
            link: Pre-built command link (for tests)
            stream: Pre-built stream supervisor (for tests)
        """
        self.settings = settings
        self.link = link or CommandLink(token=settings.token)
        self.actions = CommandAction(self._send_direction)
        self.gestures = InputClassifier(self.actions, thresholds)
        if stream is None and enable_video:
            stream = StreamSupervisor(settings.video_stream_url, on_frame=on_frame)
        self.stream = stream
        self._running = False

    async def start(self) -> None:
        """Connect the command link and start the video stream."""
        logger.info(
            f"Starting session: commands {self.settings.websocket_url}, "
            f"video {self.settings.video_stream_url if self.stream else 'disabled'}"
        )
        self.link.connect(self.settings.host, self.settings.command_port)
        if self.stream:
            self.stream.start()
        self._running = True

    async def stop(self) -> None:
        """Stop moving, close the command link and the video stream."""
        if not self._running:
            return
        self._running = False
        logger.info("Stopping session...")

        if self.actions.current_action.value != Action.NONE or self.actions.repeating:
            self.actions.stop_action()
            await self.link.drain(timeout=1.0)
        self.link.disconnect()

        if self.stream:
            await self.stream.stop()
        logger.info("Session stopped")

    def handle_text(self, text: str) -> Optional[str]:
        """
        Act on a spoken or typed phrase.

        A movement command stays active until the next command; "stop"
        stops. Returns the matched command, or None.
        """
        command = parse_voice_command(text)
        if command is None:
            logger.info(f"Unknown command: {text.strip()!r}")
            return None
        if command == "stop":
            self.actions.stop_action()
        else:
            self.actions.start_action(Action(command))
        return command

    def _send_direction(self, direction: str) -> None:
        self.link.send(Command.move(direction))

    @property
    def running(self) -> bool:
        return self._running


async def read_commands(client: RemoteControlClient) -> None:
    """Feed stdin lines to the client until EOF."""
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[Optional[str]] = asyncio.Queue()

    # Daemon thread so a blocked readline never holds up shutdown
    def reader() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        loop.call_soon_threadsafe(lines.put_nowait, None)

    threading.Thread(target=reader, daemon=True).start()

    while client.running:
        line = await lines.get()
        if line is None:
            logger.info("Input closed")
            return
        if line.strip():
            client.handle_text(line)


async def run_preview(client: RemoteControlClient, rate: float = 30.0) -> None:
    """Show the latest frame and map W/A/S/D keys to actions."""
    last_sequence = 0
    try:
        while client.running:
            frame = client.stream.latest_frame.value if client.stream else None
            if frame is not None and frame.sequence != last_sequence:
                last_sequence = frame.sequence
                cv2.imshow(PREVIEW_WINDOW, frame.image)

            key = cv2.waitKey(1) & 0xFF
            if key in (27, ord('q')):
                logger.info("Quit requested")
                return
            if key == ord(' '):
                client.actions.stop_action()
            elif key != 0xFF:
                client.actions.on_key_down(chr(key))

            await asyncio.sleep(1.0 / rate)
    finally:
        cv2.destroyAllWindows()


async def wait_for_exit(ui: asyncio.Task, stop_requested: asyncio.Event) -> None:
    """Wait until the UI task ends or a stop is requested. UI failures are logged."""
    waiter = asyncio.create_task(stop_requested.wait())
    try:
        await asyncio.wait({ui, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()

    if ui.done() and not ui.cancelled() and ui.exception() is not None:
        e = ui.exception()
        logger.error(f"Client loop failed: {e}", exc_info=e)


async def main_async(args: argparse.Namespace) -> None:
    """Async main function."""
    settings = RobotSettings.from_env().with_overrides(
        host=args.host,
        command_port=args.command_port,
        video_port=args.video_port,
        token=args.token,
    )
    client = RemoteControlClient(settings, enable_video=not args.no_video)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        stop_requested.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await client.start()
    if args.preview and client.stream:
        ui = asyncio.create_task(run_preview(client))
    else:
        ui = asyncio.create_task(read_commands(client))
    try:
        await wait_for_exit(ui, stop_requested)
    finally:
        await client.stop()
        ui.cancel()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Robot Remote Control Client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Robot host (default: $ROBOT_HOST or 192.168.1.219)",
    )
    parser.add_argument(
        "--command-port",
        type=int,
        default=None,
        help="WebSocket command port (default: $ROBOT_COMMAND_PORT or 8765)",
    )
    parser.add_argument(
        "--video-port",
        type=int,
        default=None,
        help="MJPEG video port (default: $ROBOT_VIDEO_PORT or 8080)",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help="Shared-secret auth token (default: $ROBOT_TOKEN)",
    )
    parser.add_argument(
        "--no-video",
        action="store_true",
        help="Do not open the camera stream",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Show preview window and drive with W/A/S/D",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
