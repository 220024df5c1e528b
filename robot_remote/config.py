"""
Configuration for the remote-control client.

Settings are plain dataclasses with defaults. They can be read from
environment variables and are overridden by command-line flags in main.py.
Nothing here is persisted.

Environment Variables:
    ROBOT_HOST: Robot host name or IP (default: 192.168.1.219)
    ROBOT_COMMAND_PORT: WebSocket command port (default: 8765)
    ROBOT_VIDEO_PORT: MJPEG video port (default: 8080)
    ROBOT_TOKEN: Shared-secret auth token (default: robot_secret_2024)
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

# ============================================================================
# Protocol constants
# ============================================================================

DEFAULT_HOST = "192.168.1.219"
DEFAULT_COMMAND_PORT = 8765
DEFAULT_VIDEO_PORT = 8080
DEFAULT_TOKEN = "robot_secret_2024"

RECONNECT_DELAY_S = 3.0
PING_INTERVAL_S = 30.0
REPEAT_INTERVAL_S = 0.1

STREAM_RETRY_DELAY_S = 2.0
STREAM_CONNECT_TIMEOUT_S = 5.0
STREAM_READ_TIMEOUT_S = 10.0
STREAM_CHUNK_SIZE = 4096

MAX_FRAME_BYTES = 5 * 1024 * 1024
MAX_MARKER_SEARCH_BYTES = 100_000


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class RobotSettings:
    """
    Connection settings for one robot.
    
    Attributes:
        host: Robot host name or IP address
        command_port: Port of the WebSocket command server
        video_port: Port of the MJPEG HTTP stream
        token: Shared secret sent in the auth command
    """
    host: str = DEFAULT_HOST
    command_port: int = DEFAULT_COMMAND_PORT
    video_port: int = DEFAULT_VIDEO_PORT
    token: str = DEFAULT_TOKEN

    @property
    def websocket_url(self) -> str:
        return f"ws://{self.host}:{self.command_port}"

    @property
    def video_stream_url(self) -> str:
        return f"http://{self.host}:{self.video_port}/"

    @classmethod
    def from_env(cls) -> 'RobotSettings':
        """Build settings from ROBOT_* environment variables."""
        return cls(
            host=os.environ.get("ROBOT_HOST") or DEFAULT_HOST,
            command_port=_env_int("ROBOT_COMMAND_PORT", DEFAULT_COMMAND_PORT),
            video_port=_env_int("ROBOT_VIDEO_PORT", DEFAULT_VIDEO_PORT),
            token=os.environ.get("ROBOT_TOKEN") or DEFAULT_TOKEN,
        )

    def with_overrides(
        self,
        host: Optional[str] = None,
        command_port: Optional[int] = None,
        video_port: Optional[int] = None,
        token: Optional[str] = None,
    ) -> 'RobotSettings':
        """Return a copy with every non-None argument applied."""
        changes = {
            "host": host,
            "command_port": command_port,
            "video_port": video_port,
            "token": token,
        }
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


@dataclass(frozen=True)
class GestureThresholds:
    """
    Tunable timing and distance thresholds for touch classification.
    
    Attributes:
        hold_ms: Contact time before a press becomes a hold
        double_tap_ms: Max gap between a tap and the next press
        move_slop_px: Movement that disqualifies a tap or hold
        swipe_px: Horizontal travel needed for a swipe
    """
    hold_ms: int = 400
    double_tap_ms: int = 300
    move_slop_px: float = 20.0
    swipe_px: float = 30.0
