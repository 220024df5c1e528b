"""
Command Schema and reply parsing for the robot command channel.

Wire format (one JSON text frame per command):
    {"cmd": "auth", "token": "<shared-secret>"}
    {"cmd": "move", "dir": "forward"|"backward"|"left"|"right"|"stop"}
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

KIND_AUTH = "auth"
KIND_MOVE = "move"

DIRECTIONS = ("forward", "backward", "left", "right", "stop")

# Reply fields that count as an auth acknowledgment. The server's exact ack
# shape is not fixed, so any one of these is accepted.
AUTH_ACK_MATCHES: Tuple[Tuple[str, str], ...] = (
    ("status", "authenticated"),
    ("status", "ok"),
    ("status", "success"),
    ("type", "heartbeat"),
    ("type", "auth_success"),
)


@dataclass(frozen=True)
class Command:
    """
    Command sent from client to robot.
    
    Attributes:
        kind: "auth" or "move"
        token: Shared secret (auth only)
        direction: Movement direction (move only)
    """
    kind: str
    token: Optional[str] = None
    direction: Optional[str] = None

    def __post_init__(self):
        if self.kind == KIND_AUTH:
            if not self.token:
                raise ValueError("auth command requires a token")
        elif self.kind == KIND_MOVE:
            if self.direction not in DIRECTIONS:
                raise ValueError(f"unknown direction: {self.direction!r}")
        else:
            raise ValueError(f"unknown command kind: {self.kind!r}")

    def to_json(self) -> str:
        """Serialize to the wire format."""
        payload: Dict[str, Any] = {"cmd": self.kind}
        if self.kind == KIND_AUTH:
            payload["token"] = self.token
        else:
            payload["dir"] = self.direction
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def from_json(cls, data: str) -> 'Command':
        """Deserialize from the wire format."""
        d = json.loads(data)
        kind = d.get("cmd")
        if kind == KIND_AUTH:
            return cls.auth(d.get("token"))
        return cls(kind=kind, direction=d.get("dir"))

    @classmethod
    def auth(cls, token: str) -> 'Command':
        return cls(kind=KIND_AUTH, token=token)

    @classmethod
    def move(cls, direction: str) -> 'Command':
        return cls(kind=KIND_MOVE, direction=direction)

    @classmethod
    def stop(cls) -> 'Command':
        return cls(kind=KIND_MOVE, direction="stop")


def parse_reply(data) -> Optional[Dict[str, Any]]:
    """
    Parse a message received from the robot.
    
    Returns:
        The decoded JSON object, or None if the payload is not a JSON object.
    """
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Ignoring non-UTF-8 binary reply")
            return None
    try:
        payload = json.loads(data)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring malformed reply: {data!r}")
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def is_auth_ack(payload: Optional[Dict[str, Any]]) -> bool:
    """Check a parsed reply against the auth acknowledgment allow-list."""
    if not payload:
        return False
    return any(payload.get(field) == value for field, value in AUTH_ACK_MATCHES)
