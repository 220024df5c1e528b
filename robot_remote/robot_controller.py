"""
Robot Controller - Sustained movement commands from discrete input.

A single action is active at a time. While it is active its direction is
re-sent every REPEAT_INTERVAL_S; stopping sends exactly one "stop". The
robot treats silence as stop, so losing the link mid-action lets it coast
for at most one interval.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .config import REPEAT_INTERVAL_S
from .observable import Observable

logger = logging.getLogger(__name__)


class Action(Enum):
    """What the operator currently wants the robot to do."""
    NONE = "stop"
    FORWARD = "forward"
    BACKWARD = "backward"
    LEFT = "left"
    RIGHT = "right"

    @property
    def direction(self) -> str:
        """Wire direction for this action."""
        return self.value

    @property
    def display_text(self) -> str:
        return _DISPLAY_TEXT[self]


_DISPLAY_TEXT = {
    Action.FORWARD: "▲ FORWARD",
    Action.BACKWARD: "▼ BACKWARD",
    Action.LEFT: "◄ LEFT",
    Action.RIGHT: "RIGHT ►",
    Action.NONE: "",
}

# Arrow keys, D-pad names and WASD
KEY_ACTIONS: Dict[str, Action] = {
    "up": Action.FORWARD,
    "dpad_up": Action.FORWARD,
    "w": Action.FORWARD,
    "down": Action.BACKWARD,
    "dpad_down": Action.BACKWARD,
    "s": Action.BACKWARD,
    "left": Action.LEFT,
    "dpad_left": Action.LEFT,
    "a": Action.LEFT,
    "right": Action.RIGHT,
    "dpad_right": Action.RIGHT,
    "d": Action.RIGHT,
}


def action_for_key(key: str) -> Optional[Action]:
    """Map a key name to a movement action (case-insensitive)."""
    if not key:
        return None
    return KEY_ACTIONS.get(key.lower())


class CommandAction:
    """
    Single-action state machine with a cancellable repeat loop.

    Must be used from the event loop thread.
    """

    def __init__(
        self,
        sink: Callable[[str], Any],
        interval: float = REPEAT_INTERVAL_S,
    ):
        """
        Args:
            sink: Called with a direction string for every emitted command
            interval: Seconds between repeated commands
        """
        self._sink = sink
        self.interval = interval
        self.current_action: Observable[Action] = Observable(Action.NONE)
        self._repeat_task: Optional[asyncio.Task] = None

    @property
    def repeating(self) -> bool:
        return self._repeat_task is not None and not self._repeat_task.done()

    def start_action(self, action: Action) -> None:
        """Make `action` the active action and start repeating it."""
        if action is Action.NONE:
            self.stop_action()
            return
        if self.current_action.value == action and self.repeating:
            return

        self._cancel_repeat()
        self.current_action.set(action)
        logger.info(f"Action -> {action.direction}")
        self._repeat_task = asyncio.get_running_loop().create_task(self._repeat(action))

    def stop_action(self) -> None:
        """Cancel the repeat loop and send a single stop."""
        self._cancel_repeat()
        if self.current_action.set(Action.NONE):
            logger.info("Action -> stop")
        self._emit(Action.NONE.direction)

    def on_key_down(self, key: str) -> bool:
        """Handle a key press. Returns True if it was a movement key."""
        action = action_for_key(key)
        if action is None:
            return False
        self.start_action(action)
        return True

    def on_key_up(self, key: str) -> bool:
        """Handle a key release. Returns True if it was a movement key."""
        if action_for_key(key) is None:
            return False
        self.stop_action()
        return True

    async def _repeat(self, action: Action) -> None:
        while self.current_action.value == action:
            self._emit(action.direction)
            await asyncio.sleep(self.interval)

    def _cancel_repeat(self) -> None:
        if self._repeat_task is not None:
            self._repeat_task.cancel()
            self._repeat_task = None

    def _emit(self, direction: str) -> None:
        try:
            self._sink(direction)
        except Exception as e:
            logger.warning(f"Command sink failed for {direction}: {e}")
