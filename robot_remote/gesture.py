"""
Touch gesture classification.

Turns a single pointer's down/move/up events into robot actions:

    hold        -> FORWARD
    double-tap  -> BACKWARD
    swipe right -> RIGHT
    swipe left  -> LEFT
    release     -> stop

Rules are applied in this order as events arrive:
1. Down: a press within the double-tap window of the previous tap fires
   BACKWARD immediately and no hold timer is started.
2. Down: otherwise a hold timer starts; if it fires first, FORWARD.
3. Move: past the movement slop, the hold is cancelled and a horizontal
   swipe (|dx| > swipe_px and |dx| > |dy|) fires RIGHT or LEFT.
4. Up/cancel: the hold timer is cancelled, a short still contact is
   remembered as a tap, and any active action is stopped.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Optional

from .config import GestureThresholds
from .robot_controller import Action

logger = logging.getLogger(__name__)

DOWN = "down"
MOVE = "move"
UP = "up"
CANCEL = "cancel"


@dataclass(frozen=True)
class PointerEvent:
    """
    One raw pointer event.

    Attributes:
        kind: "down", "move", "up" or "cancel"
        x: Horizontal position in px
        y: Vertical position in px
        t_ms: Event timestamp in milliseconds
        pointer_id: Identifier of the finger
    """
    kind: str
    x: float = 0.0
    y: float = 0.0
    t_ms: float = 0.0
    pointer_id: int = 0


@dataclass
class GestureContext:
    """Scratch state for the current touch sequence."""
    origin_x: float = 0.0
    origin_y: float = 0.0
    down_time_ms: float = 0.0
    pointer_id: Optional[int] = None
    moved: bool = False
    holding: bool = False
    swiping: bool = False
    double_tapped: bool = False
    # Survive across touches so the next press can complete a double-tap
    last_tap_time_ms: Optional[float] = None
    tap_count: int = 0

    def begin(self, x: float, y: float, t_ms: float, pointer_id: int) -> None:
        self.origin_x = x
        self.origin_y = y
        self.down_time_ms = t_ms
        self.pointer_id = pointer_id
        self.moved = False
        self.holding = False
        self.swiping = False
        self.double_tapped = False

    @property
    def recognized(self) -> bool:
        return self.holding or self.swiping or self.double_tapped


class InputClassifier:
    """
    Gesture state machine driving a CommandAction.

    The target only needs start_action(Action), stop_action() and a
    current_action observable. Must be used from the event loop thread.
    """

    def __init__(self, actions, thresholds: Optional[GestureThresholds] = None):
        self._actions = actions
        self.thresholds = thresholds or GestureThresholds()
        self._ctx = GestureContext()
        self._hold_task: Optional[asyncio.Task] = None

    @property
    def touching(self) -> bool:
        return self._ctx.pointer_id is not None

    def handle(self, event: PointerEvent) -> None:
        """Dispatch a raw pointer event."""
        if event.kind == DOWN:
            self.on_pointer_down(event.x, event.y, event.t_ms, event.pointer_id)
        elif event.kind == MOVE:
            self.on_pointer_move(event.x, event.y, event.t_ms, event.pointer_id)
        elif event.kind == UP:
            self.on_pointer_up(event.x, event.y, event.t_ms, event.pointer_id)
        elif event.kind == CANCEL:
            self.on_pointer_cancel(event.pointer_id)
        else:
            raise ValueError(f"unknown pointer event kind: {event.kind!r}")

    def on_pointer_down(self, x: float, y: float, t_ms: float, pointer_id: int = 0) -> None:
        ctx = self._ctx
        if self.touching:
            # Extra fingers do not start a new gesture
            return

        self._cancel_hold()
        ctx.begin(x, y, t_ms, pointer_id)

        if (
            ctx.last_tap_time_ms is not None
            and t_ms - ctx.last_tap_time_ms <= self.thresholds.double_tap_ms
        ):
            ctx.tap_count += 1
        else:
            ctx.tap_count = 0
            ctx.last_tap_time_ms = None

        if ctx.tap_count >= 2:
            logger.debug("Double tap")
            ctx.double_tapped = True
            ctx.tap_count = 0
            ctx.last_tap_time_ms = None
            self._actions.start_action(Action.BACKWARD)
            return

        self._hold_task = asyncio.get_running_loop().create_task(self._hold_timer())

    def on_pointer_move(self, x: float, y: float, t_ms: float, pointer_id: int = 0) -> None:
        ctx = self._ctx
        if not self.touching or pointer_id != ctx.pointer_id:
            return

        dx = x - ctx.origin_x
        dy = y - ctx.origin_y
        if math.hypot(dx, dy) <= self.thresholds.move_slop_px:
            return
        ctx.moved = True
        if ctx.recognized:
            return

        self._cancel_hold()
        if abs(dx) > self.thresholds.swipe_px and abs(dx) > abs(dy):
            ctx.swiping = True
            action = Action.RIGHT if dx > 0 else Action.LEFT
            logger.debug(f"Swipe {action.direction}")
            self._actions.start_action(action)

    def on_pointer_up(self, x: float, y: float, t_ms: float, pointer_id: int = 0) -> None:
        ctx = self._ctx
        if not self.touching or pointer_id != ctx.pointer_id:
            return

        self._cancel_hold()
        if math.hypot(x - ctx.origin_x, y - ctx.origin_y) > self.thresholds.move_slop_px:
            ctx.moved = True

        duration = t_ms - ctx.down_time_ms
        if not ctx.recognized and not ctx.moved and duration < self.thresholds.hold_ms:
            ctx.last_tap_time_ms = t_ms
            ctx.tap_count = max(ctx.tap_count, 1)
        self._end_touch()

    def on_pointer_cancel(self, pointer_id: int = 0) -> None:
        if not self.touching or pointer_id != self._ctx.pointer_id:
            return
        self._cancel_hold()
        self._ctx.tap_count = 0
        self._ctx.last_tap_time_ms = None
        self._end_touch()

    def _end_touch(self) -> None:
        self._ctx.pointer_id = None
        self._ctx.holding = False
        self._ctx.swiping = False
        self._ctx.double_tapped = False
        if self._actions.current_action.value != Action.NONE:
            self._actions.stop_action()

    async def _hold_timer(self) -> None:
        await asyncio.sleep(self.thresholds.hold_ms / 1000.0)
        self._hold_task = None
        ctx = self._ctx
        if not self.touching or ctx.recognized or ctx.moved:
            return
        logger.debug("Hold")
        ctx.holding = True
        ctx.tap_count = 0
        ctx.last_tap_time_ms = None
        self._actions.start_action(Action.FORWARD)

    def _cancel_hold(self) -> None:
        if self._hold_task is not None:
            self._hold_task.cancel()
            self._hold_task = None
