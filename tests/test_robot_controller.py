"""Tests for the sustained-command action state machine."""

import asyncio

import pytest

from robot_remote.robot_controller import Action, CommandAction, action_for_key

from .helpers import settle, wait_for

INTERVAL = 0.02


def make_actions(sink) -> CommandAction:
    return CommandAction(sink, interval=INTERVAL)


async def test_action_repeats_at_interval(sink):
    actions = make_actions(sink)
    actions.start_action(Action.FORWARD)

    assert await wait_for(lambda: len(sink.directions) >= 4)
    actions.stop_action()

    moves = sink.directions[:-1]
    assert set(moves) == {"forward"}
    times = [t for t, _ in sink.events[:-1]]
    gaps = [b - a for a, b in zip(times, times[1:])]
    assert min(gaps) >= INTERVAL * 0.5


async def test_stop_sends_exactly_one_stop_and_nothing_after(sink):
    actions = make_actions(sink)
    actions.start_action(Action.LEFT)
    assert await wait_for(lambda: len(sink.directions) >= 3)

    actions.stop_action()
    count = len(sink.directions)
    await asyncio.sleep(INTERVAL * 5)

    assert sink.directions[-1] == "stop"
    assert sink.directions.count("stop") == 1
    assert len(sink.directions) == count
    assert actions.current_action.value == Action.NONE
    assert not actions.repeating


async def test_new_action_supersedes_previous(sink):
    actions = make_actions(sink)
    actions.start_action(Action.FORWARD)
    assert await wait_for(lambda: "forward" in sink.directions)

    actions.start_action(Action.RIGHT)
    switch = len(sink.directions)
    await asyncio.sleep(INTERVAL * 4)
    actions.stop_action()

    after = sink.directions[switch:-1]
    assert after and set(after) == {"right"}
    assert actions.current_action.value == Action.NONE


async def test_rapid_switches_never_interleave(sink):
    actions = make_actions(sink)
    for action in (Action.FORWARD, Action.LEFT, Action.BACKWARD, Action.RIGHT):
        actions.start_action(action)
    await asyncio.sleep(INTERVAL * 3)
    actions.stop_action()

    assert set(sink.directions[:-1]) == {"right"}


async def test_duplicate_start_is_ignored(sink):
    actions = make_actions(sink)
    actions.start_action(Action.BACKWARD)
    await settle()
    task = actions._repeat_task

    actions.start_action(Action.BACKWARD)
    await settle()

    assert actions._repeat_task is task
    assert sink.directions == ["backward"]
    actions.stop_action()


async def test_start_none_stops(sink):
    actions = make_actions(sink)
    actions.start_action(Action.FORWARD)
    await settle()
    actions.start_action(Action.NONE)

    assert sink.directions[-1] == "stop"
    assert not actions.repeating


async def test_sink_failure_does_not_kill_loop():
    calls = []

    def flaky(direction):
        calls.append(direction)
        if len(calls) == 1:
            raise RuntimeError("link down")

    actions = CommandAction(flaky, interval=INTERVAL)
    actions.start_action(Action.FORWARD)
    assert await wait_for(lambda: len(calls) >= 3)
    actions.stop_action()


async def test_key_down_and_up(sink):
    actions = make_actions(sink)

    assert actions.on_key_down("W") is True
    await settle()
    assert actions.current_action.value == Action.FORWARD
    assert actions.on_key_up("w") is True
    assert sink.directions[-1] == "stop"

    assert actions.on_key_down("q") is False
    assert actions.on_key_up("enter") is False


@pytest.mark.parametrize(
    "key,expected",
    [
        ("up", Action.FORWARD),
        ("DPAD_DOWN", Action.BACKWARD),
        ("a", Action.LEFT),
        ("right", Action.RIGHT),
        ("space", None),
        ("", None),
    ],
)
def test_action_for_key(key, expected):
    assert action_for_key(key) == expected


def test_action_text():
    assert Action.NONE.direction == "stop"
    assert Action.LEFT.display_text == "◄ LEFT"
    assert Action.NONE.display_text == ""
