"""Tests for the WebSocket command link."""

import asyncio
import json

from robot_remote.message import Command
from robot_remote.ws_client import CommandLink, ConnectionState

from .helpers import FakeConnector, settle, wait_for


def make_link(connector, delay: float = 0.02) -> CommandLink:
    return CommandLink(token="secret", reconnect_delay=delay, connector=connector)


def auth_frames(ws):
    return [m for m in ws.sent if json.loads(m)["cmd"] == "auth"]


async def connected_link(connector):
    link = make_link(connector)
    link.connect("robot.local", 8765)
    assert await wait_for(lambda: link.state.value == ConnectionState.CONNECTED)
    return link


async def test_connect_sends_auth_once(connector):
    link = await connected_link(connector)
    ws = connector.last

    assert await wait_for(lambda: ws.sent)
    assert connector.urls == ["ws://robot.local:8765"]
    assert json.loads(ws.sent[0]) == {"cmd": "auth", "token": "secret"}

    link.disconnect()
    await settle()


async def test_repeated_open_sends_auth_once(connector):
    link = await connected_link(connector)
    ws = connector.last

    link.handle_open()
    link.handle_open()
    await link.drain()

    assert len(auth_frames(ws)) == 1
    link.disconnect()
    await settle()


async def test_heartbeat_counts_as_auth_ack(connector):
    link = await connected_link(connector)
    connector.last.feed('{"type":"heartbeat"}')

    assert await wait_for(lambda: link.state.value == ConnectionState.AUTHENTICATED)
    link.disconnect()
    await settle()


async def test_unmatched_and_malformed_replies_are_kept_for_diagnostics(connector):
    link = await connected_link(connector)
    ws = connector.last

    ws.feed('{"status":"denied"}')
    assert await wait_for(lambda: link.last_message.value == '{"status":"denied"}')
    ws.feed("not json {")
    assert await wait_for(lambda: link.last_message.value == "not json {")

    assert link.state.value == ConnectionState.CONNECTED
    assert not ws.closed
    link.disconnect()
    await settle()


async def test_send_without_ack_is_allowed(connector):
    link = await connected_link(connector)
    ws = connector.last

    assert link.send(Command.move("forward")) is True
    await link.drain()

    assert json.loads(ws.sent[-1]) == {"cmd": "move", "dir": "forward"}
    link.disconnect()
    await settle()


async def test_send_while_disconnected_returns_false():
    link = make_link(FakeConnector())

    assert link.send(Command.move("left")) is False
    assert link.stats.messages_failed == 1


async def test_send_while_connecting_returns_false(connector):
    connector.gate = asyncio.Event()
    link = make_link(connector)
    link.connect("robot.local", 8765)

    assert link.state.value == ConnectionState.CONNECTING
    assert link.send(Command.move("left")) is False

    link.disconnect()
    await settle()


async def test_connect_while_connecting_is_noop(connector):
    connector.gate = asyncio.Event()
    link = make_link(connector)

    link.connect("robot.local", 8765)
    await settle()
    link.connect("robot.local", 8765)
    await settle()

    assert connector.calls == 1
    connector.gate.set()
    assert await wait_for(lambda: link.state.value == ConnectionState.CONNECTED)
    link.disconnect()
    await settle()


async def test_connect_to_other_host_while_connecting_is_ignored(connector):
    connector.gate = asyncio.Event()
    link = make_link(connector)

    link.connect("a.local", 1)
    await settle()
    link.connect("b.local", 2)
    assert link.server_url == "ws://a.local:1"

    connector.gate.set()
    assert await wait_for(lambda: link.state.value == ConnectionState.CONNECTED)
    assert connector.urls == ["ws://a.local:1"]

    link.connect("b.local", 2)
    assert await wait_for(lambda: connector.urls == ["ws://a.local:1", "ws://b.local:2"])
    assert await wait_for(lambda: link.state.value == ConnectionState.CONNECTED)
    assert link.server_url == "ws://b.local:2"

    link.disconnect()
    await settle()


async def test_peer_close_reconnects_after_delay(connector):
    link = await connected_link(connector)
    first = connector.last

    first.drop()
    assert await wait_for(lambda: link.state.value == ConnectionState.DISCONNECTED)
    assert link.reconnect_pending

    assert await wait_for(lambda: connector.calls == 2)
    assert await wait_for(lambda: link.state.value == ConnectionState.CONNECTED)
    second = connector.last
    assert await wait_for(lambda: len(auth_frames(second)) == 1)
    assert link.stats.reconnect_attempts == 1

    link.disconnect()
    await settle()


async def test_failures_keep_a_single_pending_reconnect():
    connector = FakeConnector(failures=1000)
    link = make_link(connector, delay=0.01)
    link.connect("robot.local", 8765)

    assert await wait_for(lambda: connector.calls >= 4)
    for _ in range(20):
        if link.reconnect_pending:
            assert link.state.value == ConnectionState.DISCONNECTED
        await asyncio.sleep(0.002)

    assert link.state.value in (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING)
    link.disconnect()
    await settle()


async def test_disconnect_cancels_pending_reconnect():
    connector = FakeConnector(failures=1)
    link = make_link(connector, delay=0.05)
    link.connect("robot.local", 8765)

    assert await wait_for(lambda: link.reconnect_pending)
    link.disconnect()
    assert not link.reconnect_pending

    await asyncio.sleep(0.1)
    assert connector.calls == 1
    assert link.state.value == ConnectionState.DISCONNECTED


async def test_connect_cancels_pending_reconnect():
    connector = FakeConnector(failures=1)
    link = make_link(connector, delay=10.0)
    link.connect("robot.local", 8765)
    assert await wait_for(lambda: link.reconnect_pending)

    link.connect("robot.local", 8765)
    assert not link.reconnect_pending
    assert await wait_for(lambda: link.state.value == ConnectionState.CONNECTED)
    assert connector.calls == 2

    link.disconnect()
    await settle()


async def test_disconnect_closes_socket_and_stops_reconnecting(connector):
    link = await connected_link(connector)
    ws = connector.last

    link.disconnect()
    assert link.state.value == ConnectionState.DISCONNECTED
    assert await wait_for(lambda: ws.closed)

    await asyncio.sleep(0.06)
    assert connector.calls == 1
    assert not link.reconnect_pending


async def test_switching_host_ignores_close_of_old_connection(connector):
    link = await connected_link(connector)
    old = connector.last

    link.connect("other.local", 9000)
    assert await wait_for(lambda: old.closed)
    assert await wait_for(lambda: link.state.value == ConnectionState.CONNECTED)
    await asyncio.sleep(0.05)

    assert connector.urls == ["ws://robot.local:8765", "ws://other.local:9000"]
    assert not link.reconnect_pending
    assert link.state.value == ConnectionState.CONNECTED
    link.disconnect()
    await settle()


async def test_state_transitions_are_ordered(connector):
    link = make_link(connector)
    seen = []
    link.state.subscribe(seen.append)

    link.connect("robot.local", 8765)
    assert await wait_for(lambda: link.state.value == ConnectionState.CONNECTED)
    connector.last.feed('{"status":"authenticated"}')
    assert await wait_for(lambda: link.state.value == ConnectionState.AUTHENTICATED)
    link.disconnect()
    await settle()

    assert seen == [
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.AUTHENTICATED,
        ConnectionState.DISCONNECTED,
    ]
