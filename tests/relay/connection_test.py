from __future__ import annotations

import asyncio
import logging
from unittest import mock

import pytest
import websockets.exceptions

from dronerelay.relay.connection import Connection
from dronerelay.relay.exceptions import SendFailureError
from dronerelay.relay.messages import decode_envelope
from dronerelay.relay.messages import Envelope
from dronerelay.relay.messages import PeerClass
from testing.relay_server import get_mock_websocket


def _pair() -> tuple[Connection, Connection]:
    x = Connection(get_mock_websocket(5001))
    y = Connection(get_mock_websocket(5002))
    x.peer = y
    y.peer = x
    return x, y


def test_connection_repr_and_address() -> None:
    connection = Connection(get_mock_websocket(1234))
    connection.peer_class = PeerClass.drone
    connection.waiting_id = 'd1'
    assert connection.address == '127.0.0.1:1234'
    assert 'class=drone' in repr(connection)
    assert 'id=d1' in repr(connection)
    assert 'paired=False' in repr(connection)


def test_register_last_write_wins() -> None:
    connection = Connection(get_mock_websocket())
    first, second = mock.AsyncMock(), mock.AsyncMock()
    connection.register('msg', first)
    connection.register('msg', second)
    assert connection.channels == ['msg']


def test_clear_handlers() -> None:
    connection = Connection(get_mock_websocket())
    connection.register('msg', mock.AsyncMock())
    connection.clear_handlers()
    assert connection.channels == []


@pytest.mark.asyncio()
async def test_dispatch_to_local_handler() -> None:
    x, y = _pair()
    first, second = mock.AsyncMock(), mock.AsyncMock()
    x.register('description', first)
    x.register('description', second)

    await x.dispatch(Envelope('description', 'offer'))

    first.assert_not_awaited()
    second.assert_awaited_once_with('offer')
    y.websocket.send.assert_not_awaited()


@pytest.mark.asyncio()
async def test_dispatch_forwards_unmodified_to_peer() -> None:
    x, y = _pair()
    message = '{"channel":"iceCandidate", "data":"cand1", "extra": 1}'

    await x.dispatch(decode_envelope(message))

    y.websocket.send.assert_awaited_once_with(message)


@pytest.mark.asyncio()
async def test_dispatch_unpaired_drops(caplog) -> None:
    caplog.set_level(logging.DEBUG)
    connection = Connection(get_mock_websocket())

    await connection.dispatch(Envelope('msg', 'hello'))

    connection.websocket.send.assert_not_awaited()
    assert any('not paired' in record.message for record in caplog.records)


@pytest.mark.asyncio()
async def test_dispatch_forward_failure_is_logged(caplog) -> None:
    caplog.set_level(logging.WARNING)
    x, y = _pair()
    y.websocket.send.side_effect = websockets.exceptions.ConnectionClosedOK(
        None,
        None,
    )

    await x.dispatch(Envelope('msg', 'hello'))

    assert any(
        'Failed to forward message on channel msg' in record.message
        for record in caplog.records
    )


@pytest.mark.asyncio()
async def test_send_encodes_envelope() -> None:
    connection = Connection(get_mock_websocket())
    await connection.send(Envelope('begin'))
    (message,) = connection.websocket.send.await_args.args
    assert decode_envelope(message) == Envelope('begin', '')


@pytest.mark.asyncio()
async def test_send_connection_closed() -> None:
    connection = Connection(get_mock_websocket())
    connection.websocket.send.side_effect = (
        websockets.exceptions.ConnectionClosedError(None, None)
    )
    with pytest.raises(SendFailureError, match='is closed'):
        await connection.send(Envelope('begin'))


async def _stalled_send(message: str) -> None:
    await asyncio.sleep(10)


@pytest.mark.asyncio()
async def test_send_timeout() -> None:
    connection = Connection(get_mock_websocket(), send_timeout=0.01)
    connection.websocket.send.side_effect = _stalled_send
    with pytest.raises(SendFailureError, match='timed out'):
        await connection.send(Envelope('begin'))


@pytest.mark.asyncio()
async def test_dispatch_to_stalled_peer_does_not_block(caplog) -> None:
    caplog.set_level(logging.WARNING)
    x = Connection(get_mock_websocket(5001), send_timeout=0.01)
    y = Connection(get_mock_websocket(5002), send_timeout=0.01)
    x.peer = y
    y.peer = x
    y.websocket.send.side_effect = _stalled_send

    await asyncio.wait_for(x.dispatch(Envelope('msg', 'hello')), 1)

    assert any(
        'timed out' in record.message and record.levelname == 'WARNING'
        for record in caplog.records
    )


@pytest.mark.asyncio()
async def test_notify(caplog) -> None:
    caplog.set_level(logging.ERROR)
    connection = Connection(get_mock_websocket())
    assert await connection.notify('disconnect')

    connection.websocket.send.side_effect = (
        websockets.exceptions.ConnectionClosedOK(None, None)
    )
    assert not await connection.notify('disconnect')
    assert len(caplog.records) == 1
    assert 'Failed to send disconnect message' in caplog.records[0].message
