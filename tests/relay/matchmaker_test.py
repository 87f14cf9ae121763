from __future__ import annotations

import random

import pytest

from dronerelay.relay.connection import Connection
from dronerelay.relay.exceptions import InvalidMatchRequestError
from dronerelay.relay.exceptions import QueueFullError
from dronerelay.relay.manager import FIFOSelection
from dronerelay.relay.manager import PeerRegistry
from dronerelay.relay.manager import RandomSelection
from dronerelay.relay.matchmaker import Matchmaker
from dronerelay.relay.messages import decode_envelope
from dronerelay.relay.messages import PeerClass
from testing.relay_server import get_mock_websocket


def _sent_channels(connection: Connection) -> list[str]:
    return [
        decode_envelope(call.args[0]).channel
        for call in connection.websocket.send.await_args_list
    ]


def _check_invariants(
    registry: PeerRegistry,
    connections: list[Connection],
) -> None:
    for connection in connections:
        if connection.peer is not None:
            assert connection.peer.peer is connection
            assert connection not in registry


@pytest.mark.asyncio()
async def test_match_receiver_then_drone() -> None:
    matchmaker = Matchmaker(PeerRegistry())
    x = Connection(get_mock_websocket(5001))
    y = Connection(get_mock_websocket(5002))

    assert await matchmaker.request_match(x, 'receiver', 'r1') is None
    assert matchmaker.registry.waiting(PeerClass.receiver) == [(x, 'r1')]
    assert x.peer_class is PeerClass.receiver
    assert x.waiting_id == 'r1'
    x.websocket.send.assert_not_awaited()

    assert await matchmaker.request_match(y, PeerClass.drone, 'd1') is x
    assert x.peer is y
    assert y.peer is x
    assert len(matchmaker.registry) == 0
    assert _sent_channels(y) == ['begin']
    assert _sent_channels(x) == []


@pytest.mark.asyncio()
async def test_match_drone_then_receiver_notifies_drone() -> None:
    matchmaker = Matchmaker(PeerRegistry())
    drone = Connection(get_mock_websocket(5001))
    receiver = Connection(get_mock_websocket(5002))

    await matchmaker.request_match(drone, 'drone', 'd1')
    await matchmaker.request_match(receiver, 'receiver', 'r1')

    assert _sent_channels(drone) == ['begin']
    assert _sent_channels(receiver) == []


@pytest.mark.asyncio()
async def test_same_class_does_not_pair() -> None:
    matchmaker = Matchmaker(PeerRegistry(FIFOSelection()))
    a = Connection(get_mock_websocket(5001))
    b = Connection(get_mock_websocket(5002))

    await matchmaker.request_match(a, 'drone', 'd1')
    await matchmaker.request_match(b, 'drone', 'd2')

    assert a.peer is None
    assert b.peer is None
    assert matchmaker.registry.waiting(PeerClass.drone) == [
        (a, 'd1'),
        (b, 'd2'),
    ]


@pytest.mark.asyncio()
@pytest.mark.parametrize(
    ('peer_class', 'waiting_id'),
    (('pilot', 'p1'), ('drone', ''), ('', 'd1')),
)
async def test_invalid_match_request(peer_class: str, waiting_id: str) -> None:
    matchmaker = Matchmaker(PeerRegistry())
    connection = Connection(get_mock_websocket())

    with pytest.raises(InvalidMatchRequestError):
        await matchmaker.request_match(connection, peer_class, waiting_id)

    assert connection.peer_class is None
    assert connection not in matchmaker.registry


@pytest.mark.asyncio()
async def test_rematch_while_paired_is_rejected() -> None:
    matchmaker = Matchmaker(PeerRegistry())
    x = Connection(get_mock_websocket(5001))
    y = Connection(get_mock_websocket(5002))
    z = Connection(get_mock_websocket(5003))
    await matchmaker.request_match(z, 'receiver', 'r2')
    await matchmaker.request_match(x, 'receiver', 'r1')
    await matchmaker.request_match(y, 'drone', 'd1')
    paired = y.peer
    assert paired is not None

    with pytest.raises(InvalidMatchRequestError, match='already paired'):
        await matchmaker.request_match(y, 'drone', 'd1')

    assert y.peer is paired
    assert paired.peer is y
    assert matchmaker.registry.size(PeerClass.receiver) == 1


@pytest.mark.asyncio()
async def test_rematch_while_queued_moves_connection() -> None:
    matchmaker = Matchmaker(PeerRegistry())
    connection = Connection(get_mock_websocket())

    await matchmaker.request_match(connection, 'drone', 'd1')
    await matchmaker.request_match(connection, 'receiver', 'r1')

    assert len(matchmaker.registry) == 1
    assert matchmaker.registry.queued_class(connection) is PeerClass.receiver
    assert connection.waiting_id == 'r1'


@pytest.mark.asyncio()
async def test_rematch_into_full_queue_keeps_previous_entry() -> None:
    registry = PeerRegistry(max_queue_size=1)
    matchmaker = Matchmaker(registry)
    connection = Connection(get_mock_websocket(5001))
    other = Connection(get_mock_websocket(5002))
    await matchmaker.request_match(connection, 'drone', 'd1')
    registry.enqueue(other, PeerClass.receiver, 'r1')

    with pytest.raises(QueueFullError):
        await matchmaker.request_match(connection, 'receiver', 'r3')

    assert matchmaker.registry.queued_class(connection) is PeerClass.drone
    assert matchmaker.registry.waiting(PeerClass.drone) == [(connection, 'd1')]
    assert connection.peer_class is PeerClass.drone
    assert connection.waiting_id == 'd1'

    newcomer = Connection(get_mock_websocket(5003))
    with pytest.raises(QueueFullError):
        await matchmaker.request_match(newcomer, 'receiver', 'r4')
    assert newcomer.peer_class is None
    assert newcomer not in registry


@pytest.mark.asyncio()
async def test_release_paired_notifies_once() -> None:
    matchmaker = Matchmaker(PeerRegistry())
    x = Connection(get_mock_websocket(5001))
    y = Connection(get_mock_websocket(5002))
    await matchmaker.request_match(x, 'receiver', 'r1')
    await matchmaker.request_match(y, 'drone', 'd1')

    assert await matchmaker.release(y) is x
    assert await matchmaker.release(y) is None

    assert x.peer is None
    assert y.peer is None
    assert _sent_channels(x) == ['disconnect']
    # The drone only got begin
    assert _sent_channels(y) == ['begin']


@pytest.mark.asyncio()
async def test_release_waiting_connection() -> None:
    matchmaker = Matchmaker(PeerRegistry())
    connection = Connection(get_mock_websocket())
    await matchmaker.request_match(connection, 'drone', 'd1')

    assert await matchmaker.release(connection) is None
    assert connection not in matchmaker.registry
    connection.websocket.send.assert_not_awaited()


@pytest.mark.asyncio()
async def test_rematch_after_release() -> None:
    matchmaker = Matchmaker(PeerRegistry())
    x = Connection(get_mock_websocket(5001))
    y = Connection(get_mock_websocket(5002))
    await matchmaker.request_match(x, 'receiver', 'r1')
    await matchmaker.request_match(y, 'drone', 'd1')

    await matchmaker.release(x)
    await matchmaker.request_match(x, 'receiver', 'r1')
    await matchmaker.request_match(y, 'drone', 'd1')

    assert x.peer is y
    assert y.peer is x


def test_unpair_not_paired() -> None:
    matchmaker = Matchmaker(PeerRegistry())
    assert matchmaker.unpair(Connection(get_mock_websocket())) is None


@pytest.mark.asyncio()
async def test_random_operation_sequences_preserve_invariants() -> None:
    rng = random.Random(42)
    matchmaker = Matchmaker(PeerRegistry(RandomSelection(rng)))
    connections = [Connection(get_mock_websocket(5000 + i)) for i in range(8)]
    pairings = 0

    for _ in range(500):
        connection = rng.choice(connections)
        if rng.random() < 0.6:
            try:
                peer = await matchmaker.request_match(
                    connection,
                    rng.choice(['drone', 'receiver']),
                    'id',
                )
            except InvalidMatchRequestError:
                assert connection.peer is not None
            else:
                if peer is not None:
                    pairings += 1
                    assert peer.peer is connection
                    assert peer.peer_class is not connection.peer_class
        else:
            await matchmaker.release(connection)
        _check_invariants(matchmaker.registry, connections)

    assert pairings > 0
