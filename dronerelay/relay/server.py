"""Relay server implementation for pairing drones and receivers.

The relay server (or signaling server) is a lightweight server accessible by
all peers that pairs each drone with a receiver and then relays the messages
the two exchange while establishing a WebRTC peer connection (session
descriptions and ICE candidates) as well as any other application channel.
"""
from __future__ import annotations

import asyncio
import functools
import http
import json
import logging
import urllib.parse

import websockets.exceptions
from websockets.asyncio.server import ServerConnection
from websockets.http11 import Request
from websockets.http11 import Response

from dronerelay.relay.connection import Connection
from dronerelay.relay.exceptions import MalformedEnvelopeError
from dronerelay.relay.exceptions import RelayServerError
from dronerelay.relay.manager import PeerRegistry
from dronerelay.relay.manager import SelectionStrategy
from dronerelay.relay.matchmaker import Matchmaker
from dronerelay.relay.messages import Channel
from dronerelay.relay.messages import decode_envelope
from dronerelay.relay.messages import decode_match_request

logger = logging.getLogger(__name__)


class RelayServer:
    """Drone and receiver relay server.

    Each new websocket connection is wrapped in a
    [`Connection`][dronerelay.relay.connection.Connection] with handlers
    for the channels the server consumes itself:

    - `clientsOnline`: replies with the number of live connections.
    - `match`: pairs the connection with a peer of the opposite class or
      queues it until one arrives.
    - `disconnect`: unpairs the connection and notifies its peer.

    Messages on any other channel are forwarded unmodified to the paired
    connection.

    The relay server is built on websockets and designed to be served using
    [`serve()`][dronerelay.relay.run.serve].

    Args:
        strategy: Strategy for picking which waiting peer gets paired.
            Defaults to uniform random selection.
        max_message_bytes: Optional maximum size of client messages in bytes.
            Clients that send oversized messages will have their connections
            closed.
        max_queue_size: Optional maximum number of connections waiting in
            each class queue. Match requests beyond this are dropped.
        status_path: HTTP path of the status endpoint.
        send_timeout: Optional seconds to wait for a send to a connection
            before it counts as failed.
    """

    def __init__(
        self,
        strategy: SelectionStrategy | None = None,
        max_message_bytes: int | None = None,
        max_queue_size: int | None = None,
        status_path: str = '/online',
        send_timeout: float | None = None,
    ) -> None:
        self._registry = PeerRegistry(strategy, max_queue_size=max_queue_size)
        self._matchmaker = Matchmaker(self._registry)
        self._max_message_bytes = max_message_bytes
        self._status_path = status_path
        self._send_timeout = send_timeout
        self._connections: dict[ServerConnection, Connection] = {}

    @property
    def connections(self) -> list[Connection]:
        """Currently open connections."""
        return list(self._connections.values())

    @property
    def online(self) -> int:
        """Number of currently open connections."""
        return len(self._connections)

    @property
    def registry(self) -> PeerRegistry:
        """Waiting queues of connections."""
        return self._registry

    @property
    def matchmaker(self) -> Matchmaker:
        """Matchmaker pairing connections."""
        return self._matchmaker

    def get_connection(self, websocket: ServerConnection) -> Connection | None:
        """Get the connection wrapping a websocket."""
        return self._connections.get(websocket, None)

    async def clients_online(self, connection: Connection, data: str) -> None:
        """Reply with the number of live connections."""
        await connection.notify(Channel.clients_online.value, str(self.online))

    async def match(self, connection: Connection, data: str) -> None:
        """Handle a match request from a connection.

        Raises:
            InvalidMatchRequestError: If the request cannot be decoded or is
                not allowed.
            QueueFullError: If the connection would need to wait but the
                queue of its class is full.
        """
        request = decode_match_request(data)
        await self._matchmaker.request_match(
            connection,
            request.peer_class,
            request.id,
        )

    async def disconnect(
        self,
        connection: Connection,
        *,
        closed: bool = False,
    ) -> None:
        """Unpair a connection and take it out of the waiting queues.

        The former peer is notified on the `disconnect` channel. This is safe
        to call more than once for the same connection.

        Args:
            connection: Connection to clean up.
            closed: The transport closed so the channel handlers of the
                connection are also discarded. Otherwise, the connection
                remains usable and may request a new match.
        """
        await self._matchmaker.release(connection)
        if closed:
            connection.clear_handlers()

    def _register_channels(self, connection: Connection) -> None:
        connection.register(
            Channel.clients_online.value,
            functools.partial(self.clients_online, connection),
        )
        connection.register(
            Channel.match.value,
            functools.partial(self.match, connection),
        )

        async def _disconnect(data: str) -> None:
            await self.disconnect(connection)

        connection.register(Channel.disconnect.value, _disconnect)

    def process_request(
        self,
        websocket: ServerConnection,
        request: Request,
    ) -> Response | None:
        """Answer HTTP requests for the status endpoint.

        A `GET` on the status path returns `#!json {"online": <int>}`.
        Requests to any other path continue with the websocket handshake.
        """
        path = urllib.parse.urlsplit(request.path).path
        if path != self._status_path:
            return None

        body = json.dumps({'online': self.online})
        response = websocket.respond(http.HTTPStatus.OK, body)
        del response.headers['Content-Type']
        response.headers['Content-Type'] = 'application/json'
        return response

    async def handler(self, websocket: ServerConnection) -> None:
        """Websocket server connection handler.

        Messages are decoded and dispatched one at a time in the order they
        arrive. Malformed messages and messages that a channel handler
        rejects are logged and dropped. The connection is closed with code
        4003 if the client sends a message larger than the allowed size.

        When the connection closes for any reason, the connection is
        unpaired, its peer is notified, and it is removed from the waiting
        queues.

        Args:
            websocket: Websocket connection to the client.
        """
        connection = Connection(websocket, send_timeout=self._send_timeout)
        self._register_channels(connection)
        self._connections[websocket] = connection
        logger.info(f'New connection from {connection.address}')

        expected = True
        try:
            while True:
                try:
                    message = await websocket.recv()
                except websockets.exceptions.ConnectionClosedOK:
                    break
                except websockets.exceptions.ConnectionClosedError:
                    expected = False
                    break

                size = len(
                    message.encode('utf-8')
                    if isinstance(message, str)
                    else message,
                )
                if (
                    self._max_message_bytes is not None
                    and size > self._max_message_bytes
                ):
                    await websocket.close(
                        4003,
                        reason='Message length exceeds limit.',
                    )
                    logger.warning(
                        f'Client at {connection.address} sent message with '
                        f'size {size} bytes which exceeds the max configured '
                        f'size of {self._max_message_bytes} bytes. '
                        'Connection closed with error code 4003',
                    )
                    expected = False
                    break

                try:
                    envelope = decode_envelope(message)
                except MalformedEnvelopeError as e:
                    logger.warning(
                        'Dropping malformed message received from '
                        f'{connection.address}. {e}',
                    )
                    continue

                try:
                    await connection.dispatch(envelope)
                except RelayServerError as e:
                    logger.warning(
                        f'Dropping message on channel {envelope.channel} '
                        f'from {connection.address}. '
                        f'{e.__class__.__name__}: {e}',
                    )
        finally:
            self._connections.pop(websocket, None)
            reason = 'ok' if expected else 'unexpected'
            logger.info(
                f'Connection from {connection.address} closed for {reason} '
                'reason',
            )
            await asyncio.shield(self.disconnect(connection, closed=True))
