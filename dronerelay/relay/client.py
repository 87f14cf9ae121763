"""Client interface to a relay server."""
from __future__ import annotations

import asyncio
import logging
import ssl
import sys
from types import TracebackType

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

import websockets.exceptions
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect as websockets_connect
from websockets.protocol import State

from dronerelay.relay.connection import ChannelHandler
from dronerelay.relay.exceptions import MalformedEnvelopeError
from dronerelay.relay.exceptions import RelayNotConnectedError
from dronerelay.relay.messages import Channel
from dronerelay.relay.messages import decode_envelope
from dronerelay.relay.messages import encode_envelope
from dronerelay.relay.messages import encode_match_request
from dronerelay.relay.messages import Envelope
from dronerelay.relay.messages import MatchRequest
from dronerelay.relay.messages import PeerClass

logger = logging.getLogger(__name__)


class RelayClient:
    """Peer-side client of a relay server.

    A client speaks the same channel protocol as the server. Handlers
    registered on the client are invoked by
    [`listen()`][dronerelay.relay.client.RelayClient.listen] for envelopes
    received on their channel.

    Tip:
        This class can be used as an async context manager!
        ```python
        from dronerelay.relay.client import RelayClient

        async with RelayClient('ws://localhost:8080') as client:
            client.register('begin', on_begin)
            await client.request_match('drone', 'drone-1')
            await client.listen()
        ```

    Args:
        address: Address of the relay server. Should start with `ws://` or
            `wss://`.
        extra_headers: Arbitrary HTTP headers to add to the handshake request.
        ssl_context: Custom SSL context used when connecting. A TLS context
            is created with
            [`ssl.create_default_context()`][ssl.create_default_context]
            when connecting to a `wss://` URI and `ssl_context` is not
            provided.
        timeout: Time to wait in seconds on relay server connection.
        verify_certificate: Verify the relay server's SSL certificate. Only
            used if `ssl_context` is `None` and connecting to a `wss://` URI.

    Raises:
        ValueError: If address does not start with `ws://` or `wss://`.
    """

    def __init__(
        self,
        address: str,
        *,
        extra_headers: dict[str, str] | None = None,
        ssl_context: ssl.SSLContext | None = None,
        timeout: float = 10,
        verify_certificate: bool = True,
    ) -> None:
        if not (address.startswith('ws://') or address.startswith('wss://')):
            raise ValueError(
                'Relay server address must start with ws:// or wss://. '
                f'Got {address}.',
            )

        self._address = address
        self._timeout = timeout

        if self._address.startswith('wss://') and ssl_context is None:
            ssl_context = ssl.create_default_context()
            if not verify_certificate:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._extra_headers = extra_headers
        self._ssl_context = ssl_context
        self._initial_backoff_seconds = 1.0

        self._connect_lock = asyncio.Lock()
        self._handlers: dict[str, ChannelHandler] = {}
        self._websocket: ClientConnection | None = None

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def address(self) -> str:
        """Address of the relay server."""
        return self._address

    @property
    def websocket(self) -> ClientConnection:
        """Websocket connection to the relay server.

        Raises:
            RelayNotConnectedError: if the websocket connection to the relay
                server is not open. This usually indicates that
                [`connect()`][dronerelay.relay.client.RelayClient.connect]
                needs to be called.
        """
        if (
            self._websocket is not None
            and self._websocket.state is State.OPEN
        ):
            return self._websocket
        else:
            raise RelayNotConnectedError(
                'Websocket connection to the relay server is not open. '
                'Try calling connect() first.',
            )

    async def connect(self, retry: bool = True) -> None:
        """Connect to the relay server.

        Note:
            This method is a no-op if a connection is already established.
            Otherwise, a new connection will be attempted with
            exponential backoff when `retry` is True for connection failures.

        Args:
            retry: Retry the connection with exponential backoff starting at
                one second and increasing to a max of 60 seconds.
        """
        async with self._connect_lock:
            if (
                self._websocket is not None
                and self._websocket.state is State.OPEN
            ):
                return

            backoff_seconds = self._initial_backoff_seconds
            while True:
                try:
                    self._websocket = await websockets_connect(
                        self._address,
                        additional_headers=self._extra_headers,
                        open_timeout=self._timeout,
                        ssl=self._ssl_context,
                    )
                except (
                    # Exceptions that we should wait and retry again for
                    OSError,
                    asyncio.TimeoutError,
                    websockets.exceptions.InvalidHandshake,
                ) as e:
                    if not retry:
                        raise

                    logger.warning(
                        f'Connection to relay server at {self._address} '
                        f'failed because of {e!r}. Retrying connection in '
                        f'{backoff_seconds} seconds',
                    )
                    await asyncio.sleep(backoff_seconds)
                    backoff_seconds = min(backoff_seconds * 2, 60)
                else:
                    logger.info(
                        f'Established connection to relay server at '
                        f'{self._address}',
                    )
                    break

    async def close(self) -> None:
        """Close the connection to the relay server."""
        if self._websocket is not None:
            await self._websocket.close()

    def register(self, channel: str, handler: ChannelHandler) -> None:
        """Register a handler for envelopes received on a channel.

        Registering a channel a second time replaces the prior handler.
        """
        self._handlers[channel] = handler

    async def send(self, channel: str, data: str = '') -> None:
        """Send data on a channel.

        Args:
            channel: Channel name.
            data: Opaque payload.
        """
        message = encode_envelope(Envelope(channel=channel, data=data))

        try:
            websocket = self.websocket
        except RelayNotConnectedError:
            await self.connect()
            websocket = self.websocket

        await websocket.send(message)

    async def recv(self) -> Envelope:
        """Receive the next envelope.

        Raises:
            MalformedEnvelopeError: If the message received cannot be
                decoded.
        """
        try:
            websocket = self.websocket
        except RelayNotConnectedError:
            await self.connect()
            websocket = self.websocket

        message = await websocket.recv()
        return decode_envelope(message)

    async def listen(self) -> None:
        """Dispatch received envelopes until the connection closes.

        Envelopes on channels without a handler and malformed messages are
        logged and skipped.
        """
        while True:
            try:
                envelope = await self.recv()
            except websockets.exceptions.ConnectionClosed:
                logger.info('Connection to relay server closed')
                return
            except MalformedEnvelopeError as e:
                logger.warning(f'Skipping malformed message: {e}')
                continue

            handler = self._handlers.get(envelope.channel)
            if handler is None:
                logger.debug(
                    f'No handler registered for channel {envelope.channel}',
                )
                continue
            await handler(envelope.data)

    async def request_match(
        self,
        peer_class: PeerClass | str,
        waiting_id: str,
    ) -> None:
        """Ask the relay server to pair this client with a peer.

        Args:
            peer_class: Class of this client.
            waiting_id: Identifier of this client.
        """
        request = MatchRequest(peer_class=PeerClass(peer_class), id=waiting_id)
        await self.send(Channel.match.value, encode_match_request(request))

    async def request_clients_online(self) -> None:
        """Ask the relay server for the number of connected clients.

        The reply arrives on the `clientsOnline` channel.
        """
        await self.send(Channel.clients_online.value)

    async def disconnect(self) -> None:
        """Unpair from the current peer without closing the connection."""
        await self.send(Channel.disconnect.value)
