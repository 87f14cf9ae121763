"""Server-side representation of a peer connection."""
from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Awaitable
from typing import Callable

import websockets.exceptions
from websockets.asyncio.server import ServerConnection

from dronerelay.relay.exceptions import SendFailureError
from dronerelay.relay.messages import encode_envelope
from dronerelay.relay.messages import Envelope
from dronerelay.relay.messages import PeerClass

logger = logging.getLogger(__name__)

ChannelHandler = Callable[[str], Awaitable[None]]
"""Coroutine function invoked with the data of a received envelope."""


class Connection:
    """Live websocket connection to a peer.

    A connection owns a table of channel handlers. Envelopes on a channel
    with a handler are consumed locally and everything else is forwarded
    to the paired connection, if there is one.

    Note:
        Connections compare by identity. Two connections are only equal if
        they wrap the same websocket.

    Args:
        websocket: Server-side websocket connection to the peer.
        send_timeout: Optional seconds to wait for a send to complete.
            Without a timeout, forwarding to a peer that stops reading
            blocks once its write buffer is full.
    """

    def __init__(
        self,
        websocket: ServerConnection,
        send_timeout: float | None = None,
    ) -> None:
        self._websocket = websocket
        self._send_timeout = send_timeout
        self._handlers: dict[str, ChannelHandler] = {}
        self.peer: Connection | None = None
        self.peer_class: PeerClass | None = None
        self.waiting_id: str | None = None
        self.created = datetime.datetime.now(tz=datetime.timezone.utc)

    def __repr__(self) -> str:
        created = self.created.strftime('%Y-%m-%d %H:%M:%S %Z')
        peer_class = None if self.peer_class is None else self.peer_class.value
        return (
            f'{self.__class__.__name__}(address={self.address}, '
            f'class={peer_class}, id={self.waiting_id}, '
            f'paired={self.peer is not None}, created={created})'
        )

    @property
    def address(self) -> str:
        """Remote address of the peer formatted as `host:port`."""
        address = self._websocket.remote_address
        if isinstance(address, tuple) and len(address) >= 2:
            return f'{address[0]}:{address[1]}'
        return str(address)

    @property
    def websocket(self) -> ServerConnection:
        """Underlying websocket connection."""
        return self._websocket

    @property
    def channels(self) -> list[str]:
        """Channels with a locally registered handler."""
        return list(self._handlers)

    def register(self, channel: str, handler: ChannelHandler) -> None:
        """Register a handler for a channel.

        Registering a channel a second time replaces the prior handler.
        """
        self._handlers[channel] = handler

    def clear_handlers(self) -> None:
        """Discard all registered channel handlers."""
        self._handlers.clear()

    async def dispatch(self, envelope: Envelope) -> None:
        """Route a received envelope.

        The envelope is handled by the handler registered for its channel.
        Otherwise, the envelope is forwarded unmodified to the paired
        connection. Envelopes with no handler and no paired connection are
        dropped.

        Args:
            envelope: Envelope received on this connection.
        """
        handler = self._handlers.get(envelope.channel)
        if handler is not None:
            await handler(envelope.data)
            return

        peer = self.peer
        if peer is None:
            logger.debug(
                f'Dropping message on channel {envelope.channel} from '
                f'{self.address} because it is not paired',
            )
            return

        try:
            await peer.send(envelope)
        except SendFailureError as e:
            logger.warning(
                f'Failed to forward message on channel {envelope.channel} '
                f'from {self.address} to {peer.address}: {e}',
            )

    async def send(self, envelope: Envelope) -> None:
        """Send an envelope to the peer.

        Envelopes that were decoded from the wire are sent using their
        original text.

        Raises:
            SendFailureError: If the websocket connection is closed or the
                send does not complete within the send timeout.
        """
        message = (
            envelope.raw
            if envelope.raw is not None
            else encode_envelope(envelope)
        )
        try:
            await asyncio.wait_for(
                self._websocket.send(message),
                self._send_timeout,
            )
        except websockets.exceptions.ConnectionClosed as e:
            raise SendFailureError(
                f'Connection to {self.address} is closed.',
            ) from e
        except asyncio.TimeoutError as e:
            raise SendFailureError(
                f'Send to {self.address} timed out after '
                f'{self._send_timeout} seconds.',
            ) from e

    async def notify(self, channel: str, data: str = '') -> bool:
        """Send a server-generated envelope and log any failure.

        Returns:
            `True` if the envelope was sent.
        """
        try:
            await self.send(Envelope(channel=channel, data=data))
        except SendFailureError as e:
            logger.error(f'Failed to send {channel} message: {e}')
            return False
        return True
