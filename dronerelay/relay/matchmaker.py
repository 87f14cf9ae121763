"""Pairing of waiting drones and receivers."""
from __future__ import annotations

import logging

from dronerelay.relay.connection import Connection
from dronerelay.relay.exceptions import InvalidMatchRequestError
from dronerelay.relay.exceptions import QueueFullError
from dronerelay.relay.manager import PeerRegistry
from dronerelay.relay.messages import Channel
from dronerelay.relay.messages import PeerClass

logger = logging.getLogger(__name__)


class Matchmaker:
    """Pairs connections of opposite classes.

    State changes (dequeueing, linking and unlinking `peer` references) are
    made without suspending so that pairing symmetry holds at every point
    another coroutine can observe. Notifications are sent afterwards.

    Args:
        registry: Waiting queues shared by all connections.
    """

    def __init__(self, registry: PeerRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> PeerRegistry:
        """Waiting queues."""
        return self._registry

    async def request_match(
        self,
        connection: Connection,
        peer_class: PeerClass | str,
        waiting_id: str,
    ) -> Connection | None:
        """Pair a connection with a waiting peer or enqueue it.

        A connection that is already paired must send a `disconnect`
        before it can request a new match. A connection that is already
        waiting is taken out of its queue and the request is processed
        again.

        Args:
            connection: Connection requesting a match.
            peer_class: Class the connection declares.
            waiting_id: Identifier supplied by the peer.

        Returns:
            The connection paired with or `None` if the connection was \
            enqueued.

        Raises:
            InvalidMatchRequestError: If the class is unknown, the ID is
                empty, or the connection is already paired.
            QueueFullError: If no peer is waiting and the queue of the
                class is full. The connection keeps its previous queue
                entry.
        """
        try:
            peer_class = PeerClass(peer_class)
        except ValueError as e:
            raise InvalidMatchRequestError(
                f'Unknown peer class: {peer_class}.',
            ) from e
        if not isinstance(waiting_id, str) or not waiting_id:
            raise InvalidMatchRequestError('Match request ID is empty.')
        if connection.peer is not None:
            raise InvalidMatchRequestError(
                f'Connection {connection.address} is already paired with '
                f'{connection.peer.address}. Disconnect before matching '
                'again.',
            )

        # A request that can neither pair nor wait leaves prior state intact
        opposite = self._registry.waiting(peer_class.opposite)
        if not any(c is not connection for c, _ in opposite) and (
            not self._registry.has_room(peer_class, connection)
        ):
            raise QueueFullError(
                f'The {peer_class.value} waiting queue is full.',
            )

        self._registry.remove(connection)
        connection.peer_class = peer_class
        connection.waiting_id = waiting_id

        waiting = self._registry.dequeue_arbitrary(peer_class.opposite)
        if waiting is None:
            self._registry.enqueue(connection, peer_class, waiting_id)
            logger.info(
                f'No {peer_class.opposite.value} available so '
                f'{peer_class.value} {waiting_id} at {connection.address} '
                'was queued',
            )
            return None

        peer, peer_id = waiting
        connection.peer = peer
        peer.peer = connection
        logger.info(
            f'Paired {peer_class.value} {waiting_id} at {connection.address} '
            f'with {peer_class.opposite.value} {peer_id} at {peer.address}',
        )

        drone = connection if peer_class is PeerClass.drone else peer
        await drone.notify(Channel.begin.value)
        return peer

    def unpair(self, connection: Connection) -> Connection | None:
        """Clear the `peer` references of a connection and its peer.

        Returns:
            The former peer or `None` if the connection was not paired.
        """
        peer = connection.peer
        if peer is None:
            return None
        connection.peer = None
        if peer.peer is connection:
            peer.peer = None
        return peer

    async def release(self, connection: Connection) -> Connection | None:
        """Unpair a connection and take it out of the waiting queues.

        The former peer, if any, is sent a `disconnect` notification.
        Calling this again on the same connection does nothing.

        Returns:
            The former peer or `None` if the connection was not paired.
        """
        peer = self.unpair(connection)
        if self._registry.remove(connection):
            logger.info(
                f'Removed {connection.address} from the waiting queue',
            )
        if peer is not None:
            logger.info(
                f'Unpaired {connection.address} and {peer.address}',
            )
            await peer.notify(Channel.disconnect.value)
        return peer
