"""Waiting queues of connections that requested a match.

Warning:
    The registry is not thread-safe. It is designed to be mutated only from
    the event loop running the
    [`RelayServer`][dronerelay.relay.server.RelayServer] where each
    operation runs to completion without suspending.
"""
from __future__ import annotations

import random
from typing import Mapping
from typing import Protocol
from typing import runtime_checkable

from dronerelay.relay.connection import Connection
from dronerelay.relay.exceptions import QueueFullError
from dronerelay.relay.messages import PeerClass


@runtime_checkable
class SelectionStrategy(Protocol):
    """Chooses which waiting connection gets paired next."""

    def pick_waiting(self, queue: Mapping[Connection, str]) -> Connection:
        """Pick a connection from a non-empty waiting queue.

        Args:
            queue: Mapping of waiting connection to waiting ID in the order
                the connections were enqueued.
        """
        ...


class RandomSelection:
    """Pick a waiting connection uniformly at random.

    Args:
        rng: Optional random number generator, useful for seeding.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = random.Random() if rng is None else rng

    def pick_waiting(self, queue: Mapping[Connection, str]) -> Connection:
        """Pick a connection from a non-empty waiting queue."""
        return self._rng.choice(list(queue))


class FIFOSelection:
    """Pick the connection that has been waiting the longest."""

    def pick_waiting(self, queue: Mapping[Connection, str]) -> Connection:
        """Pick a connection from a non-empty waiting queue."""
        return next(iter(queue))


class PeerRegistry:
    """Waiting queues for each peer class.

    A connection is in at most one queue at a time.

    Args:
        strategy: Strategy used to pick which waiting connection is
            dequeued. Defaults to
            [`RandomSelection`][dronerelay.relay.manager.RandomSelection].
        max_queue_size: Optional maximum number of connections waiting in
            each queue.
    """

    def __init__(
        self,
        strategy: SelectionStrategy | None = None,
        max_queue_size: int | None = None,
    ) -> None:
        self._strategy = RandomSelection() if strategy is None else strategy
        self._max_queue_size = max_queue_size
        self._queues: dict[PeerClass, dict[Connection, str]] = {
            peer_class: {} for peer_class in PeerClass
        }

    def __contains__(self, connection: object) -> bool:
        return any(connection in queue for queue in self._queues.values())

    def __len__(self) -> int:
        return sum(len(queue) for queue in self._queues.values())

    @property
    def strategy(self) -> SelectionStrategy:
        """Strategy used to pick waiting connections."""
        return self._strategy

    def has_room(
        self,
        peer_class: PeerClass,
        connection: Connection | None = None,
    ) -> bool:
        """Check if a connection can be added to the queue of a class.

        A connection already waiting in the queue always has room.
        """
        queue = self._queues[peer_class]
        return (
            self._max_queue_size is None
            or connection in queue
            or len(queue) < self._max_queue_size
        )

    def enqueue(
        self,
        connection: Connection,
        peer_class: PeerClass,
        waiting_id: str,
    ) -> None:
        """Add a connection to the waiting queue of a class.

        A connection already waiting in another queue is moved.

        Raises:
            QueueFullError: If the queue already holds `max_queue_size`
                connections.
        """
        if not self.has_room(peer_class, connection):
            raise QueueFullError(
                f'The {peer_class.value} waiting queue is full '
                f'({self._max_queue_size} connections).',
            )
        self.remove(connection)
        self._queues[peer_class][connection] = waiting_id

    def dequeue_arbitrary(
        self,
        peer_class: PeerClass,
    ) -> tuple[Connection, str] | None:
        """Remove and return a waiting connection of a class.

        Returns:
            Tuple of the connection and its waiting ID or `None` if no \
            connections of the class are waiting.
        """
        queue = self._queues[peer_class]
        if len(queue) == 0:
            return None
        connection = self._strategy.pick_waiting(queue)
        return connection, queue.pop(connection)

    def remove(self, connection: Connection) -> bool:
        """Remove a connection from whichever queue it is waiting in.

        Returns:
            `True` if the connection was waiting.
        """
        for queue in self._queues.values():
            if connection in queue:
                del queue[connection]
                return True
        return False

    def queued_class(self, connection: Connection) -> PeerClass | None:
        """Get the class of the queue a connection is waiting in."""
        for peer_class, queue in self._queues.items():
            if connection in queue:
                return peer_class
        return None

    def waiting(self, peer_class: PeerClass) -> list[tuple[Connection, str]]:
        """Get the waiting connections and IDs of a class in queue order."""
        return list(self._queues[peer_class].items())

    def size(self, peer_class: PeerClass) -> int:
        """Get the number of waiting connections of a class."""
        return len(self._queues[peer_class])
