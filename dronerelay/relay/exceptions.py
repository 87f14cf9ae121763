"""Exception types raised by relay clients and servers."""
from __future__ import annotations


class RelayClientError(Exception):
    """Base exception type for exceptions raised by relay clients."""

    pass


class RelayNotConnectedError(RelayClientError):
    """Exception raised if a client is not connected to a relay server."""

    pass


class RelayServerError(Exception):
    """Base exception type for exceptions raised by relay server."""

    pass


class MalformedEnvelopeError(RelayServerError):
    """A received message could not be decoded into an envelope."""

    pass


class EnvelopeEncodeError(RelayServerError):
    """An envelope could not be encoded for sending."""

    pass


class InvalidMatchRequestError(RelayServerError):
    """A match request had an unknown peer class, no ID, or was not allowed."""

    pass


class QueueFullError(RelayServerError):
    """The waiting queue for a peer class has reached its capacity."""

    pass


class SendFailureError(RelayServerError):
    """The transport was unavailable when sending an envelope."""

    pass
