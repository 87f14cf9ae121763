"""Channel envelope codec used on every relay connection.

Every message exchanged with the relay server, in either direction, is a
JSON object with two string fields:

```json
{"channel": "iceCandidate", "data": "..."}
```

The `data` field is opaque to the relay server. It may itself contain a
serialized structure specific to the channel (e.g., a session description)
but the server only inspects it for the channels it handles itself.
"""
from __future__ import annotations

import dataclasses
import enum
import json
from typing import Any

from dronerelay.relay.exceptions import EnvelopeEncodeError
from dronerelay.relay.exceptions import InvalidMatchRequestError
from dronerelay.relay.exceptions import MalformedEnvelopeError


class Channel(enum.Enum):
    """Channel names reserved by the relay protocol."""

    clients_online = 'clientsOnline'
    """Peer asks for, and server replies with, the live connection count."""
    match = 'match'
    """Peer asks to be paired with a peer of the opposite class."""
    begin = 'begin'
    """Server tells the drone of a new pair that negotiation can start."""
    ice_candidate = 'iceCandidate'
    """ICE candidate relayed between paired peers."""
    description = 'description'
    """Session description relayed between paired peers."""
    disconnect = 'disconnect'
    """Unpair request from a peer or unpair notification from the server."""
    msg = 'msg'
    """Free text relayed between paired peers."""


class PeerClass(enum.Enum):
    """Role a connection declares when requesting a match."""

    drone = 'drone'
    """Producer side. Initiates negotiation once paired."""
    receiver = 'receiver'
    """Consumer side."""

    @property
    def opposite(self) -> PeerClass:
        """Class a connection of this class is paired with."""
        if self is PeerClass.drone:
            return PeerClass.receiver
        return PeerClass.drone


@dataclasses.dataclass
class Envelope:
    """Unit of communication on a relay connection.

    Attributes:
        channel: Name of the logical channel.
        data: Opaque payload string.
        raw: Wire text the envelope was decoded from, if any. Forwarded
            envelopes are sent using this text so the receiving peer gets
            exactly what the sender sent.
    """

    channel: str
    data: str = ''
    raw: str | None = dataclasses.field(
        default=None,
        compare=False,
        repr=False,
    )


@dataclasses.dataclass
class MatchRequest:
    """Payload of a `match` channel message.

    Attributes:
        peer_class: Class the requesting connection declares.
        id: Identifier supplied by the peer, used for diagnostics.
    """

    peer_class: PeerClass
    id: str


def decode_envelope(message: str | bytes) -> Envelope:
    """Decode a wire message into an envelope.

    Args:
        message: Text frame, or UTF-8 encoded binary frame.

    Returns:
        Decoded envelope with `raw` set to the wire text.

    Raises:
        MalformedEnvelopeError: If the message is not a JSON object with a
            string `channel` and an optional string `data`.
    """
    if isinstance(message, (bytes, bytearray, memoryview)):
        try:
            message = bytes(message).decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedEnvelopeError(
                'Binary message is not valid UTF-8.',
            ) from e

    try:
        data = json.loads(message)
    except (json.JSONDecodeError, RecursionError) as e:
        raise MalformedEnvelopeError('Failed to load string as JSON.') from e

    if not isinstance(data, dict):
        raise MalformedEnvelopeError(
            f'Expected a JSON object but got {type(data).__name__}.',
        )

    channel = data.get('channel')
    if not isinstance(channel, str) or not channel:
        raise MalformedEnvelopeError(
            'Message does not contain a string channel key.',
        )

    payload = data.get('data')
    if payload is None:
        payload = ''
    elif not isinstance(payload, str):
        raise MalformedEnvelopeError(
            f'Data on channel {channel} must be a string but got '
            f'{type(payload).__name__}.',
        )

    return Envelope(channel=channel, data=payload, raw=message)


def encode_envelope(envelope: Envelope) -> str:
    """Encode an envelope as a JSON string.

    Args:
        envelope: Envelope to encode. The `raw` field is not encoded.

    Raises:
        EnvelopeEncodeError: If the envelope cannot be JSON encoded.
    """
    if not isinstance(envelope, Envelope):
        raise EnvelopeEncodeError(
            f'Message is not an instance of {Envelope.__name__}. '
            f'Got {type(envelope).__name__}.',
        )
    if not isinstance(envelope.channel, str) or not isinstance(
        envelope.data,
        str,
    ):
        raise EnvelopeEncodeError('Envelope channel and data must be str.')

    return json.dumps({'channel': envelope.channel, 'data': envelope.data})


def decode_match_request(data: str) -> MatchRequest:
    """Parse the payload of a `match` channel message.

    The payload is a JSON object such as
    `#!json {"type": "drone", "id": "drone-1"}`.

    Raises:
        InvalidMatchRequestError: If the payload is not valid JSON, the type
            is not a known peer class, or the ID is missing or empty.
    """
    try:
        payload: Any = json.loads(data)
    except (json.JSONDecodeError, RecursionError) as e:
        raise InvalidMatchRequestError(
            'Match request is not valid JSON.',
        ) from e

    if not isinstance(payload, dict):
        raise InvalidMatchRequestError('Match request is not a JSON object.')

    peer_type = payload.get('type')
    peer_id = payload.get('id')
    if not peer_type or not peer_id:
        raise InvalidMatchRequestError('Type or ID not found.')

    try:
        peer_class = PeerClass(peer_type)
    except ValueError as e:
        raise InvalidMatchRequestError(
            f'Unknown peer class: {peer_type}.',
        ) from e

    if not isinstance(peer_id, str):
        raise InvalidMatchRequestError('Match request ID must be a string.')

    return MatchRequest(peer_class=peer_class, id=peer_id)


def encode_match_request(request: MatchRequest) -> str:
    """Encode a match request as the payload of a `match` message."""
    return json.dumps({'type': request.peer_class.value, 'id': request.id})
