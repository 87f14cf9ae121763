"""Relay server and client for pairing drones with receivers."""
from __future__ import annotations

from dronerelay.relay.client import RelayClient
from dronerelay.relay.connection import Connection
from dronerelay.relay.manager import PeerRegistry
from dronerelay.relay.matchmaker import Matchmaker
from dronerelay.relay.messages import Channel
from dronerelay.relay.messages import Envelope
from dronerelay.relay.messages import PeerClass
from dronerelay.relay.server import RelayServer
