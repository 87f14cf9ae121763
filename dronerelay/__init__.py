"""DroneRelay pairs drones with receivers and relays their channels."""
from __future__ import annotations

import importlib.metadata as importlib_metadata

__version__ = importlib_metadata.version('dronerelay')
