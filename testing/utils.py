"""Fixtures and utilities for testing."""
from __future__ import annotations

import asyncio
import socket
from typing import Callable


def open_port() -> int:
    """Return a port that is currently free on this host."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('', 0))
        return s.getsockname()[1]


async def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 1.0,
    interval: float = 0.005,
) -> None:
    """Yield to the event loop until a condition holds.

    Raises:
        TimeoutError: If the condition does not hold within the timeout.
    """
    waited = 0.0
    while not condition():
        if waited >= timeout:
            raise TimeoutError('Timeout waiting for condition.')
        await asyncio.sleep(interval)
        waited += interval
