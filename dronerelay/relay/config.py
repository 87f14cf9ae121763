"""Relay server configuration file parsing."""
from __future__ import annotations

import logging
import pathlib
import sys
from typing import Literal
from typing import Optional

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from dronerelay.relay.manager import FIFOSelection
from dronerelay.relay.manager import RandomSelection
from dronerelay.relay.manager import SelectionStrategy
from dronerelay.utils.config import load


class RelayLoggingConfig(BaseModel):
    """Relay logging configuration.

    Attributes:
        log_dir: Default logging directory.
        default_level: Default logging level for the root logger.
        websockets_level: Log level for the `websockets` logger. Websockets
            logs with much higher frequency so it is suggested to set this
            to `WARNING` or higher.
        current_client_interval: Optional seconds between logging the
            number of currently connected and waiting clients.
        current_client_limit: Max threshold for enumerating the
            detailed list of connected clients. If `None`, no detailed
            list will be logged.
    """

    model_config = ConfigDict(extra='forbid')

    log_dir: Optional[str] = None  # noqa: UP007
    default_level: int | str = logging.INFO
    websockets_level: int | str = logging.WARNING
    current_client_interval: Optional[int] = 60  # noqa: UP007
    current_client_limit: Optional[int] = 32  # noqa: UP007


class RelayServingConfig(BaseModel):
    """Relay serving configuration.

    Attributes:
        host: Network interface the server binds to.
        port: Network port the server binds to.
        certfile: Certificate file (PEM format) use to enable TLS.
        keyfile: Private key file. If not specified, the key will be
            taken from the certfile.
        status_path: HTTP path of the status endpoint reporting the number
            of connected clients.
        selection: How a waiting peer is chosen when a match is requested.
            `random` picks uniformly and `fifo` picks the peer that has
            been waiting the longest.
        max_queue_size: Optional maximum number of connections waiting in
            each class queue.
        max_message_bytes: Maximum size in bytes of messages received by
            the relay server.
        ping_interval: Seconds between keepalive pings sent to each client
            or `None` to disable keepalive pings.
        send_timeout: Seconds to wait for a message to be sent to a client
            before the send is treated as failed or `None` to wait
            indefinitely.
        logging: Logging configuration.
    """

    model_config = ConfigDict(extra='forbid')

    host: Optional[str] = None  # noqa: UP007
    port: int = 8080
    certfile: Optional[str] = None  # noqa: UP007
    keyfile: Optional[str] = None  # noqa: UP007
    status_path: str = '/online'
    selection: Literal['random', 'fifo'] = 'random'
    max_queue_size: Optional[int] = None  # noqa: UP007
    max_message_bytes: Optional[int] = None  # noqa: UP007
    ping_interval: Optional[float] = 20  # noqa: UP007
    send_timeout: Optional[float] = 10  # noqa: UP007
    logging: RelayLoggingConfig = Field(default_factory=RelayLoggingConfig)

    @field_validator('port')
    @classmethod
    def _port_validator(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError('Port must be in the range [0, 65535].')
        return v

    @field_validator('status_path')
    @classmethod
    def _status_path_validator(cls, v: str) -> str:
        if not v.startswith('/'):
            raise ValueError('Status path must start with /.')
        return v

    @field_validator('send_timeout')
    @classmethod
    def _send_timeout_validator(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError('Send timeout must be None or > 0.')
        return v

    @field_validator('max_queue_size')
    @classmethod
    def _max_queue_size_validator(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError('Max queue size must be None or >= 1.')
        return v

    def get_strategy(self) -> SelectionStrategy:
        """Create the selection strategy named by `selection`."""
        if self.selection == 'fifo':
            return FIFOSelection()
        return RandomSelection()

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="relay.toml"
            host = "0.0.0.0"
            port = 8080
            certfile = "/path/to/cert.pem"
            keyfile = "/path/to/privkey.pem"
            selection = "fifo"
            max_queue_size = 100

            [logging]
            log_dir = "/path/to/log/dir"
            default_level = "INFO"
            websockets_level = "WARNING"
            current_client_interval = 60
            current_client_limit = 32
            ```

            ```python
            from dronerelay.relay.config import RelayServingConfig

            config = RelayServingConfig.from_toml('relay.toml')
            ```

        Note:
            Omitted values will be set to their defaults.
        """
        with open(filepath, 'rb') as f:
            return load(cls, f)
