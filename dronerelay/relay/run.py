"""Command line entry point and serving loop of the relay."""
from __future__ import annotations

import asyncio
import contextlib
import datetime
import logging
import logging.handlers
import os
import signal
import ssl
import sys
from typing import Any

import click
from websockets.asyncio.server import serve as websockets_serve

from dronerelay.relay.config import RelayLoggingConfig
from dronerelay.relay.config import RelayServingConfig
from dronerelay.relay.messages import PeerClass
from dronerelay.relay.server import RelayServer
from dronerelay.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)

LOG_FORMAT = (
    '[%(asctime)s.%(msecs)03d] %(levelname)-5s (%(name)s) :: %(message)s'
)
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def summarize_clients(server: RelayServer, limit: float | None = None) -> str:
    """Describe the connections and waiting queues of a server.

    Args:
        server: Relay server to describe.
        limit: List each connection when there are fewer than this many.
    """
    connections = sorted(server.connections, key=lambda c: c.created)
    waiting = ', '.join(
        f'{server.registry.size(peer_class)} {peer_class.value}(s)'
        for peer_class in PeerClass
    )
    summary = f'Connected clients: {len(connections)} ({waiting} waiting)'
    if limit is not None and 0 < len(connections) < limit:
        summary += ''.join(f'\n{c!r}' for c in connections)
    return summary


def periodic_client_logger(
    server: RelayServer,
    interval: float = 60,
    limit: float | None = 60,
    level: int = logging.INFO,
) -> asyncio.Task[None]:
    """Start a background task logging a client summary every `interval`.

    See [`summarize_clients()`][dronerelay.relay.run.summarize_clients].
    """

    async def _log() -> None:
        while True:
            await asyncio.sleep(interval)
            logger.log(level, summarize_clients(server, limit))

    task = spawn_guarded_background_task(_log)
    task.set_name('relay-server-client-logger')
    return task


def _server_ssl_context(config: RelayServingConfig) -> ssl.SSLContext | None:
    if config.certfile is None:
        return None
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(config.certfile, keyfile=config.keyfile)
    return context


def _level(level: int | str) -> int:
    return level if isinstance(level, int) else logging.getLevelName(level)


async def serve(config: RelayServingConfig) -> None:
    """Serve drones and receivers until SIGINT or SIGTERM is received.

    Logging is not configured here. Use
    [`configure_logging()`][dronerelay.relay.run.configure_logging] first.
    """
    server = RelayServer(
        config.get_strategy(),
        max_message_bytes=config.max_message_bytes,
        max_queue_size=config.max_queue_size,
        status_path=config.status_path,
        send_timeout=config.send_timeout,
    )

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    client_logger: asyncio.Task[None] | None = None
    if config.logging.current_client_interval is not None:
        client_logger = periodic_client_logger(
            server,
            config.logging.current_client_interval,
            config.logging.current_client_limit,
            level=_level(config.logging.default_level),
        )

    logger.info(f'Starting relay server with {config!r}')
    try:
        async with websockets_serve(
            server.handler,
            config.host,
            config.port,
            process_request=server.process_request,
            ping_interval=config.ping_interval,
            ssl=_server_ssl_context(config),
            logger=None,
        ):
            logger.info(
                f'Relay server listening on port {config.port} '
                f'(status at {config.status_path})',
            )
            await stop.wait()
    finally:
        if client_logger is not None:
            client_logger.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await client_logger
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)

    logger.info('Relay server shutdown')


def configure_logging(config: RelayLoggingConfig) -> None:
    """Log to stdout and, if `log_dir` is set, a weekly rotated file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_dir is not None:
        os.makedirs(config.log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                os.path.join(config.log_dir, 'server.log'),
                when='W6',
                atTime=datetime.time(0, 0),
            ),
        )

    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        level=config.default_level,
        handlers=handlers,
    )
    logging.getLogger('websockets').setLevel(config.websockets_level)


@click.command()
@click.option('--config', '-c', 'config_path', help='TOML config file.')
@click.option('--host', metavar='ADDR', help='Interface to bind to.')
@click.option(
    '--port',
    type=int,
    metavar='PORT',
    envvar='SERVER_PORT',
    help='Port to bind to. Also read from SERVER_PORT.',
)
@click.option('--log-dir', metavar='PATH', help='Directory for server.log.')
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Minimum logging level.',
)
@click.option(
    '--selection',
    type=click.Choice(['random', 'fifo'], case_sensitive=False),
    help='How waiting peers are picked when a match is requested.',
)
def cli(
    config_path: str | None,
    host: str | None,
    port: int | None,
    log_dir: str | None,
    log_level: str | None,
    selection: str | None,
) -> None:
    """Pair drones with receivers and relay their signaling messages.

    Options given on the command line take precedence over the config file.
    """
    config = (
        RelayServingConfig.from_toml(config_path)
        if config_path is not None
        else RelayServingConfig()
    )

    overrides: dict[str, Any] = {
        'host': host,
        'port': port,
        'selection': None if selection is None else selection.lower(),
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    if log_dir is not None:
        config.logging.log_dir = log_dir
    if log_level is not None:
        config.logging.default_level = logging.getLevelName(log_level.upper())

    configure_logging(config.logging)
    asyncio.run(serve(config))
