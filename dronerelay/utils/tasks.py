"""Spawn asyncio background tasks that cannot fail silently."""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from typing import Callable
from typing import Coroutine

logger = logging.getLogger(__name__)


class SafeTaskExitError(Exception):
    """Raise inside a guarded task to finish it without exiting."""

    pass


async def _log_exceptions(
    coro: Callable[..., Coroutine[Any, Any, None]],
    *args: Any,
    **kwargs: Any,
) -> None:
    try:
        await coro(*args, **kwargs)
    except Exception:
        logger.exception('Unhandled exception in background task')
        raise


def exit_on_error(task: asyncio.Task[Any]) -> None:
    """Task done callback that raises SystemExit if the task failed."""
    if task.cancelled():
        return
    exception = task.exception()
    if exception is not None and not isinstance(exception, SafeTaskExitError):
        logger.error(
            f'Exception in background task (name="{task.get_name()}"): '
            f'{exception!r}',
        )
        raise SystemExit(1)


def spawn_guarded_background_task(
    coro: Callable[..., Coroutine[Any, Any, None]],
    *args: Any,
    **kwargs: Any,
) -> asyncio.Task[Any]:
    """Run a coroutine function as a background task.

    Exceptions raised by the coroutine are logged and cause the program to
    exit via [`exit_on_error()`][dronerelay.utils.tasks.exit_on_error]
    rather than being lost in a task that is never awaited. Raise
    [`SafeTaskExitError`][dronerelay.utils.tasks.SafeTaskExitError] to end
    the task early without exiting.

    Args:
        coro: Coroutine function to run.
        args: Positional arguments for the coroutine function.
        kwargs: Keyword arguments for the coroutine function.

    Returns:
        Asyncio task handle.
    """
    task = asyncio.create_task(_log_exceptions(coro, *args, **kwargs))
    task.add_done_callback(exit_on_error)
    return task
