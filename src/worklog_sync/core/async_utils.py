"""Async helpers for calling the synchronous sync engine from async code."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a worker thread.

    Keeps an event loop responsive (for example to render progress) while
    one push or import pass runs.  Passes are not parallelised: each call
    still executes its remote operations one at a time.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        engine = WorklogSyncEngine(store, config)
        outcome = await run_sync(engine.push_github)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
