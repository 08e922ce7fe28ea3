"""Run blocking storage and HTTP calls from the event loop."""

import asyncio
import functools
from typing import Any, Callable


async def run_blocking(func: Callable[..., Any], *args, **kwargs) -> Any:
    """Run a blocking callable in the default executor and await its result."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
