"""Message handler loading.

The handler turns the text of an authorized message into the reply text. It
lives outside finbot and is configured as ``module.path:callable`` through
FINBOT_HANDLER.
"""

import asyncio
import functools
import importlib
import inspect
import logging

from .communication.router import MessageHandler
from .errors import HandlerError

logger = logging.getLogger("finbot.handler")


async def echo(text: str) -> str:
    """Reply with the received text. Useful to check pairing and the allow-list."""
    return text


def load_handler(path: str) -> MessageHandler:
    """Import a handler from a ``module:attribute`` path.

    Plain functions are run in a worker thread so they cannot block the
    event loop. Classes and factories are not instantiated.

    Raises:
        HandlerError: if the module or attribute cannot be found or is not callable.
    """
    module_path, sep, attr = path.partition(":")
    if not sep or not module_path or not attr:
        raise HandlerError(f"Invalid handler path {path!r}, expected 'module:callable'")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise HandlerError(f"Cannot import handler module {module_path!r}: {e}") from e

    handler = getattr(module, attr, None)
    if handler is None or not callable(handler):
        raise HandlerError(f"{path!r} is not a callable handler")

    if inspect.iscoroutinefunction(handler):
        logger.debug(f"Loaded async handler {path}")
        return handler

    @functools.wraps(handler)
    async def _threaded(text: str) -> str:
        return await asyncio.to_thread(handler, text)

    logger.debug(f"Loaded sync handler {path} (runs in worker thread)")
    return _threaded
