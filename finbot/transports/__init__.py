"""Protocol transports and their loader."""

import importlib
import logging

from ..errors import TransportError
from ..session.protocol import Transport

logger = logging.getLogger("finbot.transports")


def load_transport(path: str) -> Transport:
    """Instantiate a Transport from a ``module:ClassName`` path."""
    module_path, sep, attr = path.partition(":")
    if not sep or not module_path or not attr:
        raise TransportError(f"Invalid transport path {path!r}, expected 'module:ClassName'")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise TransportError(f"Cannot import transport module {module_path!r}: {e}") from e

    transport_cls = getattr(module, attr, None)
    if not isinstance(transport_cls, type) or not issubclass(transport_cls, Transport):
        raise TransportError(f"{path!r} is not a Transport subclass")

    logger.debug(f"Using transport {path}")
    return transport_cls()
