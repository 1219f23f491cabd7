"""finbot — Main entry point."""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from rich.console import Console

from .communication.inbound import AllowList
from .communication.router import MessageRouter
from .config import FinbotSettings, load_settings, validate_startup
from .errors import ConfigurationError, is_transient_protocol_error
from .handler import load_handler
from .session.connection import ReconnectPolicy, SessionConnection
from .session.credentials import FileCredentialStore
from .transports import load_transport

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("finbot")
err_console = Console(stderr=True)


def setup_logging(settings: FinbotSettings):
    """Log to stderr and to the configured log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        log_file = os.path.expanduser(settings.log_file)
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=logging.INFO, format=_log_format, handlers=handlers)
    if settings.debug:
        logging.getLogger("finbot").setLevel(logging.DEBUG)


# ── Top-level error reporting ─────────────────────────────────

def _loop_exception_handler(loop: asyncio.AbstractEventLoop, context: dict):
    """Report errors nobody awaited. Known protocol noise is dropped."""
    exc = context.get("exception")
    message = context.get("message", "Unhandled error")
    if is_transient_protocol_error(exc) or (exc is None and is_transient_protocol_error(message)):
        return
    logger.error(f"Unhandled error: {message}", exc_info=exc)


def _excepthook(exc_type, exc, tb):
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc, tb)
        return
    if is_transient_protocol_error(exc):
        return
    logger.critical(f"Uncaught exception: {exc_type.__name__}: {exc}", exc_info=(exc_type, exc, tb))


def install_error_reporters(loop: Optional[asyncio.AbstractEventLoop] = None):
    if loop is not None:
        loop.set_exception_handler(_loop_exception_handler)
    sys.excepthook = _excepthook


def report_configuration_error(error: ConfigurationError):
    if error.missing:
        err_console.print("[bold red]Missing environment variables:[/bold red]")
        for name in error.missing:
            err_console.print(f"   - {name}")
        err_console.print("\nCreate a .env file based on .env.example")
    else:
        err_console.print(f"[bold red]{error}[/bold red]")
        err_console.print("Set ALLOWED_CHATS to the chats the bot may answer (groups end with @g.us).")


def log_allow_list(allow_list: AllowList):
    logger.info("Bot will only answer in authorized chats:")
    for label, jid in allow_list.describe():
        logger.info(f"   {label}: {jid}")


# ── Run ───────────────────────────────────────────────────────

async def run(settings: FinbotSettings, allow_list: AllowList):
    """Connect and serve until SIGINT/SIGTERM."""
    install_error_reporters(asyncio.get_running_loop())

    handler = load_handler(settings.handler)
    transport = load_transport(settings.transport)
    store = FileCredentialStore(settings.auth_dir)
    connection = SessionConnection(
        transport,
        store,
        ReconnectPolicy(delay=settings.reconnect_delay),
    )
    router = MessageRouter(
        connection,
        handler,
        allow_list,
        handler_timeout=settings.handler_timeout,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    try:
        await connection.connect(router)
        logger.info("Bot started. Waiting for WhatsApp...")
        await stop_event.wait()
    finally:
        await connection.close()
        logger.info("Bot stopped.")


def main(settings: Optional[FinbotSettings] = None) -> int:
    """Validate configuration, run the bot and return the process exit code."""
    settings = settings or load_settings()
    setup_logging(settings)
    logger.info("Starting finbot...")

    try:
        allow_list = validate_startup(settings)
    except ConfigurationError as e:
        report_configuration_error(e)
        return 1

    log_allow_list(allow_list)

    try:
        asyncio.run(run(settings, allow_list))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.critical(f"Failed to start bot: {type(e).__name__}: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
