"""Main entry point for chanrelay.

Initializes logging in two phases (defaults then config-driven),
loads the jail file into the rate limiter, starts the WebSocket
server, and runs until SIGTERM/SIGINT. Supports both Unix signal
handlers and a Windows SIGINT fallback.

Key functions:
    main: Async entry point -- sets up logging, config, server and
        signal handlers, then waits for shutdown.
    run: Synchronous wrapper that calls asyncio.run(main()).
"""

import asyncio
import signal
import sys

import structlog

from . import __version__
from .exceptions import ConfigurationError
from .logging_config import setup_logging


async def main():
    """Main async entry point."""
    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("chanrelay")

    logger.info("chanrelay_starting", version=__version__)

    # Import here to ensure logging is configured first
    from .config import get_config
    from .server import ChatServer

    try:
        config = get_config()
        config.validate()
    except ConfigurationError as e:
        logger.error("config_invalid", error=str(e), setting=e.setting_name)
        raise SystemExit(2)

    # Phase 2: reconfigure with real config, cache_logger_on_first_use=True
    setup_logging(config)

    server = ChatServer(config)
    server.ctx.police.load_blocklist(config.jail_file)

    # Setup graceful shutdown
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported.
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: loop.call_soon_threadsafe(handle_shutdown, signal.SIGINT),
                )

    try:
        await server.start()
        await shutdown_event.wait()
    except OSError as e:
        logger.error("server_bind_failed", host=config.host, port=config.port, error=str(e))
        raise
    finally:
        await server.stop()
        logger.info("chanrelay_stopped")


def run():
    """Synchronous entry point for the ``chanrelay`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except SystemExit as e:
        sys.exit(e.code)


if __name__ == "__main__":
    run()
