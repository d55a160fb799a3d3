"""
Process entry point: flags, listener, health flag and graceful drain.

The server moves through ``starting -> ready -> draining -> stopped``; the
context's health flag is only set while ``ready``. On SIGINT/SIGTERM the flag
drops before uvicorn stops accepting, open connections lose keep-alive, and
in-flight requests get the grace period to finish. A drain that runs out the
grace period is fatal.
"""

import argparse
import contextlib
import signal
import sys
import threading
import time
from typing import List, Optional

import uvicorn

from .config import Settings
from .context import AppContext
from .logging_utils import logger, setup_logging
from .main import create_app

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="msgboard", description="Minimal HTTP message board")
    p.add_argument("--host", help="interface to listen on")
    p.add_argument("--port", type=int, help="server listen port")
    p.add_argument("--access-key", help="access key for allowing users to post messages")
    p.add_argument("--database-url", help="SQLAlchemy URL of the messages database")
    p.add_argument("--log-level", help="log level (DEBUG, INFO, ...)")
    return p


def load_settings(argv: Optional[List[str]] = None) -> Settings:
    args = build_parser().parse_args(argv)
    return Settings(
        HOST=args.host,
        PORT=args.port,
        ACCESS_KEY=args.access_key,
        DATABASE_URL=args.database_url,
        LOG_LEVEL=args.log_level,
    )


class MessageBoardServer(uvicorn.Server):
    def __init__(self, config: uvicorn.Config, context: AppContext) -> None:
        super().__init__(config)
        self.context = context
        self.drain_timed_out = False

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self.context.mark_ready()
            logger.info("Server is ready to handle requests at %s", self.context.settings.PORT)

    @contextlib.contextmanager
    def capture_signals(self):
        # Unlike uvicorn's version, the signal is not re-raised after shutdown:
        # the drain outcome decides the exit status.
        if threading.current_thread() is not threading.main_thread():
            yield
            return
        original_handlers = {sig: signal.signal(sig, self.handle_exit) for sig in HANDLED_SIGNALS}
        try:
            yield
        finally:
            for sig, handler in original_handlers.items():
                signal.signal(sig, handler)

    def handle_exit(self, sig, frame) -> None:
        if not self.should_exit:
            logger.info("Server is shutting down...")
        self.context.begin_draining()
        super().handle_exit(sig, frame)

    async def shutdown(self, sockets=None) -> None:
        self.context.begin_draining()
        started = time.monotonic()
        await super().shutdown(sockets=sockets)
        # uvicorn cancels whatever is left once the grace period is used up
        grace = self.config.timeout_graceful_shutdown
        if grace is not None and time.monotonic() - started >= grace:
            self.drain_timed_out = True
        self.context.mark_stopped()


def build_server(context: AppContext) -> MessageBoardServer:
    settings = context.settings
    config = uvicorn.Config(
        create_app(context),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        timeout_keep_alive=settings.KEEP_ALIVE_TIMEOUT,
        timeout_graceful_shutdown=settings.SHUTDOWN_GRACE_PERIOD,
    )
    return MessageBoardServer(config, context)


def main(argv: Optional[List[str]] = None) -> int:
    settings = load_settings(argv)
    setup_logging(settings.LOG_LEVEL)
    logger.info("Server is starting...")

    context = AppContext(settings)
    server = build_server(context)
    try:
        server.run()
    except SystemExit:
        # uvicorn exits from startup when the socket cannot be bound
        if not server.started:
            logger.critical("Could not listen on %s", settings.PORT)
        raise

    if server.drain_timed_out:
        logger.critical(
            "Could not gracefully shutdown the server: in-flight requests still "
            "running after %ss",
            settings.SHUTDOWN_GRACE_PERIOD,
        )
        return 1

    logger.info("Server stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
