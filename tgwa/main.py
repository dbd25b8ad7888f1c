"""
Main application entry point for the Telegram to WhatsApp bridge.
Wires the clients to the relay engine and runs until a shutdown signal.
"""
import asyncio
import logging
import signal
import sys
from typing import Optional

import structlog
import uvloop
from pydantic import ValidationError

from tgwa.config import Settings, get_settings
from tgwa.clients import ClientFactory
from tgwa.core import InMemoryIdentityMap, MediaGroupDeduplicator
from tgwa.core.relay_engine import RelayEngine

logger = structlog.get_logger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure stdlib logging and the structlog processor chain."""
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, settings.effective_log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    # httpx logs every getUpdates long-poll at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class BridgeApplication:
    """Main application class for the Telegram to WhatsApp bridge."""

    def __init__(self, settings: Settings, client_factory: Optional[ClientFactory] = None):
        self.settings = settings
        self.client_factory = client_factory or ClientFactory(settings)
        self.relay_engine = RelayEngine(
            gateway=self.client_factory.whatsapp_client,
            media_source=self.client_factory.bot_client,
            identity_map=InMemoryIdentityMap(),
            deduplicator=MediaGroupDeduplicator(settings.media_group_window_seconds),
            include_header=settings.relay_header
        )
        self._shutdown_event = asyncio.Event()
        self._running = False

    async def initialize(self) -> None:
        """Initialize all application components."""
        logger.info("Initializing Telegram to WhatsApp bridge...")
        await self.client_factory.initialize(self.relay_engine.handle)
        logger.info("Bridge initialization completed successfully")

    async def start(self) -> None:
        """Start all bridge components."""
        if self._running:
            return

        logger.info("Starting Telegram to WhatsApp bridge...")

        try:
            await self.client_factory.start_all()
            self._running = True
            logger.info(
                "Bridge is running, listening for channel posts",
                **self.client_factory.get_client_status()
            )
        except Exception as e:
            logger.error("Failed to start bridge", error=str(e), exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop all bridge components gracefully."""
        logger.info("Stopping Telegram to WhatsApp bridge...")
        self._running = False

        try:
            await self.client_factory.stop_all()
            logger.info("Bridge stopped", **self.relay_engine.get_statistics())
        except Exception as e:
            logger.error("Error during shutdown", error=str(e), exc_info=True)

    async def run(self) -> None:
        """Run the bridge until shutdown signal."""
        await self.initialize()
        await self.start()

        await self._shutdown_event.wait()

        await self.stop()

    def request_shutdown(self, signame: str = "signal") -> None:
        logger.info(f"Received {signame}, shutting down...")
        self._shutdown_event.set()

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(sig, lambda signum, frame: self.request_shutdown(str(signum)))

    @property
    def is_running(self) -> bool:
        return self._running


async def main() -> None:
    """Main application entry point."""
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Configuration error:\n{e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(settings)

    app = BridgeApplication(settings)
    app.setup_signal_handlers()

    try:
        await app.run()
    except Exception as e:
        logger.error("Bridge exited with error", error=str(e))
        sys.exit(1)


def run() -> None:
    # Use uvloop for better performance on Unix systems
    if sys.platform != 'win32':
        uvloop.install()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bridge terminated by user")


if __name__ == "__main__":
    run()
