"""
Client factory for managing the Telegram and WhatsApp clients.
Builds both from settings and starts/stops them in bridge order.
"""
import logging
from typing import Any, Dict, Optional

from tgwa.config import Settings
from .bot_client import BotClientManager, EventHandler
from .whatsapp_client import WhatsAppClientManager

logger = logging.getLogger(__name__)


class ClientFactory:
    """Factory for the source (Telegram) and destination (WhatsApp) clients."""

    def __init__(self, settings: Settings,
                 bot_client: Optional[BotClientManager] = None,
                 whatsapp_client: Optional[WhatsAppClientManager] = None):
        self.settings = settings
        self.bot_client = bot_client or BotClientManager(
            settings.bot_token,
            channel_id=settings.telegram_channel_id
        )
        self.whatsapp_client = whatsapp_client or WhatsAppClientManager(
            settings.waha_base_url,
            session_name=settings.waha_session,
            chat_id=settings.whatsapp_chat_id,
            api_key=settings.waha_api_key,
            poll_interval=settings.session_poll_interval,
            request_timeout=settings.request_timeout
        )
        self._initialized = False

    async def initialize(self, on_event: EventHandler) -> None:
        """Wire the relay handler into the bot client and build it."""
        if self._initialized:
            return

        logger.info("Initializing client factory...")
        self.bot_client.on_event = on_event
        await self.bot_client.initialize()

        self._initialized = True
        logger.info("Client factory initialized successfully")

    async def start_all(self) -> None:
        """Start WhatsApp first so the destination is watched before posts arrive."""
        logger.info("Starting all clients...")

        await self.whatsapp_client.start()
        await self._resolve_destination()
        await self.bot_client.start()

        logger.info("All clients started successfully")

    async def _resolve_destination(self) -> None:
        if self.whatsapp_client.chat_id:
            return
        invite_code = self.settings.whatsapp_invite_code
        if not invite_code:
            raise RuntimeError("No WhatsApp destination configured")
        chat_id = await self.whatsapp_client.resolve_invite_code(invite_code)
        logger.info(f"Set WHATSAPP_CHAT_ID={chat_id} to skip invite resolution on the next start")

    async def stop_all(self) -> None:
        """Stop the source first; in-flight sends finish on their own."""
        logger.info("Stopping all clients...")

        await self.bot_client.stop()
        await self.whatsapp_client.stop()

        logger.info("All clients stopped")

    def get_client_status(self) -> Dict[str, Any]:
        """Get status of both clients."""
        return {
            "bot_client": {
                "running": self.bot_client.is_running,
                "initialized": self.bot_client.application is not None,
                "channel_filter": self.bot_client.channel_id
            },
            "whatsapp_client": {
                "running": self.whatsapp_client.is_running,
                "session_state": self.whatsapp_client.state.value,
                "chat_id": self.whatsapp_client.chat_id
            },
            "factory_initialized": self._initialized
        }
