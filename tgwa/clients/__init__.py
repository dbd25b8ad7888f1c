"""Client management module for the Telegram source and WhatsApp destination."""

from .base import (
    GatewayError, GatewayNotReadyError, GatewayResponseError, MediaResolutionError,
    MediaSource, OutboundGateway
)
from .bot_client import BotClientManager
from .whatsapp_client import WhatsAppClientManager
from .client_factory import ClientFactory

__all__ = [
    "GatewayError",
    "GatewayNotReadyError",
    "GatewayResponseError",
    "MediaResolutionError",
    "MediaSource",
    "OutboundGateway",
    "BotClientManager",
    "WhatsAppClientManager",
    "ClientFactory"
]
