"""Telegram channel to WhatsApp relay bridge."""

__version__ = "1.0.0"
