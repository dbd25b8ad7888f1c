"""
Main entry point for the Telegram to WhatsApp bridge.

Relays posts from a Telegram channel (read by a Bot API bot that is an admin
of the channel) to a WhatsApp conversation, following edits.
"""
from tgwa.main import run


if __name__ == "__main__":
    run()
