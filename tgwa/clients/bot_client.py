"""
Bot API client manager using python-telegram-bot v20+.
Receives channel posts and edits, turns them into relay events and resolves
attachment references into downloadable file URLs.
"""
import logging
from typing import Awaitable, Callable, Optional

from telegram import Message, Update
from telegram.error import RetryAfter, TelegramError, TimedOut
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from tgwa.core.models import (
    DEFAULT_CHANNEL_TITLE, EditedPost, InboundPost, MediaKind, MediaRef, NewPost, RelayEvent
)
from .base import MediaResolutionError, MediaSource

logger = logging.getLogger(__name__)

EventHandler = Callable[[RelayEvent], Awaitable[object]]

ALLOWED_UPDATES = ["channel_post", "edited_channel_post"]

FORWARD_MARKERS = ("forward_origin", "forward_from", "forward_from_chat")


def extract_media_ref(message: Message) -> Optional[MediaRef]:
    """Pick the relayable attachment of a message, if any."""
    if message.photo:
        # Sizes are ordered smallest to largest.
        return MediaRef(message.photo[-1].file_id, MediaKind.PHOTO)
    if message.video:
        return MediaRef(message.video.file_id, MediaKind.VIDEO)
    if message.animation:
        return MediaRef(message.animation.file_id, MediaKind.ANIMATION)
    if message.document:
        return MediaRef(message.document.file_id, MediaKind.DOCUMENT)
    if message.audio:
        return MediaRef(message.audio.file_id, MediaKind.AUDIO)
    if message.voice:
        return MediaRef(message.voice.file_id, MediaKind.VOICE)
    if message.video_note:
        return MediaRef(message.video_note.file_id, MediaKind.VIDEO)
    return None


def is_forwarded(message: Message) -> bool:
    """Forwarded posts carry a forward origin (or the pre-7.0 forward fields)."""
    for marker in FORWARD_MARKERS:
        if getattr(message, marker, None):
            return True
        if message.api_kwargs and message.api_kwargs.get(marker):
            return True
    return False


def post_from_message(message: Message, is_edit: bool = False) -> InboundPost:
    """Convert a Telegram channel message into an InboundPost."""
    chat = message.chat
    return InboundPost(
        source_message_id=message.message_id,
        conversation_id=str(chat.id),
        conversation_title=chat.title or DEFAULT_CHANNEL_TITLE,
        text=message.text or message.caption,
        media_ref=extract_media_ref(message),
        media_group_id=message.media_group_id,
        is_edit=is_edit,
        is_forwarded=is_forwarded(message)
    )


class BotClientManager(MediaSource):
    """Manages the Telegram Bot API client that listens to the source channel."""

    def __init__(self, bot_token: str, on_event: Optional[EventHandler] = None,
                 channel_id: Optional[str] = None):
        self.bot_token = bot_token
        self.on_event = on_event
        self.channel_id = channel_id
        self.application: Optional[Application] = None
        self._is_running = False

    async def initialize(self) -> None:
        """Initialize the bot application and register handlers."""
        logger.info("Initializing Bot API client...")

        # Updates are handled concurrently; the relay engine serialises per message.
        self.application = (
            Application.builder()
            .token(self.bot_token)
            .concurrent_updates(True)
            .build()
        )
        self._register_handlers()

        logger.info("Bot API client initialized successfully")

    def _register_handlers(self) -> None:
        app = self.application
        app.add_handler(MessageHandler(filters.UpdateType.CHANNEL_POST, self._channel_post_handler))
        app.add_handler(MessageHandler(filters.UpdateType.EDITED_CHANNEL_POST, self._edited_channel_post_handler))
        app.add_error_handler(self._error_handler)

    def should_process(self, channel_id: str) -> bool:
        """Apply the optional source channel filter."""
        if not self.channel_id:
            return True
        return str(channel_id) == str(self.channel_id)

    async def _channel_post_handler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.channel_post:
            await self.dispatch_message(update.channel_post, is_edit=False)

    async def _edited_channel_post_handler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.edited_channel_post:
            await self.dispatch_message(update.edited_channel_post, is_edit=True)

    async def dispatch_message(self, message: Message, is_edit: bool) -> None:
        """Filter by channel and hand the post to the relay engine."""
        if not self.should_process(str(message.chat.id)):
            logger.debug(f"Ignoring post from unmonitored channel {message.chat.id}")
            return
        if self.on_event is None:
            logger.warning("No relay handler attached, dropping channel post")
            return

        post = post_from_message(message, is_edit=is_edit)
        event = EditedPost(post) if is_edit else NewPost(post)
        await self.on_event(event)

    async def _error_handler(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle errors in bot operations."""
        if isinstance(context.error, RetryAfter):
            logger.warning(f"Rate limited by Telegram: retry after {context.error.retry_after} seconds")
        elif isinstance(context.error, TimedOut):
            logger.warning("Request timed out")
        else:
            logger.error(f"Bot error: {context.error}", exc_info=context.error)

    async def resolve_media_url(self, media_ref: MediaRef) -> str:
        """Get a download URL for a file through getFile."""
        if not self.application:
            raise MediaResolutionError("Bot not initialized")

        try:
            telegram_file = await self.application.bot.get_file(media_ref.file_id)
        except TelegramError as e:
            # Files above the Bot API download limit fail here.
            raise MediaResolutionError(f"Failed to get file link: {e}") from e

        if not telegram_file.file_path:
            raise MediaResolutionError(f"No file path for {media_ref.kind.value} {media_ref.file_id}")
        return telegram_file.file_path

    async def start(self) -> None:
        """Start the bot application and begin polling for channel updates."""
        if not self.application:
            await self.initialize()

        logger.info("Starting Bot API client...")
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling(allowed_updates=ALLOWED_UPDATES)
        self._is_running = True
        logger.info("Bot API client started successfully")

    async def stop(self) -> None:
        """Stop the bot application."""
        if self.application and self._is_running:
            logger.info("Stopping Bot API client...")
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()
            self._is_running = False
            logger.info("Bot API client stopped")

    @property
    def is_running(self) -> bool:
        """Check if bot is currently running."""
        return self._is_running
