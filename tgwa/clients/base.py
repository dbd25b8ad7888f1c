"""
Interfaces between the relay core and the two messaging platforms.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from tgwa.core.models import DestinationHandle, MediaKind, MediaRef, SessionState

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """An outbound call was rejected (network, rate limit, not found...)."""


class GatewayNotReadyError(GatewayError):
    """The destination session is not ready; sends are refused."""

    def __init__(self, state: SessionState):
        super().__init__(f"WhatsApp session not ready ({state.value})")
        self.state = state


class GatewayResponseError(GatewayError):
    """The destination accepted a send but returned no usable message id."""


class MediaResolutionError(Exception):
    """A media reference could not be turned into a fetchable URL."""


class MediaSource(ABC):
    """Inbound side: turns attachment references into downloadable URLs."""

    @abstractmethod
    async def resolve_media_url(self, media_ref: MediaRef) -> str:
        """Return a URL the destination can fetch, or raise MediaResolutionError."""


# Lifecycle event names reported by the destination session.
LIFECYCLE_STATES = {
    "ready": SessionState.READY,
    "authenticated": SessionState.INITIALIZING,
    "auth_failure": SessionState.AUTH_FAILED,
    "disconnected": SessionState.DISCONNECTED,
}


class OutboundGateway(ABC):
    """Outbound side: send, send media and edit on the destination conversation.

    Every call checks the session state first and raises GatewayNotReadyError
    while the session is anything but READY. Implementations resolve the
    destination conversation on each call rather than caching a chat object,
    since the session may reconnect between calls.
    """

    def __init__(self):
        self._state = SessionState.INITIALIZING

    @property
    def state(self) -> SessionState:
        return self._state

    def can_send(self) -> bool:
        return self._state is SessionState.READY

    def ensure_ready(self) -> None:
        if not self.can_send():
            raise GatewayNotReadyError(self._state)

    def on_lifecycle_event(self, event: str, detail: Optional[str] = None) -> SessionState:
        """Apply a ready/authenticated/auth_failure/disconnected event."""
        new_state = LIFECYCLE_STATES.get(event)
        if new_state is None:
            logger.warning(f"Ignoring unknown session event: {event}")
            return self._state

        if new_state is not self._state:
            if new_state is SessionState.AUTH_FAILED:
                logger.error(f"WhatsApp authentication failed: {detail or 'no detail'}")
            elif new_state is SessionState.DISCONNECTED:
                logger.warning(f"WhatsApp session disconnected: {detail or 'no detail'}")
            else:
                logger.info(f"WhatsApp session {event}")
        self._state = new_state
        return new_state

    @abstractmethod
    async def send_text(self, body: str) -> DestinationHandle:
        """Send a text message and return its handle."""

    @abstractmethod
    async def send_photo(self, url: str, caption: str,
                         kind: MediaKind = MediaKind.PHOTO) -> DestinationHandle:
        """Send media fetched from ``url`` with a caption and return its handle."""

    @abstractmethod
    async def edit_text(self, handle: DestinationHandle, body: str) -> None:
        """Replace the text of a previously sent message."""
