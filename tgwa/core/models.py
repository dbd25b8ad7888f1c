"""
Data model for the relay core.
Inbound posts, relay decisions, destination handles and relay outcomes.
"""
import enum
from dataclasses import dataclass
from typing import Optional, Union


DEFAULT_CHANNEL_TITLE = "Unknown Channel"


class MediaKind(enum.Enum):
    """Attachment kinds the destination can receive."""
    PHOTO = "photo"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"
    VOICE = "voice"
    ANIMATION = "animation"


class RelayOutcome(enum.Enum):
    """Terminal state of one inbound event."""
    SENT = "sent"
    EDITED = "edited"
    SKIPPED = "skipped"
    FAILED = "failed"


class SessionState(enum.Enum):
    """Destination session state gating outbound calls."""
    INITIALIZING = "initializing"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILED = "auth_failed"


@dataclass(frozen=True)
class MediaRef:
    """Opaque reference to an attachment on the source platform."""
    file_id: str
    kind: MediaKind = MediaKind.PHOTO


@dataclass(frozen=True)
class InboundPost:
    """A single channel post or edited channel post."""
    source_message_id: int
    conversation_id: str
    conversation_title: str = DEFAULT_CHANNEL_TITLE
    text: Optional[str] = None
    media_ref: Optional[MediaRef] = None
    media_group_id: Optional[str] = None
    is_edit: bool = False
    is_forwarded: bool = False

    @property
    def key(self) -> tuple:
        # message ids are only unique within one channel
        return (self.conversation_id, self.source_message_id)

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


@dataclass(frozen=True)
class NewPost:
    post: InboundPost


@dataclass(frozen=True)
class EditedPost:
    post: InboundPost


RelayEvent = Union[NewPost, EditedPost]


@dataclass(frozen=True)
class Skip:
    reason: str


@dataclass(frozen=True)
class SendText:
    body: str


@dataclass(frozen=True)
class SendPhoto:
    """Media send; ``url`` is filled in once the media reference is resolved."""
    media_ref: MediaRef
    caption: str
    fallback_body: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class EditText:
    body: str


RelayDecision = Union[Skip, SendText, SendPhoto, EditText]


@dataclass(frozen=True)
class DestinationHandle:
    """Reference to a message sent on the destination platform."""
    chat_id: str
    message_id: str


@dataclass(frozen=True)
class IdentityRecord:
    """Identity map value: where a source post went and whether it carried media."""
    handle: DestinationHandle
    had_media: bool = False


@dataclass
class RelayResult:
    """Result of relaying one inbound event."""
    outcome: RelayOutcome
    reason: Optional[str] = None
    handle: Optional[DestinationHandle] = None
    fallback_used: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome in (RelayOutcome.SENT, RelayOutcome.EDITED)
