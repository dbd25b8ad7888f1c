"""Core relay system for the Telegram to WhatsApp bridge."""

from .classifier import classify
from .deduplication import MediaGroupDeduplicator
from .fallback import DEFAULT_FALLBACK_POLICY
from .identity_map import IdentityMap, InMemoryIdentityMap
from .models import (
    DestinationHandle, EditedPost, IdentityRecord, InboundPost, MediaKind,
    MediaRef, NewPost, RelayOutcome, RelayResult, SessionState
)

# RelayEngine lives in tgwa.core.relay_engine; it depends on tgwa.clients,
# which imports this package's models.

__all__ = [
    "classify",
    "MediaGroupDeduplicator",
    "DEFAULT_FALLBACK_POLICY",
    "IdentityMap",
    "InMemoryIdentityMap",
    "DestinationHandle",
    "EditedPost",
    "IdentityRecord",
    "InboundPost",
    "MediaKind",
    "MediaRef",
    "NewPost",
    "RelayOutcome",
    "RelayResult",
    "SessionState",
]
