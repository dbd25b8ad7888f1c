"""
Media-group deduplication for preventing one album from being relayed once per item.
Claims a media group id for a fixed window after its first item is seen.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0


class MediaGroupDeduplicator:
    """Time-windowed set of claimed media group ids.

    Only the first item of a media group is relayed. Membership is advisory:
    an item arriving after the window has expired is treated as a new group,
    which at worst produces one extra message on the destination.
    """

    def __init__(self, window_seconds: float = DEFAULT_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = window_seconds
        self._clock = clock
        self._claims: Dict[str, float] = {}
        self._admitted = 0
        self._rejected = 0

    def try_admit(self, media_group_id: Optional[str]) -> bool:
        """Return True if this item should be relayed."""
        if not media_group_id:
            return True

        now = self._clock()
        expires_at = self._claims.get(media_group_id)
        if expires_at is not None and now < expires_at:
            self._rejected += 1
            return False

        expires_at = now + self.window_seconds
        self._claims[media_group_id] = expires_at
        self._admitted += 1
        self._schedule_expiry(media_group_id, expires_at)
        return True

    def _schedule_expiry(self, media_group_id: str, expires_at: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync callers); expired claims are still ignored lazily.
            return
        loop.call_later(self.window_seconds, self._expire, media_group_id, expires_at)

    def _expire(self, media_group_id: str, expires_at: float) -> None:
        # A newer claim for the same id owns its own timer.
        if self._claims.get(media_group_id) == expires_at:
            del self._claims[media_group_id]

    def cleanup_expired_entries(self) -> int:
        """Drop claims whose window has passed."""
        now = self._clock()
        expired = [gid for gid, expires_at in self._claims.items() if expires_at <= now]
        for gid in expired:
            del self._claims[gid]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired media group claims")
        return len(expired)

    def is_claimed(self, media_group_id: str) -> bool:
        expires_at = self._claims.get(media_group_id)
        return expires_at is not None and self._clock() < expires_at

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'active_claims': sum(1 for gid in self._claims if self.is_claimed(gid)),
            'admitted': self._admitted,
            'rejected': self._rejected,
            'window_seconds': self.window_seconds
        }
