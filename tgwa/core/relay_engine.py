"""
Core relay engine that turns channel events into WhatsApp sends and edits.
Consults the identity map and media-group window, applies the fallback policy
and reports exactly one outcome per event.
"""
import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, Dict, Hashable, Optional

import structlog

from tgwa.clients.base import (
    GatewayError, GatewayNotReadyError, GatewayResponseError, MediaResolutionError,
    MediaSource, OutboundGateway
)
from tgwa.core.classifier import classify
from tgwa.core.deduplication import MediaGroupDeduplicator
from tgwa.core.fallback import fallbacks_for
from tgwa.core.identity_map import IdentityMap, InMemoryIdentityMap
from tgwa.core.models import (
    DestinationHandle, EditedPost, EditText, IdentityRecord, InboundPost,
    RelayDecision, RelayEvent, RelayOutcome, RelayResult, SendPhoto, SendText, Skip
)

logger = structlog.get_logger(__name__)

SKIP_DUPLICATE_GROUP_ITEM = "duplicate media group item"


class RelayEngine:
    """Relays one inbound event at a time to the outbound gateway.

    Events for different source messages may have outbound calls in flight
    at the same time; events for the same source message are serialised so
    an edit never overtakes the send it is meant to correct.
    """

    def __init__(self, gateway: OutboundGateway, media_source: MediaSource,
                 identity_map: Optional[IdentityMap] = None,
                 deduplicator: Optional[MediaGroupDeduplicator] = None,
                 include_header: bool = True,
                 fallback_policy: Optional[Dict] = None):
        self.gateway = gateway
        self.media_source = media_source
        self.identity_map = identity_map if identity_map is not None else InMemoryIdentityMap()
        self.deduplicator = deduplicator if deduplicator is not None else MediaGroupDeduplicator()
        self.include_header = include_header
        self.fallback_policy = fallback_policy
        self._key_locks: Dict[Hashable, asyncio.Lock] = {}
        self._key_waiters: Counter = Counter()
        self._outcomes: Counter = Counter()
        self._fallbacks = 0

    async def handle(self, event: RelayEvent) -> RelayResult:
        """Relay a new or edited channel post. Never raises for relay failures."""
        post = event.post
        is_edit = isinstance(event, EditedPost)
        if post.is_edit != is_edit:
            post = replace(post, is_edit=is_edit)

        async with self._key_lock(post.key):
            try:
                result = await self._relay(post)
            except Exception as e:
                logger.error(
                    "Unexpected error relaying post",
                    source_message_id=post.source_message_id,
                    conversation_id=post.conversation_id,
                    error=str(e),
                    exc_info=True
                )
                self._outcomes[RelayOutcome.FAILED] += 1
                return RelayResult(RelayOutcome.FAILED, reason=f"unexpected error: {e}")

        self._outcomes[result.outcome] += 1
        if result.fallback_used:
            self._fallbacks += 1
        self._log_result(post, result)
        return result

    async def _relay(self, post: InboundPost) -> RelayResult:
        record = await self.identity_map.get(post.key) if post.is_edit else None
        decision = classify(post, record, include_header=self.include_header)
        if isinstance(decision, Skip):
            return RelayResult(RelayOutcome.SKIPPED, reason=decision.reason)

        if isinstance(decision, EditText) and record is None:
            # Nothing to edit: relay exactly as a fresh post would be.
            post = replace(post, is_edit=False)
            decision = classify(post, include_header=self.include_header)
            if isinstance(decision, Skip):
                return RelayResult(RelayOutcome.SKIPPED, reason=decision.reason)

        if not post.is_edit and not self.deduplicator.try_admit(post.media_group_id):
            return RelayResult(RelayOutcome.SKIPPED, reason=SKIP_DUPLICATE_GROUP_ITEM)

        fallback_used = False
        if isinstance(decision, SendPhoto):
            try:
                url = await self.media_source.resolve_media_url(decision.media_ref)
                decision = replace(decision, url=url)
            except MediaResolutionError as e:
                if decision.fallback_body is None:
                    return RelayResult(RelayOutcome.FAILED, reason=f"media resolution failed: {e}")
                decision = SendText(decision.fallback_body)
                fallback_used = True

        return await self._dispatch_with_fallbacks(post, decision, record, fallback_used)

    async def _dispatch_with_fallbacks(self, post: InboundPost, decision: RelayDecision,
                                       record: Optional[IdentityRecord],
                                       fallback_used: bool) -> RelayResult:
        while True:
            try:
                return await self._dispatch(post, decision, record, fallback_used)
            except GatewayNotReadyError as e:
                return RelayResult(RelayOutcome.FAILED, reason=str(e), fallback_used=fallback_used)
            except GatewayError as e:
                next_decision = None
                for strategy in fallbacks_for(decision, self.fallback_policy):
                    next_decision = strategy(decision)
                    if next_decision is not None:
                        break
                if next_decision is None:
                    return RelayResult(RelayOutcome.FAILED, reason=str(e), fallback_used=fallback_used)
                decision = next_decision
                fallback_used = True

    async def _dispatch(self, post: InboundPost, decision: RelayDecision,
                        record: Optional[IdentityRecord], fallback_used: bool) -> RelayResult:
        if isinstance(decision, EditText):
            await self.gateway.edit_text(record.handle, decision.body)
            # Re-put after a successful edit; the handle is unchanged.
            await self.identity_map.put(post.key, record)
            return RelayResult(RelayOutcome.EDITED, handle=record.handle, fallback_used=fallback_used)

        try:
            if isinstance(decision, SendPhoto):
                handle = await self.gateway.send_photo(decision.url, decision.caption, decision.media_ref.kind)
            elif isinstance(decision, SendText):
                handle = await self.gateway.send_text(decision.body)
            else:
                raise TypeError(f"Cannot dispatch {decision!r}")
        except GatewayResponseError as e:
            # Delivered, so no fallback; later edits of this post cannot be routed.
            return RelayResult(RelayOutcome.SENT, reason=str(e), fallback_used=fallback_used)

        had_media = record.had_media if record is not None else post.media_ref is not None
        await self._record_send(post, handle, had_media)
        return RelayResult(RelayOutcome.SENT, handle=handle, fallback_used=fallback_used)

    async def _record_send(self, post: InboundPost, handle: DestinationHandle, had_media: bool) -> None:
        await self.identity_map.put(post.key, IdentityRecord(handle=handle, had_media=had_media))

    @asynccontextmanager
    async def _key_lock(self, key: Hashable):
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        self._key_waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._key_waiters[key] -= 1
            if self._key_waiters[key] <= 0:
                del self._key_waiters[key]
                self._key_locks.pop(key, None)

    def _log_result(self, post: InboundPost, result: RelayResult) -> None:
        fields = {
            'source_message_id': post.source_message_id,
            'conversation_id': post.conversation_id,
            'is_edit': post.is_edit,
            'outcome': result.outcome.value,
        }
        if result.reason:
            fields['reason'] = result.reason
        if result.handle is not None:
            fields['destination_message_id'] = result.handle.message_id

        if result.outcome is RelayOutcome.SKIPPED:
            logger.debug("Post skipped", **fields)
        elif result.outcome is RelayOutcome.FAILED:
            logger.error("Relay failed", fallback_used=result.fallback_used, **fields)
        elif result.fallback_used:
            logger.warning("Relayed with fallback", **fields)
        elif result.handle is None:
            logger.warning("Relayed without destination handle", **fields)
        else:
            logger.info("Relayed post", channel=post.conversation_title, **fields)

    def get_statistics(self) -> Dict[str, Any]:
        """Get relay statistics."""
        return {
            'sent': self._outcomes.get(RelayOutcome.SENT, 0),
            'edited': self._outcomes.get(RelayOutcome.EDITED, 0),
            'skipped': self._outcomes.get(RelayOutcome.SKIPPED, 0),
            'failed': self._outcomes.get(RelayOutcome.FAILED, 0),
            'fallbacks': self._fallbacks,
            'in_flight_keys': len(self._key_locks),
            'media_groups': self.deduplicator.get_statistics(),
            'gateway_state': self.gateway.state.value
        }
