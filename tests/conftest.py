"""Shared fixtures: fake gateways and post builders for relay tests."""

from unittest.mock import AsyncMock

import pytest

from tgwa.clients.base import MediaSource, OutboundGateway
from tgwa.core.deduplication import MediaGroupDeduplicator
from tgwa.core.identity_map import InMemoryIdentityMap
from tgwa.core.models import (
    DestinationHandle, InboundPost, MediaKind, MediaRef, SessionState
)
from tgwa.core.relay_engine import RelayEngine

CHAT_ID = "120363000000000000@g.us"
MEDIA_URL = "https://api.telegram.org/file/bot123:abc/photos/file_1.jpg"


class FakeGateway(OutboundGateway):
    """Outbound gateway backed by AsyncMocks; hands out sequential handles."""

    def __init__(self, ready: bool = True):
        super().__init__()
        if ready:
            self._state = SessionState.READY
        self._counter = 0
        self.send_text_mock = AsyncMock(side_effect=self._next_handle)
        self.send_photo_mock = AsyncMock(side_effect=self._next_handle)
        self.edit_text_mock = AsyncMock(return_value=None)

    def _next_handle(self, *args, **kwargs):
        self._counter += 1
        return DestinationHandle(chat_id=CHAT_ID, message_id=f"true_{CHAT_ID}_{self._counter}")

    async def send_text(self, body):
        self.ensure_ready()
        return await self.send_text_mock(body)

    async def send_photo(self, url, caption, kind=MediaKind.PHOTO):
        self.ensure_ready()
        return await self.send_photo_mock(url, caption, kind)

    async def edit_text(self, handle, body):
        self.ensure_ready()
        return await self.edit_text_mock(handle, body)

    @property
    def call_count(self) -> int:
        return (self.send_text_mock.await_count + self.send_photo_mock.await_count
                + self.edit_text_mock.await_count)


class FakeMediaSource(MediaSource):
    def __init__(self, url: str = MEDIA_URL):
        self.resolve_mock = AsyncMock(return_value=url)

    async def resolve_media_url(self, media_ref):
        return await self.resolve_mock(media_ref)


def make_post(message_id=101, text="Hello", media=None, group=None, edit=False,
              forwarded=False, title="News Channel", channel="-1001234567890"):
    media_ref = None
    if media is not None:
        media_ref = media if isinstance(media, MediaRef) else MediaRef(media, MediaKind.PHOTO)
    return InboundPost(
        source_message_id=message_id,
        conversation_id=channel,
        conversation_title=title,
        text=text,
        media_ref=media_ref,
        media_group_id=group,
        is_edit=edit,
        is_forwarded=forwarded
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def media_source():
    return FakeMediaSource()


@pytest.fixture
def identity_map():
    return InMemoryIdentityMap()


@pytest.fixture
def engine(gateway, media_source, identity_map):
    """Engine without channel headers so bodies equal the post text."""
    return RelayEngine(
        gateway=gateway,
        media_source=media_source,
        identity_map=identity_map,
        deduplicator=MediaGroupDeduplicator(window_seconds=60),
        include_header=False
    )
