"""Unit tests for WhatsAppClientManager against a fake HTTP session."""

import asyncio

import aiohttp
import pytest

from tgwa.clients.base import GatewayError, GatewayNotReadyError, GatewayResponseError
from tgwa.clients.whatsapp_client import (
    WhatsAppClientManager, extract_serialized_id, normalize_chat_id
)
from tgwa.core.models import DestinationHandle, MediaKind, SessionState

BASE_URL = "http://waha:3000"
GROUP = "120363000000000000@g.us"


class FakeResponse:
    def __init__(self, status=200, data=None, text=""):
        self.status = status
        self._data = data
        self._text = text

    async def json(self, content_type=None):
        return self._data

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class FakeSession:
    """Records requests and replays queued responses (or raises queued errors)."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []
        self.closed = False

    def request(self, method, url, json=None, headers=None):
        self.requests.append({"method": method, "url": url, "json": json, "headers": headers})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


def make_client(responses, chat_id=GROUP, ready=True, **kwargs):
    session = FakeSession(responses)
    client = WhatsAppClientManager(BASE_URL, session_name="default", chat_id=chat_id,
                                   http_session=session, **kwargs)
    if ready:
        client.on_lifecycle_event("ready")
    return client, session


class TestHelpers:
    def test_normalize_full_id(self):
        assert normalize_chat_id(GROUP) == GROUP

    def test_normalize_phone_number(self):
        assert normalize_chat_id("+1 (555) 123-4567") == "15551234567@c.us"

    def test_normalize_rejects_garbage(self):
        with pytest.raises(GatewayError):
            normalize_chat_id("my group")

    def test_normalize_rejects_empty(self):
        with pytest.raises(GatewayError):
            normalize_chat_id(None)

    def test_extract_string_id(self):
        assert extract_serialized_id({"id": "true_123@c.us_ABC"}) == "true_123@c.us_ABC"

    def test_extract_object_id(self):
        data = {"id": {"fromMe": True, "_serialized": "true_123@c.us_ABC"}}
        assert extract_serialized_id(data) == "true_123@c.us_ABC"

    def test_extract_key_id(self):
        assert extract_serialized_id({"key": {"id": "ABC"}}) == "ABC"

    def test_extract_missing(self):
        assert extract_serialized_id({"ok": True}) is None
        assert extract_serialized_id(None) is None


class TestSendText:
    @pytest.mark.asyncio
    async def test_send_text(self):
        client, session = make_client([FakeResponse(data={"id": {"_serialized": "true_g_1"}})], api_key="secret")

        handle = await client.send_text("Hello")

        assert handle == DestinationHandle(GROUP, "true_g_1")
        request = session.requests[0]
        assert request["method"] == "POST"
        assert request["url"] == f"{BASE_URL}/api/sendText"
        assert request["json"] == {"session": "default", "chatId": GROUP, "text": "Hello"}
        assert request["headers"]["X-Api-Key"] == "secret"

    @pytest.mark.asyncio
    async def test_refused_when_not_ready(self):
        client, session = make_client([], ready=False)

        with pytest.raises(GatewayNotReadyError):
            await client.send_text("Hello")
        assert session.requests == []

    @pytest.mark.asyncio
    async def test_http_error_raises_gateway_error(self):
        client, _ = make_client([FakeResponse(status=500, text="boom")])

        with pytest.raises(GatewayError, match="500"):
            await client.send_text("Hello")

    @pytest.mark.asyncio
    async def test_connection_error_raises_gateway_error(self):
        client, _ = make_client([aiohttp.ClientConnectionError("refused")])

        with pytest.raises(GatewayError):
            await client.send_text("Hello")

    @pytest.mark.asyncio
    async def test_response_without_id_is_an_error(self):
        client, _ = make_client([FakeResponse(status=201, data={"status": "queued"})])

        with pytest.raises(GatewayResponseError):
            await client.send_text("Hello")

    @pytest.mark.asyncio
    async def test_chat_id_resolved_on_every_call(self):
        client, session = make_client([
            FakeResponse(data={"id": "m1"}),
            FakeResponse(data={"id": "m2"}),
        ], chat_id="15551234567")

        await client.send_text("one")
        client.chat_id = GROUP
        second = await client.send_text("two")

        assert session.requests[0]["json"]["chatId"] == "15551234567@c.us"
        assert session.requests[1]["json"]["chatId"] == GROUP
        assert second.chat_id == GROUP


class TestSendMedia:
    @pytest.mark.asyncio
    async def test_photo(self):
        client, session = make_client([FakeResponse(data={"id": "m1"})])
        url = "https://api.telegram.org/file/bot1:x/photos/file_9.jpg"

        handle = await client.send_photo(url, "caption")

        assert handle.message_id == "m1"
        request = session.requests[0]
        assert request["url"] == f"{BASE_URL}/api/sendImage"
        assert request["json"]["file"] == {"url": url, "mimetype": "image/jpeg"}
        assert request["json"]["caption"] == "caption"

    @pytest.mark.asyncio
    async def test_photo_without_caption_omits_field(self):
        client, session = make_client([FakeResponse(data={"id": "m1"})])

        await client.send_photo("https://files.example/a.png", "")

        assert "caption" not in session.requests[0]["json"]

    @pytest.mark.asyncio
    async def test_document_includes_filename(self):
        client, session = make_client([FakeResponse(data={"id": "m1"})])

        await client.send_photo("https://files.example/docs/report.pdf", "cap", MediaKind.DOCUMENT)

        request = session.requests[0]
        assert request["url"] == f"{BASE_URL}/api/sendFile"
        assert request["json"]["file"]["filename"] == "report.pdf"
        assert request["json"]["file"]["mimetype"] == "application/pdf"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind,endpoint", [
        (MediaKind.VIDEO, "/api/sendVideo"),
        (MediaKind.ANIMATION, "/api/sendVideo"),
        (MediaKind.VOICE, "/api/sendVoice"),
        (MediaKind.AUDIO, "/api/sendFile"),
    ])
    async def test_endpoint_per_kind(self, kind, endpoint):
        client, session = make_client([FakeResponse(data={"id": "m1"})])

        await client.send_photo("https://files.example/f", "cap", kind)

        assert session.requests[0]["url"] == f"{BASE_URL}{endpoint}"

    @pytest.mark.asyncio
    async def test_animation_sent_as_gif(self):
        client, session = make_client([
            FakeResponse(data={"id": "m1"}),
            FakeResponse(data={"id": "m2"}),
        ])

        await client.send_photo("https://files.example/loop.mp4", "cap", MediaKind.ANIMATION)
        await client.send_photo("https://files.example/clip.mp4", "cap", MediaKind.VIDEO)

        assert session.requests[0]["json"]["sendVideoAsGif"] is True
        assert session.requests[0]["json"]["file"]["mimetype"] == "video/mp4"
        assert "sendVideoAsGif" not in session.requests[1]["json"]


class TestEditText:
    @pytest.mark.asyncio
    async def test_edit(self):
        client, session = make_client([FakeResponse(status=204)])

        await client.edit_text(DestinationHandle(GROUP, "true_120363@g.us_ABC"), "new body")

        request = session.requests[0]
        assert request["method"] == "PUT"
        assert request["url"] == (
            f"{BASE_URL}/api/default/chats/120363000000000000%40g.us/messages/true_120363%40g.us_ABC"
        )
        assert request["json"] == {"text": "new body"}

    @pytest.mark.asyncio
    async def test_edit_not_found(self):
        client, _ = make_client([FakeResponse(status=404, text="not found")])

        with pytest.raises(GatewayError):
            await client.edit_text(DestinationHandle(GROUP, "x"), "body")


class TestSessionState:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,expected", [
        ("WORKING", SessionState.READY),
        ("FAILED", SessionState.AUTH_FAILED),
        ("STOPPED", SessionState.DISCONNECTED),
        ("SCAN_QR_CODE", SessionState.INITIALIZING),
        ("STARTING", SessionState.INITIALIZING),
    ])
    async def test_status_mapping(self, status, expected):
        client, session = make_client([FakeResponse(data={"name": "default", "status": status})], ready=False)

        assert await client.refresh_state() is expected
        assert session.requests[0]["url"] == f"{BASE_URL}/api/sessions/default"

    @pytest.mark.asyncio
    async def test_unreachable_api_means_disconnected(self):
        client, _ = make_client([aiohttp.ClientConnectionError("down")])

        assert await client.refresh_state() is SessionState.DISCONNECTED
        assert client.can_send() is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [["unexpected"], "WORKING", None])
    async def test_non_object_status_body_keeps_initializing(self, body):
        client, _ = make_client([FakeResponse(data=body)], ready=False)

        assert await client.refresh_state() is SessionState.INITIALIZING

    @pytest.mark.asyncio
    async def test_polling_survives_bad_responses(self):
        client, session = make_client(
            [FakeResponse(data=["unexpected"]), RuntimeError("boom")]
            + [FakeResponse(data={"status": "WORKING"})] * 50,
            ready=False, poll_interval=0.01
        )

        await client.start()
        assert client.state is SessionState.INITIALIZING
        for _ in range(100):
            if client.state is SessionState.READY:
                break
            await asyncio.sleep(0.01)
        await client.stop()

        assert client.state is SessionState.READY
        assert len(session.requests) >= 3

    @pytest.mark.asyncio
    async def test_lifecycle_events(self):
        client, _ = make_client([], ready=False)

        assert client.on_lifecycle_event("authenticated") is SessionState.INITIALIZING
        assert client.on_lifecycle_event("ready") is SessionState.READY
        assert client.on_lifecycle_event("disconnected") is SessionState.DISCONNECTED
        assert client.on_lifecycle_event("bogus") is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        client, session = make_client(
            [FakeResponse(data={"status": "WORKING"})] * 2, ready=False, poll_interval=3600
        )

        await client.start()
        assert client.is_running
        assert client.state is SessionState.READY

        await client.stop()
        assert not client.is_running
        # Injected sessions belong to the caller
        assert session.closed is False


class TestInviteCode:
    @pytest.mark.asyncio
    async def test_resolve_invite_code(self):
        client, session = make_client([FakeResponse(data={"id": GROUP})], chat_id=None)

        assert await client.resolve_invite_code("AbCdEf123") == GROUP
        assert client.chat_id == GROUP
        assert session.requests[0]["url"] == f"{BASE_URL}/api/default/groups/join"
        assert session.requests[0]["json"] == {"code": "AbCdEf123"}

    @pytest.mark.asyncio
    async def test_unresolvable_invite_code(self):
        client, _ = make_client([FakeResponse(data={})], chat_id=None)

        with pytest.raises(GatewayError):
            await client.resolve_invite_code("bad")
