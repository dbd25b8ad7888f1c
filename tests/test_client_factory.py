"""ClientFactory wiring and startup order tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tgwa.clients.client_factory import ClientFactory
from tgwa.config import Settings
from tgwa.core.models import SessionState


def make_settings(**overrides):
    values = {"bot_token": "123:abc", "whatsapp_chat_id": "120363000000000000@g.us"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_factory(settings=None, chat_id="120363000000000000@g.us"):
    calls = []
    bot = MagicMock()
    bot.initialize = AsyncMock()
    bot.start = AsyncMock(side_effect=lambda: calls.append("bot.start"))
    bot.stop = AsyncMock(side_effect=lambda: calls.append("bot.stop"))
    whatsapp = MagicMock()
    whatsapp.chat_id = chat_id
    whatsapp.state = SessionState.READY
    whatsapp.start = AsyncMock(side_effect=lambda: calls.append("whatsapp.start"))
    whatsapp.stop = AsyncMock(side_effect=lambda: calls.append("whatsapp.stop"))
    whatsapp.resolve_invite_code = AsyncMock(return_value="120363999@g.us")
    factory = ClientFactory(settings or make_settings(), bot_client=bot, whatsapp_client=whatsapp)
    return factory, calls


class TestClientFactory:
    def test_builds_clients_from_settings(self):
        settings = make_settings(telegram_channel_id="-100777", waha_base_url="http://waha:3000",
                                 waha_api_key="k")
        factory = ClientFactory(settings)

        assert factory.bot_client.channel_id == "-100777"
        assert factory.whatsapp_client.base_url == "http://waha:3000"
        assert factory.whatsapp_client.api_key == "k"
        assert factory.whatsapp_client.chat_id == "120363000000000000@g.us"

    @pytest.mark.asyncio
    async def test_initialize_attaches_handler_once(self):
        factory, _ = make_factory()
        handler = AsyncMock()

        await factory.initialize(handler)
        await factory.initialize(handler)

        assert factory.bot_client.on_event is handler
        factory.bot_client.initialize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_and_stop_order(self):
        factory, calls = make_factory()

        await factory.start_all()
        await factory.stop_all()

        assert calls == ["whatsapp.start", "bot.start", "bot.stop", "whatsapp.stop"]
        factory.whatsapp_client.resolve_invite_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invite_code_resolved_when_no_chat_id(self):
        settings = make_settings(whatsapp_chat_id=None, whatsapp_invite_code="AbC")
        factory, _ = make_factory(settings, chat_id=None)

        await factory.start_all()

        factory.whatsapp_client.resolve_invite_code.assert_awaited_once_with("AbC")

    @pytest.mark.asyncio
    async def test_status(self):
        factory, _ = make_factory()
        status = factory.get_client_status()

        assert status["whatsapp_client"]["session_state"] == "ready"
        assert status["factory_initialized"] is False
