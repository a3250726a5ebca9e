"""Tests for DiscordChannel gateway dispatch and message handling."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from nookbot.bus.events import OutboundMessage
from nookbot.bus.queue import MessageBus
from nookbot.channels.discord import DiscordChannel
from nookbot.config.schema import DiscordConfig
from nookbot.core.ratelimit import PLATFORM, RateLimiters, TokenBucket

BOT_ID = "999"


def make_channel(**config) -> DiscordChannel:
    api = MagicMock()
    api.send_message = AsyncMock(return_value=[{"id": "m"}])
    api.close = AsyncMock()
    channel = DiscordChannel(DiscordConfig(token="t", **config), MessageBus(), api=api)
    channel._bot_user_id = BOT_ID
    channel._ws = MagicMock()
    channel._ws.send = AsyncMock()
    return channel


def message_create(**overrides) -> dict:
    payload = {
        "id": "1234",
        "channel_id": "c1",
        "guild_id": "g1",
        "content": f"<@{BOT_ID}> list the channels",
        "author": {"id": "42", "username": "alice"},
        "mentions": [{"id": BOT_ID}],
    }
    payload.update(overrides)
    return {"op": 0, "t": "MESSAGE_CREATE", "s": 5, "d": payload}


class TestMessageCreate:
    @pytest.mark.asyncio
    async def test_becomes_inbound_message(self):
        channel = make_channel()
        assert await channel._dispatch(message_create()) is True

        msg = channel.bus.inbound.get_nowait()
        assert msg.event_id == "1234"
        assert msg.scope_id == "g1"
        assert msg.actor_id == "discord:42"
        assert msg.content == "list the channels"
        assert msg.metadata["mentions_bot"] is True
        assert msg.metadata["author_name"] == "alice"
        assert channel._seq == 5

    @pytest.mark.asyncio
    async def test_redelivery_keeps_event_id(self):
        channel = make_channel()
        await channel._dispatch(message_create())
        await channel._dispatch(message_create())
        ids = [channel.bus.inbound.get_nowait().event_id for _ in range(2)]
        assert ids == ["1234", "1234"]

    @pytest.mark.asyncio
    async def test_reply_to_bot_detected(self):
        channel = make_channel()
        await channel._dispatch(message_create(
            content="thanks!", mentions=[], referenced_message={"author": {"id": BOT_ID}},
        ))
        msg = channel.bus.inbound.get_nowait()
        assert msg.metadata["is_reply_to_bot"] is True
        assert msg.metadata["mentions_bot"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"author": {"id": "5", "bot": True}},
        {"guild_id": None},
        {"id": ""},
    ])
    async def test_dropped(self, overrides):
        channel = make_channel()
        await channel._dispatch(message_create(**overrides))
        assert channel.bus.inbound_size == 0

    @pytest.mark.asyncio
    async def test_guild_allow_list(self):
        channel = make_channel(allowed_guild_ids=["other"])
        await channel._dispatch(message_create())
        assert channel.bus.inbound_size == 0

    @pytest.mark.asyncio
    async def test_sender_allow_list(self):
        channel = make_channel(allow_from=["7"])
        await channel._dispatch(message_create())
        assert channel.bus.inbound_size == 0


class TestGatewayOps:
    @pytest.mark.asyncio
    async def test_ready_stores_session(self):
        channel = make_channel()
        await channel._dispatch({"op": 0, "t": "READY", "s": 1, "d": {
            "session_id": "sess", "resume_gateway_url": "wss://resume", "user": {"id": "777"},
        }})
        assert channel._session_id == "sess"
        assert channel._resume_url == "wss://resume"
        assert channel._bot_user_id == "777"

    @pytest.mark.asyncio
    async def test_hello_identifies_then_resumes(self):
        channel = make_channel()
        channel._start_heartbeat = AsyncMock()
        await channel._dispatch({"op": 10, "d": {"heartbeat_interval": 41250}})
        channel._start_heartbeat.assert_awaited_once_with(41.25)
        assert json.loads(channel._ws.send.await_args.args[0])["op"] == 2

        channel._session_id = "sess"
        channel._seq = 3
        await channel._dispatch({"op": 10, "d": {"heartbeat_interval": 41250}})
        resume = json.loads(channel._ws.send.await_args.args[0])
        assert resume == {"op": 6, "d": {"token": "t", "session_id": "sess", "seq": 3}}

    @pytest.mark.asyncio
    async def test_reconnect_keeps_session(self):
        channel = make_channel()
        channel._session_id = "sess"
        assert await channel._dispatch({"op": 7, "d": None}) is False
        assert channel._session_id == "sess"

    @pytest.mark.asyncio
    async def test_invalid_session_not_resumable_clears_state(self):
        channel = make_channel()
        channel._session_id, channel._seq = "sess", 9
        assert await channel._dispatch({"op": 9, "d": False}) is False
        assert channel._session_id is None
        assert channel._seq is None

    @pytest.mark.asyncio
    async def test_heartbeat_request(self):
        channel = make_channel()
        channel._seq = 12
        await channel._dispatch({"op": 1, "d": None})
        assert json.loads(channel._ws.send.await_args.args[0]) == {"op": 1, "d": 12}


@pytest.mark.asyncio
async def test_send_takes_a_platform_token_and_replies():
    limiters = RateLimiters({PLATFORM: TokenBucket(5, 1, name=PLATFORM)})
    channel = make_channel()
    channel.limiters = limiters
    await channel.send(OutboundMessage(channel="discord", chat_id="c1", content="hi", reply_to="1234"))
    channel.api.send_message.assert_awaited_once_with("c1", "hi", reply_to="1234")
    assert limiters.get(PLATFORM).available_tokens == 4


@pytest.mark.asyncio
async def test_start_without_token_returns():
    channel = DiscordChannel(DiscordConfig(token=""), MessageBus(), api=MagicMock())
    await channel.start()
    assert not channel.is_running
