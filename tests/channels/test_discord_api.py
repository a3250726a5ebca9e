"""Tests for the Discord REST client and message chunking."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from nookbot.channels.discord_api import MESSAGE_LIMIT, DiscordAPI, chunk_message


class TestChunkMessage:
    def test_short_message_is_one_chunk(self):
        assert chunk_message("hello") == ["hello"]

    def test_splits_on_paragraphs(self):
        first = "a" * 1500
        second = "b" * 1500
        assert chunk_message(f"{first}\n\n{second}") == [first, second]

    def test_splits_on_words_when_no_newlines(self):
        text = " ".join(["word"] * 1000)
        chunks = chunk_message(text)
        assert all(len(c) <= MESSAGE_LIMIT for c in chunks)
        assert " ".join(chunks) == text

    def test_hard_cut_without_separators(self):
        chunks = chunk_message("x" * 4500)
        assert [len(c) for c in chunks] == [2000, 2000, 500]


def make_api(handler) -> DiscordAPI:
    return DiscordAPI("secret", http=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestRequest:
    @pytest.mark.asyncio
    async def test_sends_bot_authorization(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        await make_api(handler).list_roles("g1")
        assert seen[0].headers["Authorization"] == "Bot secret"
        assert seen[0].url.path == "/api/v10/guilds/g1/roles"

    @pytest.mark.asyncio
    async def test_retries_after_429(self):
        responses = [
            httpx.Response(429, json={"retry_after": 0.25}),
            httpx.Response(200, json={"id": "c1"}),
        ]

        def handler(request):
            return responses.pop(0)

        with patch("nookbot.channels.discord_api.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await make_api(handler).create_channel("g1", "new")
        assert result == {"id": "c1"}
        sleep.assert_awaited_once_with(0.25)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        def handler(request):
            return httpx.Response(429, json={"retry_after": 0.1})

        with patch("nookbot.channels.discord_api.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(httpx.HTTPStatusError):
                await make_api(handler).list_channels("g1")

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(204)

        with patch("nookbot.channels.discord_api.asyncio.sleep", new=AsyncMock()):
            assert await make_api(handler).delete_channel("c1") is None
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_errors_raise(self):
        api = make_api(lambda request: httpx.Response(403, json={"message": "Missing Access"}))
        with pytest.raises(httpx.HTTPStatusError):
            await api.list_channels("g1")


@pytest.mark.asyncio
async def test_send_message_replies_on_first_chunk_only():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": str(len(bodies))})

    sent = await make_api(handler).send_message("c1", "x" * 2500, reply_to="m9")
    assert [s["id"] for s in sent] == ["1", "2"]
    assert bodies[0]["message_reference"] == {"message_id": "m9"}
    assert "message_reference" not in bodies[1]


@pytest.mark.asyncio
async def test_close_only_closes_owned_client():
    client = httpx.AsyncClient()
    api = DiscordAPI("t", http=client)
    await api.close()
    assert not client.is_closed
    await client.aclose()

    owned = DiscordAPI("t")
    _ = owned.http
    await owned.close()
    assert owned._http is None
