"""Thin Discord REST client shared by the channel and the Discord tools."""

import asyncio
from typing import Any

import httpx
from loguru import logger

DISCORD_API_BASE = "https://discord.com/api/v10"
MESSAGE_LIMIT = 2000
MAX_ATTEMPTS = 3

# Discord channel type ids
CHANNEL_TYPES: dict[str, int] = {
    "text": 0,
    "voice": 2,
    "category": 4,
    "announcement": 5,
    "stage": 13,
    "forum": 15,
}


def chunk_message(content: str, limit: int = MESSAGE_LIMIT) -> list[str]:
    """Split a message into chunks that fit Discord's character limit.

    Splits on paragraph boundaries first, then lines, sentences and words,
    and hard-cuts only when nothing else fits.
    """
    if len(content) <= limit:
        return [content]

    chunks: list[str] = []
    remaining = content

    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break

        for sep, keep in (("\n\n", 0), ("\n", 0), (". ", 1), (" ", 0)):
            cut = remaining.rfind(sep, 0, limit)
            if cut > limit // 4:
                cut += keep
                chunks.append(remaining[:cut].rstrip())
                remaining = remaining[cut:].lstrip()
                break
        else:
            chunks.append(remaining[:limit])
            remaining = remaining[limit:]

    return [c for c in chunks if c.strip()]


class DiscordAPI:
    """
    Discord REST calls with 429 handling.

    A 429 response is retried after the ``retry_after`` Discord reports;
    other failures are retried with a short pause, and the last one is raised.
    """

    def __init__(self, token: str, http: httpx.AsyncClient | None = None, base_url: str = DISCORD_API_BASE):
        self.token = token
        self.base_url = base_url
        self._http = http
        self._owns_http = http is None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30.0)
        return self._http

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def request(self, method: str, path: str, json: dict[str, Any] | None = None) -> Any:
        """Make one API call. Returns the decoded JSON body (None for 204)."""
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bot {self.token}"}

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = await self.http.request(method, url, headers=headers, json=json)
            except httpx.TransportError as e:
                if attempt == MAX_ATTEMPTS:
                    raise
                logger.warning(f"Discord {method} {path} failed ({e}), retrying")
                await asyncio.sleep(1)
                continue

            if response.status_code == 429 and attempt < MAX_ATTEMPTS:
                retry_after = float(response.json().get("retry_after", 1.0))
                logger.warning(f"Discord rate limited on {path}, retrying in {retry_after}s")
                await asyncio.sleep(retry_after)
                continue

            response.raise_for_status()
            if response.status_code == 204 or not response.content:
                return None
            return response.json()

        return None

    # ── Messages ──────────────────────────────────────────────────────

    async def send_message(self, channel_id: str, content: str, reply_to: str | None = None) -> list[dict]:
        """Send content, split over several messages if needed. Only the first chunk replies."""
        sent = []
        for i, chunk in enumerate(chunk_message(content)):
            payload: dict[str, Any] = {"content": chunk}
            if i == 0 and reply_to:
                payload["message_reference"] = {"message_id": reply_to}
                payload["allowed_mentions"] = {"replied_user": False}
            sent.append(await self.request("POST", f"/channels/{channel_id}/messages", payload))
        return sent

    # ── Guild inspection and management ───────────────────────────────

    async def list_channels(self, guild_id: str) -> list[dict]:
        return await self.request("GET", f"/guilds/{guild_id}/channels") or []

    async def list_roles(self, guild_id: str) -> list[dict]:
        return await self.request("GET", f"/guilds/{guild_id}/roles") or []

    async def create_channel(
        self,
        guild_id: str,
        name: str,
        channel_type: int = 0,
        topic: str | None = None,
        parent_id: str | None = None,
    ) -> dict:
        payload: dict[str, Any] = {"name": name, "type": channel_type}
        if topic:
            payload["topic"] = topic
        if parent_id:
            payload["parent_id"] = parent_id
        return await self.request("POST", f"/guilds/{guild_id}/channels", payload)

    async def delete_channel(self, channel_id: str) -> dict:
        return await self.request("DELETE", f"/channels/{channel_id}")
