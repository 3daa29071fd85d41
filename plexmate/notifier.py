"""
Notification delivery.

The engine only knows the Notifier interface: send(user_id, notification)
returning whether the message went out. DiscordNotifier delivers embeds as
direct messages through the Discord REST API using the bot token.
"""
from typing import Any, Protocol

import httpx

from plexmate.core.logging import get_logger
from plexmate.messages import Notification

logger = get_logger("notifier")


class Notifier(Protocol):
    async def send(self, user_id: str, notification: Notification) -> bool: ...


class DiscordNotifier:
    """Sends notifications to Discord users as direct messages."""

    api_base = "https://discord.com/api/v10"
    timeout: float = 10.0

    def __init__(self, token: str, transport: httpx.AsyncBaseTransport | None = None):
        self.token = token
        self.transport = transport
        self._dm_channels: dict[str, str] = {}

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bot {self.token}",
            "Content-Type": "application/json",
        }

    async def _dm_channel(self, client: httpx.AsyncClient, user_id: str) -> str:
        channel_id = self._dm_channels.get(user_id)
        if channel_id:
            return channel_id
        resp = await client.post(
            f"{self.api_base}/users/@me/channels",
            json={"recipient_id": user_id},
        )
        resp.raise_for_status()
        channel_id = resp.json()["id"]
        self._dm_channels[user_id] = channel_id
        return channel_id

    async def send(self, user_id: str, notification: Notification) -> bool:
        if not self.configured:
            logger.error("Discord token not configured; dropping '%s' for %s", notification.title, user_id)
            return False

        payload: dict[str, Any] = {"embeds": [notification.to_embed()]}
        try:
            async with httpx.AsyncClient(headers=self._headers(), timeout=self.timeout, transport=self.transport) as client:
                channel_id = await self._dm_channel(client, str(user_id))
                resp = await client.post(
                    f"{self.api_base}/channels/{channel_id}/messages",
                    json=payload,
                )
                resp.raise_for_status()
            logger.info("Sent '%s' to %s", notification.title, user_id)
            return True
        except (httpx.HTTPError, KeyError, ValueError) as e:
            return self._handle_error(user_id, e)

    def _handle_error(self, user_id: str, e: Exception) -> bool:
        if isinstance(e, httpx.HTTPStatusError):
            status = e.response.status_code
            if status in (401, 403):
                logger.error("Discord refused DM to %s (HTTP %s): check the bot token and shared servers", user_id, status)
            else:
                logger.error("Discord HTTP %s sending to %s", status, user_id)
        elif isinstance(e, httpx.TimeoutException):
            logger.error("Timed out sending Discord DM to %s", user_id)
        elif isinstance(e, httpx.ConnectError):
            logger.error("Could not connect to Discord to message %s", user_id)
        else:
            logger.error("Failed to send Discord DM to %s: %s", user_id, e)
        self._dm_channels.pop(str(user_id), None)
        return False
