"""Discord REST notifier — posts reminders and event embeds to channels."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from guildbell.core.cron.errors import NotifyError

DISCORD_API = "https://discord.com/api/v10"


class DiscordNotifier:
    """Async client for the Discord channel-messages endpoint.

    Parameters
    ----------
    token : str
        Bot token (sent as ``Authorization: Bot <token>``).
    api_base : str
        REST base URL.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        token: str,
        api_base: str = DISCORD_API,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    async def send(self, channel_id: str, content: str | dict[str, Any]) -> None:
        """Post ``content`` to ``channel_id``. Raises NotifyError on any failure."""
        if not self.token:
            raise NotifyError("Discord token is not configured")

        url = f"{self.api_base}/channels/{channel_id}/messages"
        payload = self._payload(content)
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s),
                headers=self._headers(),
                transport=self._transport,
            ) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise NotifyError(f"Discord request to channel {channel_id} failed: {e}") from e

        if resp.status_code not in (200, 201):
            logger.warning(
                f"Discord send failed ({resp.status_code}) for channel {channel_id}: "
                f"{resp.text[:200]}"
            )
            raise NotifyError(
                f"Discord returned {resp.status_code} for channel {channel_id}",
                status_code=resp.status_code,
            )
        logger.debug(f"Discord message sent to channel {channel_id}")

    @staticmethod
    def _payload(content: str | dict[str, Any]) -> dict[str, Any]:
        if isinstance(content, dict):
            return {"embeds": [content]}
        return {"content": content}

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self.token}"}
