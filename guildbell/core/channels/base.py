"""Channel base — the outbound delivery contract used by the scheduler."""

from __future__ import annotations

from typing import Any, Protocol


class Notifier(Protocol):
    """Sends a message to a channel.

    ``content`` is plain text or a rich-embed payload (dict). Failures raise
    NotifyError.
    """

    async def send(self, channel_id: str, content: str | dict[str, Any]) -> None: ...
