"""Outbound channels."""

from guildbell.core.channels.base import Notifier
from guildbell.core.channels.discord import DiscordNotifier

__all__ = ["DiscordNotifier", "Notifier"]
