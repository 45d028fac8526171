"""guildbell — per-guild reminders and weekly local-event announcements."""

__version__ = "0.4.0"
