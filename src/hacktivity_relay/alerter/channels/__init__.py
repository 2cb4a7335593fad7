"""Notification channel implementations."""

from hacktivity_relay.alerter.channels.discord import DiscordChannel

__all__ = [
    "DiscordChannel",
]
