"""Alerting layer - Report notification formatting and delivery."""

from hacktivity_relay.alerter.channels.discord import DiscordChannel
from hacktivity_relay.alerter.formatter import CurrencyFormatError, ReportFormatter
from hacktivity_relay.alerter.models import NotificationPayload

__all__ = [
    "CurrencyFormatError",
    "DiscordChannel",
    "NotificationPayload",
    "ReportFormatter",
]
