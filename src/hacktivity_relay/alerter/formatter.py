"""Notification formatter for disclosed reports.

This module turns HacktivityItem objects into NotificationPayloads. It
is a pure mapping with no clock, randomness or I/O, so formatting the
same item twice yields identical payloads.
"""

from __future__ import annotations

from decimal import Decimal

from babel.numbers import UnknownCurrencyError, format_currency, validate_currency

from hacktivity_relay.alerter.models import NotificationPayload
from hacktivity_relay.feed.models import HacktivityItem, Severity

HACKERONE_PROFILE_URL = "https://hackerone.com/{handle}"

NO_SUMMARY = "No summary"
FOOTER_TEXT = "HackerOne Hacktivity"
BOUNTY_GLYPH = "💰"
CURRENCY_LOCALE = "en_US"

SEVERITY_LABELS: dict[Severity, str] = {
    Severity.NONE: ":white_circle: Info",
    Severity.LOW: ":green_circle: Low",
    Severity.MEDIUM: ":yellow_circle: Medium",
    Severity.HIGH: ":orange_circle: High",
    Severity.CRITICAL: ":red_circle: Critical",
}
UNKNOWN_SEVERITY_LABEL = "-"

# Discord embed colors
SEVERITY_COLORS: dict[Severity, int] = {
    Severity.CRITICAL: 0xFF0000,
    Severity.HIGH: 0xFF6600,
    Severity.MEDIUM: 0xFFFF00,
    Severity.LOW: 0x00FF00,
    Severity.NONE: 0x808080,
}
UNKNOWN_SEVERITY_COLOR = 0x000000


class CurrencyFormatError(ValueError):
    """Raised when a bounty cannot be rendered in the team's currency."""


def get_severity_label(severity: Severity) -> str:
    """Get the icon and label shown in the Severity field."""
    return SEVERITY_LABELS.get(severity, UNKNOWN_SEVERITY_LABEL)


def get_severity_color(severity: Severity) -> int:
    """Get Discord embed color for a severity."""
    return SEVERITY_COLORS.get(severity, UNKNOWN_SEVERITY_COLOR)


def format_bounty(amount: Decimal, currency: str | None) -> str:
    """Format an award amount as a money-bag prefixed currency string.

    Raises:
        CurrencyFormatError: If the currency code is missing or unknown.
    """
    if not currency:
        raise CurrencyFormatError("Missing currency code")
    code = currency.strip().upper()
    try:
        validate_currency(code)
    except UnknownCurrencyError as e:
        raise CurrencyFormatError(f"Unknown currency code: {currency!r}") from e
    return f"{BOUNTY_GLYPH} {format_currency(amount, code, locale=CURRENCY_LOCALE)}"


def profile_link(text: str, handle: str) -> str:
    """Build a markdown link to a HackerOne profile."""
    return f"[{text}]({HACKERONE_PROFILE_URL.format(handle=handle)})"


class ReportFormatter:
    """Formats disclosed reports into Discord notifications."""

    def __init__(self, footer: str = FOOTER_TEXT) -> None:
        self.footer = footer

    def format(self, item: HacktivityItem) -> NotificationPayload:
        """Format a report into a notification payload.

        Args:
            item: The disclosed report.

        Returns:
            NotificationPayload for the report.

        Raises:
            CurrencyFormatError: If the bounty currency is missing or unknown.
        """
        return NotificationPayload(
            title=item.title,
            url=item.url,
            description=self._build_description(item),
            color=get_severity_color(item.severity),
            severity_label=get_severity_label(item.severity),
            bounty=format_bounty(item.total_awarded_amount, item.currency),
            footer=self.footer,
        )

    def _build_description(self, item: HacktivityItem) -> str:
        reporter = profile_link(f"@{item.reporter_username}", item.reporter_username)
        team = profile_link(f"**{item.team_name}**", item.team_handle)
        summary = item.summary or NO_SUMMARY
        return f":pencil: Disclosed by {reporter} to {team}\n\n{summary}"
