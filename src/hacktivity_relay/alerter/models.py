"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NotificationPayload:
    """A formatted report notification ready for delivery.

    Attributes:
        title: Report title, used as the embed title.
        url: Link the title points to.
        description: Attribution line followed by the summary.
        color: Embed color derived from severity.
        severity_label: Icon and label for the Severity field.
        bounty: Formatted award amount for the Bounty field.
        footer: Footer text.
    """

    title: str
    url: str
    description: str
    color: int
    severity_label: str
    bounty: str
    footer: str = ""

    def to_discord_embed(self) -> dict[str, object]:
        """Build the Discord embed object for this notification."""
        embed: dict[str, object] = {
            "title": self.title,
            "description": self.description,
            "color": self.color,
            "fields": [
                {"name": "Severity", "value": self.severity_label, "inline": True},
                {"name": "Bounty", "value": self.bounty, "inline": True},
            ],
        }
        if self.url:
            embed["url"] = self.url
        if self.footer:
            embed["footer"] = {"text": self.footer}
        return embed
