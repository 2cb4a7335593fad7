"""Data models for the Hacktivity feed."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class MalformedItemError(ValueError):
    """Raised when a feed node does not have the expected shape."""


class Severity(str, Enum):
    """Severity rating attached to a disclosed report."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: object) -> Severity:
        """Map a raw ``severity_rating`` value to a Severity.

        Matching is case-insensitive. Missing or unrecognised values map
        to UNKNOWN rather than raising.
        """
        if not isinstance(raw, str) or not raw.strip():
            return cls.UNKNOWN
        try:
            severity = cls(raw.strip().lower())
        except ValueError:
            return cls.UNKNOWN
        return severity


def _require(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise MalformedItemError(f"feed node is missing '{key}'")
    return value


def _parse_amount(raw: object) -> Decimal:
    if raw is None:
        return Decimal("0")
    try:
        amount = Decimal(str(raw))
    except InvalidOperation as e:
        raise MalformedItemError(f"invalid total_awarded_amount: {raw!r}") from e
    if not amount.is_finite() or amount < 0:
        raise MalformedItemError(f"invalid total_awarded_amount: {raw!r}")
    return amount


@dataclass(frozen=True)
class HacktivityItem:
    """One disclosed report from the Hacktivity feed.

    Attributes:
        report_id: Report database ID, unique per report.
        title: Report title.
        url: Canonical report URL.
        summary: Generated hacktivity summary, None when absent.
        reporter_username: Handle of the reporting hacker.
        team_name: Display name of the receiving program.
        team_handle: Handle of the receiving program.
        currency: ISO 4217 code the program pays in, None when absent.
        severity: Parsed severity rating.
        total_awarded_amount: Total bounty awarded, never negative.
    """

    report_id: str
    title: str
    url: str
    summary: str | None
    reporter_username: str
    team_name: str
    team_handle: str
    currency: str | None
    severity: Severity
    total_awarded_amount: Decimal

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> HacktivityItem:
        """Create an item from one ``search.nodes`` entry.

        Raises:
            MalformedItemError: If required sections or the report ID are missing.
        """
        if not isinstance(node, dict):
            raise MalformedItemError("feed node is not an object")

        report = _require(node, "report")
        reporter = _require(node, "reporter")
        team = _require(node, "team")

        report_id = report.get("databaseId")
        if report_id is None or str(report_id).strip() == "":
            raise MalformedItemError("report is missing 'databaseId'")

        generated = report.get("report_generated_content") or {}
        summary = generated.get("hacktivity_summary") if isinstance(generated, dict) else None

        currency = team.get("currency")

        return cls(
            report_id=str(report_id).strip(),
            title=str(report.get("title") or ""),
            url=str(report.get("url") or ""),
            summary=str(summary) if summary else None,
            reporter_username=str(reporter.get("username") or ""),
            team_name=str(team.get("name") or ""),
            team_handle=str(team.get("handle") or ""),
            currency=str(currency) if currency else None,
            severity=Severity.parse(node.get("severity_rating")),
            total_awarded_amount=_parse_amount(node.get("total_awarded_amount")),
        )
