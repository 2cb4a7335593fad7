"""Storage interfaces for the identifier ledger and destination registry."""

from __future__ import annotations

from typing import Protocol


class StorageError(Exception):
    """Raised when persisted state cannot be read or written."""


class IdentifierLedger(Protocol):
    """Append-only record of report IDs already relayed.

    An ID present in the ledger has been handed to the destination at
    least once. Entries are never removed or rewritten.
    """

    async def initialize(self) -> None:
        """Create empty storage if absent; leave existing storage untouched."""
        ...

    async def contains(self, report_id: str) -> bool:
        """Return True if the ID was appended, reading the persisted state."""
        ...

    async def append(self, report_id: str) -> None:
        """Durably add one ID to the end of the ledger."""
        ...

    async def count(self) -> int:
        """Return the number of entries."""
        ...


class DestinationRegistry(Protocol):
    """Single-slot record of the channel notifications go to."""

    async def set(self, channel_id: str) -> None:
        """Persist the channel ID, replacing any previous value."""
        ...

    async def get(self) -> str | None:
        """Return the channel ID, or None if monitoring is not configured."""
        ...
