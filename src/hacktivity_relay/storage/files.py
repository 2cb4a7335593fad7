"""Flat-file storage for the ledger and destination registry.

The ledger is a newline-delimited text file opened only in append mode.
The registry is a single file holding the raw channel ID, replaced
atomically on every write. Blocking file I/O runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from hacktivity_relay.storage.base import StorageError

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_PATH = "log.txt"
DEFAULT_CHANNEL_PATH = "channel.txt"


class FileLedger:
    """Identifier ledger backed by an append-only text file."""

    def __init__(self, path: str | Path = DEFAULT_LEDGER_PATH) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _initialize_sync(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # "x" never truncates an existing ledger
            with self.path.open("x", encoding="utf-8"):
                pass
        except FileExistsError:
            return False
        return True

    def _read_entries(self) -> list[str]:
        text = self.path.read_text(encoding="utf-8")
        return [line.strip() for line in text.splitlines() if line.strip()]

    def _append_sync(self, report_id: str) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(f"{report_id}\n")
            f.flush()
            os.fsync(f.fileno())

    async def initialize(self) -> None:
        try:
            created = await asyncio.to_thread(self._initialize_sync)
        except OSError as e:
            raise StorageError(f"Cannot initialize ledger at {self.path}: {e}") from e
        if created:
            logger.info(f"Created ledger file {self.path}")

    async def contains(self, report_id: str) -> bool:
        try:
            entries = await asyncio.to_thread(self._read_entries)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot read ledger {self.path}: {e}") from e
        return report_id.strip() in entries

    async def append(self, report_id: str) -> None:
        report_id = report_id.strip()
        if not report_id or "\n" in report_id:
            raise StorageError(f"Invalid ledger entry: {report_id!r}")
        async with self._lock:
            try:
                await asyncio.to_thread(self._append_sync, report_id)
            except OSError as e:
                raise StorageError(f"Cannot append to ledger {self.path}: {e}") from e
        logger.debug(f"Recorded {report_id} in ledger")

    async def count(self) -> int:
        try:
            entries = await asyncio.to_thread(self._read_entries)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot read ledger {self.path}: {e}") from e
        return len(entries)


class FileDestinationRegistry:
    """Destination registry backed by a single-value text file."""

    def __init__(self, path: str | Path = DEFAULT_CHANNEL_PATH) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _write_sync(self, channel_id: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(channel_id)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read_sync(self) -> str | None:
        try:
            value = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return value or None

    async def set(self, channel_id: str) -> None:
        channel_id = str(channel_id).strip()
        if not channel_id:
            raise StorageError("Channel ID must not be empty")
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_sync, channel_id)
            except OSError as e:
                raise StorageError(f"Cannot write channel file {self.path}: {e}") from e
        logger.info(f"Monitoring channel set to {channel_id}")

    async def get(self) -> str | None:
        try:
            return await asyncio.to_thread(self._read_sync)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot read channel file {self.path}: {e}") from e
