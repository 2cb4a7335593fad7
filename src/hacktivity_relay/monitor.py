"""Hacktivity monitor: the poll, filter and dispatch loop.

Each cycle fetches the newest page of disclosed reports, drops those
already in the ledger, and sends the rest to the monitoring channel in
fetched order. An ID is appended to the ledger only after its send
succeeded, and consecutive sends are spaced by a fixed delay.

A crash between a successful send and its ledger append re-sends that
report on a later cycle. Recording before sending would instead drop
reports whose send failed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from hacktivity_relay.alerter.formatter import CurrencyFormatError
from hacktivity_relay.feed.client import FeedFetchError
from hacktivity_relay.health import (
    CYCLES_ABORTED,
    CYCLES_TOTAL,
    ITEMS_SENT,
    ITEMS_SKIPPED,
    LAST_CYCLE_TIMESTAMP,
    SEND_FAILURES,
)
from hacktivity_relay.storage.base import StorageError

if TYPE_CHECKING:
    from hacktivity_relay.alerter.formatter import ReportFormatter
    from hacktivity_relay.alerter.models import NotificationPayload
    from hacktivity_relay.feed.models import HacktivityItem
    from hacktivity_relay.storage.base import IdentifierLedger

logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_POLL_INTERVAL_SECONDS = 15 * 60
DEFAULT_SEND_DELAY_SECONDS = 5.0
DEFAULT_PAGE_SIZE = 25
DEFAULT_MAX_ITEMS_PER_CYCLE = 25


class MonitorState(str, Enum):
    """State of the monitor."""

    STOPPED = "stopped"
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    SENDING = "sending"
    STOPPING = "stopping"


class FeedFetcher(Protocol):
    """Source of the newest disclosed reports."""

    async def fetch_latest(self, page_size: int) -> list[HacktivityItem]: ...


class NotificationChannel(Protocol):
    """Destination that accepts formatted notifications."""

    async def send(self, channel_id: str, payload: NotificationPayload) -> bool: ...


@dataclass
class CycleResult:
    """Outcome of one fetch, filter and send pass."""

    fetched: int = 0
    skipped: int = 0
    sent: int = 0
    failed: int = 0
    deferred: int = 0
    aborted: bool = False
    error: str | None = None
    sent_ids: list[str] = field(default_factory=list)


@dataclass
class MonitorStats:
    """Cumulative statistics across cycles."""

    total_cycles: int = 0
    aborted_cycles: int = 0
    items_sent: int = 0
    items_skipped: int = 0
    send_failures: int = 0
    last_cycle_time: datetime | None = None
    last_cycle_aborted: bool = False
    last_error: str | None = None


# Type aliases for callbacks
CycleCallback = Callable[[CycleResult], None]
SleepFunc = Callable[[float], Awaitable[None]]


class HacktivityMonitor:
    """Polls the feed on a timer and relays new reports.

    Runs one cycle immediately on start() and then one every
    poll_interval_seconds until stop(). Cycles never overlap: run_cycle()
    holds a lock, so a manual call during a scheduled cycle waits.

    Example:
        ```python
        monitor = HacktivityMonitor(
            fetcher, ledger, channel, ReportFormatter(), channel_id="1234"
        )
        await monitor.start()
        ...
        await monitor.stop()
        ```
    """

    def __init__(
        self,
        fetcher: FeedFetcher,
        ledger: IdentifierLedger,
        channel: NotificationChannel,
        formatter: ReportFormatter,
        *,
        channel_id: str,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        send_delay_seconds: float = DEFAULT_SEND_DELAY_SECONDS,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_items_per_cycle: int = DEFAULT_MAX_ITEMS_PER_CYCLE,
        dry_run: bool = False,
        sleep: SleepFunc = asyncio.sleep,
        on_cycle_complete: CycleCallback | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            fetcher: Feed client returning newest-first reports.
            ledger: Ledger of already relayed report IDs.
            channel: Notification channel to send through.
            formatter: Turns reports into notification payloads.
            channel_id: Destination channel, resolved once at startup.
            poll_interval_seconds: Seconds between cycles.
            send_delay_seconds: Pause between consecutive sends.
            page_size: Reports requested per fetch.
            max_items_per_cycle: Most notifications sent in one cycle.
            dry_run: Log notifications instead of sending and recording them.
            sleep: Coroutine used for the inter-send pause.
            on_cycle_complete: Callback after each cycle.
        """
        self._fetcher = fetcher
        self._ledger = ledger
        self._channel = channel
        self._formatter = formatter
        self._channel_id = channel_id
        self._poll_interval = poll_interval_seconds
        self._send_delay = send_delay_seconds
        self._page_size = page_size
        self._max_items = max_items_per_cycle
        self._dry_run = dry_run
        self._sleep = sleep
        self._on_cycle_complete = on_cycle_complete

        self._state = MonitorState.STOPPED
        self._stats = MonitorStats()
        self._running = False
        self._cycle_lock = asyncio.Lock()
        self._poll_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> MonitorState:
        """Current monitor state."""
        return self._state

    @property
    def stats(self) -> MonitorStats:
        """Cumulative statistics."""
        return self._stats

    @property
    def channel_id(self) -> str:
        """Channel notifications are sent to."""
        return self._channel_id

    @property
    def ledger(self) -> IdentifierLedger:
        """Ledger of relayed report IDs."""
        return self._ledger

    @property
    def is_running(self) -> bool:
        """True between start() and stop()."""
        return self._running

    def _set_state(self, new_state: MonitorState) -> None:
        if self._state != new_state:
            logger.debug(f"Monitor state {self._state.value} -> {new_state.value}")
        self._state = new_state

    async def start(self) -> None:
        """Start monitoring.

        Initializes the ledger, runs the first cycle immediately and then
        schedules the periodic loop.

        Raises:
            StorageError: If the ledger cannot be initialized.
        """
        if self._running:
            logger.warning(f"Cannot start monitor: already in state {self._state.value}")
            return

        await self._ledger.initialize()

        self._running = True
        self._stop_event.clear()
        self._set_state(MonitorState.IDLE)
        logger.info(
            f"Hacktivity monitoring started for channel {self._channel_id} "
            f"(every {self._poll_interval:g}s)"
        )

        try:
            await self.run_cycle()
        finally:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Stop monitoring, cancelling any in-progress cycle."""
        if not self._running:
            return

        self._set_state(MonitorState.STOPPING)
        self._running = False
        self._stop_event.set()

        if self._poll_task:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

        self._set_state(MonitorState.STOPPED)
        logger.info("Hacktivity monitoring stopped")

    async def _poll_loop(self) -> None:
        """Background loop that runs a cycle every poll interval."""
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self._poll_interval,
                    )
                    break
                except TimeoutError:
                    pass

                await self.run_cycle()

            except asyncio.CancelledError:
                break
            except Exception as e:
                # Keep polling; the next tick gets a fresh attempt
                logger.exception(f"Monitor cycle error: {e}")
                self._stats.last_error = str(e)

    async def run_cycle(self) -> CycleResult:
        """Run one fetch, filter and send pass.

        Returns:
            CycleResult describing what happened.
        """
        async with self._cycle_lock:
            result = await self._run_cycle_locked()

        if self._on_cycle_complete:
            try:
                self._on_cycle_complete(result)
            except Exception as e:
                logger.warning(f"Cycle complete callback failed: {e}")
        return result

    async def _run_cycle_locked(self) -> CycleResult:
        result = CycleResult()

        try:
            self._set_state(MonitorState.FETCHING)
            try:
                items = await self._fetcher.fetch_latest(self._page_size)
            except FeedFetchError as e:
                logger.error(f"Feed fetch failed: {e}")
                return self._finish(result, error=str(e))
            result.fetched = len(items)

            novel = await self._filter_novel(items, result)
            await self._send_all(novel, result)
        except (CurrencyFormatError, StorageError) as e:
            logger.error(f"Cycle aborted after {result.sent} sent: {e}")
            return self._finish(result, error=str(e))
        except Exception as e:
            # Ends this cycle only
            logger.exception(f"Unexpected cycle error after {result.sent} sent: {e}")
            return self._finish(result, error=str(e))

        return self._finish(result)

    async def _filter_novel(
        self, items: list[HacktivityItem], result: CycleResult
    ) -> list[HacktivityItem]:
        """Return items absent from the ledger, in fetched order."""
        self._set_state(MonitorState.FILTERING)
        novel: list[HacktivityItem] = []
        batch_ids: set[str] = set()

        for item in items:
            if item.report_id in batch_ids or await self._ledger.contains(item.report_id):
                logger.info(f"{item.report_id} skipping...")
                result.skipped += 1
                continue
            batch_ids.add(item.report_id)
            novel.append(item)

        if len(novel) > self._max_items:
            result.deferred = len(novel) - self._max_items
            logger.warning(
                f"{len(novel)} new reports exceed the per-cycle limit; "
                f"deferring {result.deferred} to later cycles"
            )
            novel = novel[: self._max_items]

        return novel

    async def _send_all(self, novel: list[HacktivityItem], result: CycleResult) -> None:
        """Format, send and record each novel item with pacing."""
        self._set_state(MonitorState.SENDING)

        for index, item in enumerate(novel):
            payload = self._formatter.format(item)

            if await self._deliver(item, payload):
                if not self._dry_run:
                    await self._ledger.append(item.report_id)
                result.sent += 1
                result.sent_ids.append(item.report_id)
            else:
                result.failed += 1
                logger.warning(f"Report {item.report_id} not delivered; will retry next cycle")

            if index < len(novel) - 1 and self._send_delay > 0:
                await self._sleep(self._send_delay)

    async def _deliver(self, item: HacktivityItem, payload: NotificationPayload) -> bool:
        if self._dry_run:
            logger.info(f"[DRY RUN] Would send {item.report_id}: {payload.title}")
            return True
        try:
            return await self._channel.send(self._channel_id, payload)
        except Exception as e:
            logger.error(f"Error sending report {item.report_id}: {e}")
            return False

    def _finish(self, result: CycleResult, error: str | None = None) -> CycleResult:
        """Record cycle outcome in stats and metrics."""
        result.aborted = error is not None
        result.error = error

        self._stats.total_cycles += 1
        self._stats.items_sent += result.sent
        self._stats.items_skipped += result.skipped
        self._stats.send_failures += result.failed
        self._stats.last_cycle_time = datetime.now(UTC)
        self._stats.last_cycle_aborted = result.aborted
        if result.aborted:
            self._stats.aborted_cycles += 1
            self._stats.last_error = error

        CYCLES_TOTAL.inc()
        if result.aborted:
            CYCLES_ABORTED.inc()
        ITEMS_SENT.inc(result.sent)
        ITEMS_SKIPPED.inc(result.skipped)
        SEND_FAILURES.inc(result.failed)
        LAST_CYCLE_TIMESTAMP.set(self._stats.last_cycle_time.timestamp())

        self._set_state(MonitorState.IDLE if self._running else MonitorState.STOPPED)
        logger.info(
            f"Cycle complete: fetched={result.fetched} sent={result.sent} "
            f"skipped={result.skipped} failed={result.failed} deferred={result.deferred}"
            + (" (aborted)" if result.aborted else "")
        )
        return result
