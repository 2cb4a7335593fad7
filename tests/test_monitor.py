"""Tests for the Hacktivity monitor dispatch loop."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from hacktivity_relay.alerter.formatter import ReportFormatter
from hacktivity_relay.alerter.models import NotificationPayload
from hacktivity_relay.feed.client import FeedFetchError
from hacktivity_relay.feed.models import HacktivityItem, Severity
from hacktivity_relay.monitor import (
    CycleResult,
    HacktivityMonitor,
    MonitorState,
)
from hacktivity_relay.storage.base import StorageError
from hacktivity_relay.storage.files import FileLedger

CHANNEL_ID = "C"

# ============================================================================
# Fakes and Fixtures
# ============================================================================


class InMemoryLedger:
    """Ledger fake keeping entries in a list."""

    def __init__(self, entries: list[str] | None = None) -> None:
        self.entries = list(entries or [])
        self.initialized = False
        self.fail_append_for: set[str] = set()

    async def initialize(self) -> None:
        self.initialized = True

    async def contains(self, report_id: str) -> bool:
        return report_id in self.entries

    async def append(self, report_id: str) -> None:
        if report_id in self.fail_append_for:
            raise StorageError("disk full")
        self.entries.append(report_id)

    async def count(self) -> int:
        return len(self.entries)


class RecordingChannel:
    """Channel fake recording every send, in order."""

    def __init__(self, ledger: InMemoryLedger | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_for: set[str] = set()
        self.raise_for: set[str] = set()
        self.ledger = ledger
        self.ledger_sizes_at_send: list[int] = []

    async def send(self, channel_id: str, payload: NotificationPayload) -> bool:
        report_id = payload.url.rsplit("/", 1)[-1]
        if self.ledger is not None:
            self.ledger_sizes_at_send.append(len(self.ledger.entries))
        if report_id in self.raise_for:
            raise RuntimeError("connection reset")
        if report_id in self.fail_for:
            return False
        self.sent.append((channel_id, report_id))
        return True

    @property
    def sent_ids(self) -> list[str]:
        return [report_id for _, report_id in self.sent]


def make_item(report_id: str, *, currency: str = "USD") -> HacktivityItem:
    return HacktivityItem(
        report_id=report_id,
        title=f"Report {report_id}",
        url=f"https://hackerone.com/reports/{report_id}",
        summary=None,
        reporter_username="alice",
        team_name="Acme",
        team_handle="acme",
        currency=currency,
        severity=Severity.MEDIUM,
        total_awarded_amount=Decimal("500"),
    )


def make_fetcher(*items: HacktivityItem) -> AsyncMock:
    fetcher = AsyncMock()
    fetcher.fetch_latest = AsyncMock(return_value=list(items))
    return fetcher


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def channel(ledger: InMemoryLedger) -> RecordingChannel:
    return RecordingChannel(ledger)


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


def make_monitor(
    fetcher: AsyncMock,
    ledger: InMemoryLedger,
    channel: RecordingChannel,
    sleep: AsyncMock,
    **kwargs: object,
) -> HacktivityMonitor:
    return HacktivityMonitor(
        fetcher,
        ledger,
        channel,
        ReportFormatter(),
        channel_id=CHANNEL_ID,
        sleep=sleep,
        **kwargs,  # type: ignore[arg-type]
    )


# ============================================================================
# Cycle Scenarios
# ============================================================================


class TestRunCycle:
    """Tests for a single fetch, filter and send pass."""

    async def test_empty_ledger_sends_all_in_order(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"), make_item("B"), make_item("C"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        result = await monitor.run_cycle()

        assert channel.sent == [(CHANNEL_ID, "A"), (CHANNEL_ID, "B"), (CHANNEL_ID, "C")]
        assert ledger.entries == ["A", "B", "C"]
        assert result.sent == 3
        assert result.sent_ids == ["A", "B", "C"]
        assert result.aborted is False

    async def test_fetches_configured_page_size(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher()
        monitor = make_monitor(fetcher, ledger, channel, sleep, page_size=25)

        await monitor.run_cycle()

        fetcher.fetch_latest.assert_awaited_once_with(25)

    async def test_known_item_is_skipped(
        self, channel: RecordingChannel, sleep: AsyncMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        ledger = InMemoryLedger(["B"])
        channel.ledger = ledger
        fetcher = make_fetcher(make_item("A"), make_item("B"), make_item("C"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        with caplog.at_level("INFO"):
            result = await monitor.run_cycle()

        assert channel.sent_ids == ["A", "C"]
        assert ledger.entries == ["B", "A", "C"]
        assert result.skipped == 1
        assert "B skipping" in caplog.text

    async def test_all_known_sends_nothing(self, channel: RecordingChannel, sleep: AsyncMock) -> None:
        ledger = InMemoryLedger(["A", "B"])
        fetcher = make_fetcher(make_item("A"), make_item("B"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        result = await monitor.run_cycle()

        assert channel.sent == []
        assert ledger.entries == ["A", "B"]
        assert result.skipped == 2
        sleep.assert_not_awaited()

    async def test_second_cycle_is_idempotent(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"), make_item("B"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        await monitor.run_cycle()
        second = await monitor.run_cycle()

        assert channel.sent_ids == ["A", "B"]
        assert ledger.entries == ["A", "B"]
        assert second.sent == 0
        assert second.skipped == 2

    async def test_duplicate_ids_in_batch_sent_once(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"), make_item("A"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        result = await monitor.run_cycle()

        assert channel.sent_ids == ["A"]
        assert ledger.entries == ["A"]
        assert result.skipped == 1

    async def test_send_happens_before_record(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"), make_item("B"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        await monitor.run_cycle()

        # Ledger size observed at each send: nothing recorded before A's send,
        # exactly A recorded before B's send.
        assert channel.ledger_sizes_at_send == [0, 1]

    async def test_delay_between_sends_only(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"), make_item("B"), make_item("C"))
        monitor = make_monitor(fetcher, ledger, channel, sleep, send_delay_seconds=5)

        await monitor.run_cycle()

        assert sleep.await_count == 2
        sleep.assert_awaited_with(5)

    async def test_zero_delay_never_sleeps(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"), make_item("B"))
        monitor = make_monitor(fetcher, ledger, channel, sleep, send_delay_seconds=0)

        await monitor.run_cycle()

        sleep.assert_not_awaited()


class TestCycleErrors:
    """Tests for the cycle error boundaries."""

    async def test_fetch_failure(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = AsyncMock()
        fetcher.fetch_latest = AsyncMock(side_effect=FeedFetchError("HTTP 401"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        result = await monitor.run_cycle()

        assert result.aborted is True
        assert result.error == "HTTP 401"
        assert channel.sent == []
        assert ledger.entries == []
        assert monitor.stats.aborted_cycles == 1

    async def test_send_failure_continues_and_is_not_recorded(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        channel.fail_for = {"B"}
        fetcher = make_fetcher(make_item("A"), make_item("B"), make_item("C"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        result = await monitor.run_cycle()

        assert channel.sent_ids == ["A", "C"]
        assert ledger.entries == ["A", "C"]
        assert result.failed == 1
        assert result.aborted is False

    async def test_failed_item_retried_next_cycle(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        channel.fail_for = {"B"}
        fetcher = make_fetcher(make_item("A"), make_item("B"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        await monitor.run_cycle()
        channel.fail_for = set()
        await monitor.run_cycle()

        assert channel.sent_ids == ["A", "B"]
        assert ledger.entries == ["A", "B"]

    async def test_send_exception_treated_as_failure(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        channel.raise_for = {"A"}
        fetcher = make_fetcher(make_item("A"), make_item("B"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        result = await monitor.run_cycle()

        assert channel.sent_ids == ["B"]
        assert ledger.entries == ["B"]
        assert result.failed == 1

    async def test_unknown_currency_aborts_cycle(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(
            make_item("A"), make_item("B", currency="ZZZ"), make_item("C")
        )
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        result = await monitor.run_cycle()

        assert channel.sent_ids == ["A"]
        assert ledger.entries == ["A"]
        assert result.aborted is True
        assert "ZZZ" in (result.error or "")

    async def test_append_failure_aborts_cycle(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        ledger.fail_append_for = {"A"}
        fetcher = make_fetcher(make_item("A"), make_item("B"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        result = await monitor.run_cycle()

        # A was delivered but not recorded; B is never attempted.
        assert channel.sent_ids == ["A"]
        assert ledger.entries == []
        assert result.aborted is True
        assert result.sent == 0

    async def test_ledger_read_failure_aborts_cycle(
        self, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        ledger = InMemoryLedger()
        ledger.contains = AsyncMock(side_effect=StorageError("unreadable"))  # type: ignore[method-assign]
        fetcher = make_fetcher(make_item("A"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        result = await monitor.run_cycle()

        assert result.aborted is True
        assert channel.sent == []


class TestCycleLimits:
    """Tests for per-cycle cap and dry run."""

    async def test_cap_defers_excess(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(*(make_item(str(i)) for i in range(5)))
        monitor = make_monitor(fetcher, ledger, channel, sleep, max_items_per_cycle=2)

        result = await monitor.run_cycle()

        assert channel.sent_ids == ["0", "1"]
        assert result.deferred == 3

        await monitor.run_cycle()
        assert channel.sent_ids == ["0", "1", "2", "3"]

    async def test_dry_run_sends_and_records_nothing(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"), make_item("B"))
        monitor = make_monitor(fetcher, ledger, channel, sleep, dry_run=True)

        result = await monitor.run_cycle()

        assert channel.sent == []
        assert ledger.entries == []
        assert result.sent == 2


# ============================================================================
# Lifecycle
# ============================================================================


class TestMonitorLifecycle:
    """Tests for start/stop and scheduling."""

    async def test_initial_state(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        monitor = make_monitor(make_fetcher(), ledger, channel, sleep)

        assert monitor.state == MonitorState.STOPPED
        assert monitor.is_running is False
        assert monitor.channel_id == CHANNEL_ID

    async def test_start_runs_immediately(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"))
        monitor = make_monitor(fetcher, ledger, channel, sleep, poll_interval_seconds=3600)

        await monitor.start()
        try:
            assert ledger.initialized is True
            assert channel.sent_ids == ["A"]
            assert monitor.state == MonitorState.IDLE
            assert monitor.is_running is True
        finally:
            await monitor.stop()

        assert monitor.state == MonitorState.STOPPED

    async def test_start_twice_is_noop(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher()
        monitor = make_monitor(fetcher, ledger, channel, sleep, poll_interval_seconds=3600)

        await monitor.start()
        await monitor.start()
        await monitor.stop()

        assert fetcher.fetch_latest.await_count == 1

    async def test_start_propagates_ledger_init_failure(
        self, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        ledger = InMemoryLedger()
        ledger.initialize = AsyncMock(side_effect=StorageError("read-only"))  # type: ignore[method-assign]
        monitor = make_monitor(make_fetcher(), ledger, channel, sleep)

        with pytest.raises(StorageError):
            await monitor.start()
        assert monitor.is_running is False

    async def test_start_survives_undecodable_ledger(
        self, channel: RecordingChannel, sleep: AsyncMock, tmp_path: Path
    ) -> None:
        ledger_path = tmp_path / "log.txt"
        ledger_path.write_bytes(b"123\n\xff\xfe\n")
        fetcher = make_fetcher(make_item("A"))
        monitor = make_monitor(
            fetcher, FileLedger(ledger_path), channel, sleep, poll_interval_seconds=3600
        )

        await monitor.start()
        try:
            assert monitor.is_running is True
            assert monitor._poll_task is not None
            assert monitor.state == MonitorState.IDLE
            assert monitor.stats.total_cycles == 1
            assert monitor.stats.last_cycle_aborted is True
            assert channel.sent == []
        finally:
            await monitor.stop()

    async def test_unexpected_error_aborts_cycle_only(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"))
        ledger.contains = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]
        monitor = make_monitor(fetcher, ledger, channel, sleep, poll_interval_seconds=3600)

        await monitor.start()
        try:
            assert monitor._poll_task is not None
            assert monitor.state == MonitorState.IDLE
            assert monitor.stats.last_error == "boom"
        finally:
            await monitor.stop()

        result = await monitor.run_cycle()
        assert result.aborted is True
        assert monitor.state == MonitorState.STOPPED

    async def test_timer_fires_repeatedly(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher()
        monitor = make_monitor(fetcher, ledger, channel, sleep, poll_interval_seconds=0.01)

        await monitor.start()
        await asyncio.sleep(0.1)
        await monitor.stop()

        assert fetcher.fetch_latest.await_count >= 3

    async def test_loop_survives_fetch_errors(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = AsyncMock()
        fetcher.fetch_latest = AsyncMock(side_effect=FeedFetchError("down"))
        monitor = make_monitor(fetcher, ledger, channel, sleep, poll_interval_seconds=0.01)

        await monitor.start()
        await asyncio.sleep(0.05)
        assert monitor.is_running is True
        await monitor.stop()

        assert monitor.stats.aborted_cycles >= 2

    async def test_stop_when_not_running(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        monitor = make_monitor(make_fetcher(), ledger, channel, sleep)
        await monitor.stop()
        assert monitor.state == MonitorState.STOPPED

    async def test_cycles_never_overlap(
        self, ledger: InMemoryLedger, channel: RecordingChannel
    ) -> None:
        active = 0
        max_active = 0

        async def slow_fetch(_page_size: int) -> list[HacktivityItem]:
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1
            return [make_item("A")]

        fetcher = MagicMock()
        fetcher.fetch_latest = slow_fetch
        monitor = make_monitor(fetcher, ledger, channel, AsyncMock())

        results = await asyncio.gather(monitor.run_cycle(), monitor.run_cycle())

        assert max_active == 1
        assert channel.sent_ids == ["A"]
        assert sorted(r.sent for r in results) == [0, 1]

    async def test_cycle_callback(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        seen: list[CycleResult] = []
        monitor = make_monitor(
            make_fetcher(make_item("A")), ledger, channel, sleep, on_cycle_complete=seen.append
        )

        await monitor.run_cycle()

        assert len(seen) == 1
        assert seen[0].sent == 1

    async def test_stats_accumulate(
        self, ledger: InMemoryLedger, channel: RecordingChannel, sleep: AsyncMock
    ) -> None:
        fetcher = make_fetcher(make_item("A"), make_item("B"))
        monitor = make_monitor(fetcher, ledger, channel, sleep)

        await monitor.run_cycle()
        await monitor.run_cycle()

        stats = monitor.stats
        assert stats.total_cycles == 2
        assert stats.items_sent == 2
        assert stats.items_skipped == 2
        assert stats.last_cycle_time is not None
        assert stats.last_cycle_aborted is False
