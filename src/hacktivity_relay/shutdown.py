"""Graceful shutdown for the relay process.

The first SIGTERM or SIGINT releases ``wait()`` so the bot can log out;
a second one exits immediately. Named cleanup steps (Discord logout,
HTTP clients, storage, health server) then run in registration order
within a shared deadline.

Usage:
    ```python
    async with GracefulShutdown() as shutdown:
        shutdown.register_cleanup("discord bot", bot.close)
        await shutdown.wait()
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from contextlib import suppress
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT = 30.0

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)

CleanupStep = Callable[[], Awaitable[Any] | None]


class GracefulShutdown:
    """Signal-driven stop coordination for the relay."""

    def __init__(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
        """Initialize the coordinator.

        Args:
            timeout: Seconds shared by all cleanup steps.
        """
        self._timeout = timeout
        self._stop_event = asyncio.Event()
        self._received_signal: signal.Signals | None = None
        self._requested = False
        self._forced = False
        self._steps: list[tuple[str, CleanupStep]] = []
        self._loop_handlers: list[signal.Signals] = []
        self._previous_handlers: dict[signal.Signals, Any] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def is_shutdown_requested(self) -> bool:
        return self._requested

    @property
    def is_force_exit_requested(self) -> bool:
        return self._forced

    @property
    def received_signal(self) -> signal.Signals | None:
        """Signal that triggered shutdown, None if requested from code."""
        return self._received_signal

    def register_cleanup(self, name: str, step: CleanupStep) -> None:
        """Add a named sync or async cleanup step."""
        self._steps.append((name, step))

    def request_shutdown(self) -> None:
        """Stop the relay without a signal."""
        if self._requested:
            return
        self._requested = True
        logger.info("Relay shutdown requested")
        self._stop_event.set()

    async def wait(self) -> None:
        """Block until shutdown is requested."""
        await self._stop_event.wait()

    def install_signal_handlers(self) -> None:
        """Trap SIGTERM and SIGINT.

        Falls back to signal.signal where the loop cannot register
        handlers (Windows).
        """
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
                self._loop_handlers.append(sig)
            except NotImplementedError:
                self._previous_handlers[sig] = signal.signal(sig, self._on_signal_sync)
            except (ValueError, OSError, RuntimeError) as e:
                logger.warning("Cannot trap %s: %s", sig.name, e)

    def remove_signal_handlers(self) -> None:
        """Restore the handlers in place before install_signal_handlers()."""
        if self._loop_handlers:
            loop = asyncio.get_running_loop()
            for sig in self._loop_handlers:
                with suppress(ValueError, OSError, RuntimeError):
                    loop.remove_signal_handler(sig)
            self._loop_handlers.clear()

        for sig, previous in self._previous_handlers.items():
            with suppress(ValueError, OSError):
                signal.signal(sig, previous)
        self._previous_handlers.clear()

    def _on_signal(self, sig: signal.Signals) -> None:
        if self._requested:
            self._forced = True
            logger.warning("%s received during shutdown, exiting now", sig.name)
            sys.exit(128 + sig.value)

        self._requested = True
        self._received_signal = sig
        logger.info("%s received, stopping relay", sig.name)
        self._stop_event.set()

    def _on_signal_sync(self, signum: int, _frame: FrameType | None) -> None:
        self._on_signal(signal.Signals(signum))

    async def run_cleanup(self) -> list[str]:
        """Run every cleanup step, continuing past failures.

        Returns:
            Names of steps that raised or ran past the deadline.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        failed: list[str] = []

        for name, step in self._steps:
            logger.debug("Closing %s", name)
            try:
                result = step()
                if asyncio.iscoroutine(result):
                    await asyncio.wait_for(result, timeout=max(0.0, deadline - loop.time()))
            except TimeoutError:
                logger.error("Closing %s timed out", name)
                failed.append(name)
            except Exception as e:
                logger.error("Closing %s failed: %s", name, e)
                failed.append(name)

        if failed:
            logger.warning("Shutdown finished with failures: %s", ", ".join(failed))
        return failed

    async def __aenter__(self) -> GracefulShutdown:
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: object) -> None:
        self.remove_signal_handlers()
        await self.run_cleanup()
