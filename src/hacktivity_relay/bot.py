"""Discord gateway client for Hacktivity Relay.

Handles the administrative setup command that records the monitoring
channel, and starts the monitor once the bot is logged in.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import discord

from hacktivity_relay.storage.base import StorageError

if TYPE_CHECKING:
    from hacktivity_relay.health import HealthServer
    from hacktivity_relay.monitor import HacktivityMonitor
    from hacktivity_relay.storage.base import DestinationRegistry

logger = logging.getLogger(__name__)

DEFAULT_SETUP_COMMAND = ".setup"

SETUP_DENIED_REPLY = "Only administrators can set monitoring channel"
SETUP_CONFIRMED_REPLY = "Channel {channel_id} set for HackerOne monitoring"
SETUP_FAILED_REPLY = "Could not save the monitoring channel. Check the bot logs."

MonitorFactory = Callable[[str], "HacktivityMonitor"]


def is_administrator(message: Any) -> bool:
    """Check whether the message author holds the Administrator permission.

    Direct messages have no guild permissions and never qualify.
    """
    if message.guild is None:
        return False
    permissions = getattr(message.author, "guild_permissions", None)
    return bool(permissions is not None and permissions.administrator)


async def handle_setup_command(message: Any, registry: DestinationRegistry) -> str | None:
    """Record the message's channel as the monitoring destination.

    Always replies to the caller, either confirming or rejecting.

    Args:
        message: The discord message carrying the setup command.
        registry: Where the destination channel is persisted.

    Returns:
        The stored channel ID, or None if the caller was rejected or
        the channel could not be saved.
    """
    if not is_administrator(message):
        logger.info(f"Rejected setup command from non-administrator {message.author}")
        await message.reply(SETUP_DENIED_REPLY)
        return None

    channel_id = str(message.channel.id)
    try:
        await registry.set(channel_id)
    except StorageError as e:
        logger.error(f"Failed to save monitoring channel {channel_id}: {e}")
        await message.reply(SETUP_FAILED_REPLY)
        return None

    await message.reply(SETUP_CONFIRMED_REPLY.format(channel_id=channel_id))
    return channel_id


def default_intents() -> discord.Intents:
    """Intents needed to read the setup command in guild channels."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.guild_messages = True
    intents.message_content = True
    return intents


class RelayBot(discord.Client):
    """Discord client that owns the monitor lifecycle.

    The destination channel is read once when the bot first becomes
    ready. If none is configured, monitoring stays off until an
    administrator runs the setup command.
    """

    def __init__(
        self,
        *,
        registry: DestinationRegistry,
        monitor_factory: MonitorFactory,
        setup_command: str = DEFAULT_SETUP_COMMAND,
        health_server: HealthServer | None = None,
        intents: discord.Intents | None = None,
    ) -> None:
        """Initialize the bot.

        Args:
            registry: Destination channel registry.
            monitor_factory: Builds a monitor for a given channel ID.
            setup_command: Exact message text that registers a channel.
            health_server: Health server to attach the monitor to.
            intents: Gateway intents (defaults to default_intents()).
        """
        super().__init__(intents=intents or default_intents())
        self.registry = registry
        self.setup_command = setup_command
        self.health_server = health_server
        self.monitor: HacktivityMonitor | None = None

        self._monitor_factory = monitor_factory
        self._startup_checked = False
        self._start_lock = asyncio.Lock()

    @property
    def is_monitoring(self) -> bool:
        return self.monitor is not None and self.monitor.is_running

    async def on_ready(self) -> None:
        logger.info(f"Logged in as {self.user}")

        # on_ready fires again after reconnects
        if self._startup_checked:
            return
        self._startup_checked = True

        try:
            channel_id = await self.registry.get()
        except StorageError as e:
            logger.error(f"Monitoring setup error: {e}")
            return

        if channel_id is None:
            logger.warning(
                f"Monitoring channel not configured. Use {self.setup_command} "
                "in the target channel to enable monitoring"
            )
            return

        await self.start_monitoring(channel_id)

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        if message.content.strip() != self.setup_command:
            return

        channel_id = await handle_setup_command(message, self.registry)
        if channel_id is None:
            return

        if self.is_monitoring:
            logger.info(
                f"Monitoring channel changed to {channel_id}; takes effect on next restart"
            )
        else:
            await self.start_monitoring(channel_id)

    async def start_monitoring(self, channel_id: str) -> bool:
        """Start the monitor for a channel unless one is already running.

        Returns:
            True if monitoring was started.
        """
        async with self._start_lock:
            if self.is_monitoring:
                return False

            monitor = self._monitor_factory(channel_id)
            self.monitor = monitor
            if self.health_server is not None:
                self.health_server.monitor = monitor

            try:
                await monitor.start()
            except StorageError as e:
                logger.error(f"Monitoring setup error: {e}")
                return False
            return True

    async def close(self) -> None:
        if self.monitor is not None:
            await self.monitor.stop()
        await super().close()
