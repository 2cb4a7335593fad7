"""CLI entry point for Hacktivity Relay.

This module provides the main entry point for running the relay
from the command line.

Usage:
    python -m hacktivity_relay [options]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import sys
from typing import NoReturn

import discord
from pydantic import ValidationError

from hacktivity_relay import __version__
from hacktivity_relay.alerter.channels.discord import DiscordChannel
from hacktivity_relay.alerter.formatter import ReportFormatter
from hacktivity_relay.bot import RelayBot
from hacktivity_relay.config import Settings, clear_settings_cache, get_settings
from hacktivity_relay.feed.client import HacktivityClient
from hacktivity_relay.health import HealthServer
from hacktivity_relay.monitor import HacktivityMonitor
from hacktivity_relay.shutdown import GracefulShutdown
from hacktivity_relay.storage.base import StorageError
from hacktivity_relay.storage.factory import StorageBundle, create_storage

# Application info
APP_NAME = "Hacktivity Relay"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="hacktivity-relay",
        description="Relay newly disclosed HackerOne reports into a Discord channel.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m hacktivity_relay                     Run the Discord bot
  python -m hacktivity_relay --config-check      Validate config and exit
  python -m hacktivity_relay --once --dry-run    Poll once and log what would be sent
  python -m hacktivity_relay --set-channel 1234  Set the monitoring channel and exit
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )

    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit without connecting",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log notifications instead of sending and recording them",
    )

    parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Override health check port, 0 disables (default: from settings)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single poll cycle against the configured channel and exit",
    )

    parser.add_argument(
        "--set-channel",
        metavar="CHANNEL_ID",
        default=None,
        help="Store the monitoring channel ID and exit",
    )

    return parser


def configure_logging(level: str) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "discord": {"level": "WARNING"},
            "aiohttp": {"level": "WARNING"},
            "asyncio": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_banner() -> None:
    """Print the application startup banner."""
    banner = f"""
╔══════════════════════════════════════════════════════════════╗
║                                                              ║
║   {APP_NAME:^56}   ║
║   {"v" + APP_VERSION:^56}   ║
║                                                              ║
╚══════════════════════════════════════════════════════════════╝
"""
    print(banner)


def print_config_summary(settings: Settings, dry_run: bool) -> None:
    """Print a summary of the configuration."""
    summary = settings.redacted_summary()
    print("Configuration:")
    print(f"  HackerOne: {summary['hackerone']}")
    print(f"  Discord: {summary['discord']}")
    print(f"  Storage: {summary['storage_backend']} ({summary['storage_location']})")
    print(f"  Poll Interval: {summary['poll_interval']}")
    print(f"  Send Delay: {summary['send_delay']}")
    print(f"  Log Level: {summary['log_level']}")
    print(f"  Health Port: {summary['health_port']}")
    print(f"  Dry Run: {dry_run}")
    print()


def validate_config() -> Settings | None:
    """Validate and load configuration.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            msg = error["msg"]
            print(f"  {field}: {msg}", file=sys.stderr)
        return None


def run_config_check(settings: Settings) -> int:
    """Print the validated configuration and exit."""
    print("Configuration is valid!")
    print()
    print_config_summary(settings, dry_run=settings.dry_run)
    print("All checks passed. Ready to run.")
    return EXIT_SUCCESS


def build_monitor(
    settings: Settings,
    *,
    channel_id: str,
    fetcher: HacktivityClient,
    channel: DiscordChannel,
    storage: StorageBundle,
    dry_run: bool,
) -> HacktivityMonitor:
    """Assemble a monitor for a destination channel from settings."""
    return HacktivityMonitor(
        fetcher,
        storage.ledger,
        channel,
        ReportFormatter(),
        channel_id=channel_id,
        poll_interval_seconds=settings.monitor.poll_interval_seconds,
        send_delay_seconds=settings.monitor.send_delay_seconds,
        page_size=settings.hackerone.page_size,
        max_items_per_cycle=settings.monitor.max_items_per_cycle,
        dry_run=dry_run,
    )


def create_clients(settings: Settings) -> tuple[HacktivityClient, DiscordChannel]:
    """Create the feed client and Discord REST channel."""
    fetcher = HacktivityClient(
        settings.hackerone.api_key.get_secret_value(),
        endpoint=settings.hackerone.graphql_url,
        timeout=settings.hackerone.timeout_seconds,
    )
    channel = DiscordChannel(
        settings.discord.bot_token.get_secret_value(),
        api_base=settings.discord.api_base,
    )
    return fetcher, channel


async def run_set_channel(settings: Settings, channel_id: str) -> int:
    """Store the monitoring channel without connecting to Discord."""
    storage = create_storage(settings.storage)
    try:
        await storage.registry.set(channel_id)
    except StorageError as e:
        logger.error(f"Could not set monitoring channel: {e}")
        return EXIT_ERROR
    finally:
        await storage.close()
    print(f"Monitoring channel set to {channel_id}")
    return EXIT_SUCCESS


async def run_once(settings: Settings, dry_run: bool) -> int:
    """Run a single poll cycle through the REST API and exit."""
    storage = create_storage(settings.storage)
    fetcher, channel = create_clients(settings)

    try:
        channel_id = await storage.registry.get()
        if channel_id is None:
            logger.error("Monitoring channel not configured. Use --set-channel or .setup first")
            return EXIT_CONFIG_ERROR

        monitor = build_monitor(
            settings,
            channel_id=channel_id,
            fetcher=fetcher,
            channel=channel,
            storage=storage,
            dry_run=dry_run,
        )
        await storage.ledger.initialize()
        result = await monitor.run_cycle()
        return EXIT_ERROR if result.aborted else EXIT_SUCCESS
    except StorageError as e:
        logger.error(f"Storage error: {e}")
        return EXIT_ERROR
    finally:
        await fetcher.close()
        await channel.close()
        await storage.close()


async def run_bot(
    settings: Settings,
    dry_run: bool,
    health_port: int,
    shutdown_timeout: float = 30.0,
) -> int:
    """Run the Discord bot with graceful shutdown handling.

    Returns:
        Exit code.
    """
    storage = create_storage(settings.storage)
    fetcher, channel = create_clients(settings)
    health = HealthServer(port=health_port) if health_port else None

    def monitor_factory(channel_id: str) -> HacktivityMonitor:
        return build_monitor(
            settings,
            channel_id=channel_id,
            fetcher=fetcher,
            channel=channel,
            storage=storage,
            dry_run=dry_run,
        )

    bot = RelayBot(
        registry=storage.registry,
        monitor_factory=monitor_factory,
        setup_command=settings.discord.setup_command,
        health_server=health,
    )
    shutdown = GracefulShutdown(timeout=shutdown_timeout)

    try:
        async with shutdown:
            shutdown.register_cleanup("discord bot", bot.close)
            shutdown.register_cleanup("feed client", fetcher.close)
            shutdown.register_cleanup("discord channel", channel.close)
            shutdown.register_cleanup("storage", storage.close)

            if health is not None:
                shutdown.register_cleanup("health server", health.stop)
                await health.start()

            logger.info("Connecting to Discord...")
            bot_task = asyncio.create_task(bot.start(settings.discord.bot_token.get_secret_value()))
            shutdown_task = asyncio.create_task(shutdown.wait())

            done, _pending = await asyncio.wait(
                [bot_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED,
            )

            if bot_task in done:
                shutdown_task.cancel()
                bot_task.result()
                logger.info("Discord connection closed")
            else:
                logger.info("Shutdown signal received, stopping bot...")
                await bot.close()
                await asyncio.gather(bot_task, return_exceptions=True)

        return EXIT_SUCCESS
    except discord.LoginFailure as e:
        logger.error(f"Discord login failed: {e}")
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Relay failed: %s", e)
        return EXIT_ERROR


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    log_level = args.log_level or settings.log_level
    configure_logging(log_level)

    print_banner()

    if args.config_check:
        sys.exit(run_config_check(settings))

    if args.set_channel is not None:
        sys.exit(asyncio.run(run_set_channel(settings, args.set_channel)))

    dry_run = args.dry_run or settings.dry_run

    if args.once:
        sys.exit(asyncio.run(run_once(settings, dry_run)))

    health_port = args.health_port if args.health_port is not None else settings.health_port

    print_config_summary(settings, dry_run)

    exit_code = asyncio.run(run_bot(settings, dry_run, health_port))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
