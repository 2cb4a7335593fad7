"""Build storage backends from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from hacktivity_relay.storage.files import FileDestinationRegistry, FileLedger
from hacktivity_relay.storage.redis_backend import RedisDestinationRegistry, RedisLedger

if TYPE_CHECKING:
    from hacktivity_relay.config import StorageSettings
    from hacktivity_relay.storage.base import DestinationRegistry, IdentifierLedger

logger = logging.getLogger(__name__)


@dataclass
class StorageBundle:
    """Ledger and registry sharing one backend."""

    ledger: IdentifierLedger
    registry: DestinationRegistry
    redis: Redis | None = None

    async def close(self) -> None:
        """Release backend connections."""
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None


def create_storage(settings: StorageSettings) -> StorageBundle:
    """Create the ledger and registry for the configured backend."""
    if settings.backend == "redis":
        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        logger.info("Using Redis storage backend")
        return StorageBundle(
            ledger=RedisLedger(redis, key_prefix=settings.redis_key_prefix),
            registry=RedisDestinationRegistry(redis, key_prefix=settings.redis_key_prefix),
            redis=redis,
        )

    logger.info(f"Using file storage backend ({settings.ledger_path}, {settings.channel_path})")
    return StorageBundle(
        ledger=FileLedger(settings.ledger_path),
        registry=FileDestinationRegistry(settings.channel_path),
    )
