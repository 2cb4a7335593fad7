"""Redis storage for the ledger and destination registry.

The ledger keeps two keys: a set used as the membership index and a
list holding every ID in append order as the audit trail. Both are
written in one MULTI/EXEC transaction.
"""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from hacktivity_relay.storage.base import StorageError

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "hacktivity:"


class RedisLedger:
    """Identifier ledger with an O(1) set-backed index."""

    KEY_INDEX = "ledger:index"
    KEY_LOG = "ledger:log"

    def __init__(self, redis: Redis, *, key_prefix: str = DEFAULT_KEY_PREFIX) -> None:
        """Initialize the ledger.

        Args:
            redis: Redis async client.
            key_prefix: Prefix prepended to all keys.
        """
        self.redis = redis
        self._index_key = f"{key_prefix}{self.KEY_INDEX}"
        self._log_key = f"{key_prefix}{self.KEY_LOG}"

    async def initialize(self) -> None:
        # Redis creates keys lazily; just confirm the server is reachable.
        try:
            await self.redis.ping()
        except RedisError as e:
            raise StorageError(f"Cannot reach Redis: {e}") from e

    async def contains(self, report_id: str) -> bool:
        try:
            return bool(await self.redis.sismember(self._index_key, report_id))
        except RedisError as e:
            raise StorageError(f"Cannot read ledger index: {e}") from e

    async def append(self, report_id: str) -> None:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.sadd(self._index_key, report_id)
                pipe.rpush(self._log_key, report_id)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Cannot append to ledger: {e}") from e
        logger.debug(f"Recorded {report_id} in ledger")

    async def count(self) -> int:
        try:
            return int(await self.redis.llen(self._log_key))
        except RedisError as e:
            raise StorageError(f"Cannot read ledger length: {e}") from e


class RedisDestinationRegistry:
    """Destination registry stored in a single Redis string key."""

    KEY_CHANNEL = "destination:channel"

    def __init__(self, redis: Redis, *, key_prefix: str = DEFAULT_KEY_PREFIX) -> None:
        self.redis = redis
        self._key = f"{key_prefix}{self.KEY_CHANNEL}"

    async def set(self, channel_id: str) -> None:
        channel_id = str(channel_id).strip()
        if not channel_id:
            raise StorageError("Channel ID must not be empty")
        try:
            await self.redis.set(self._key, channel_id)
        except RedisError as e:
            raise StorageError(f"Cannot write monitoring channel: {e}") from e
        logger.info(f"Monitoring channel set to {channel_id}")

    async def get(self) -> str | None:
        try:
            value = await self.redis.get(self._key)
        except RedisError as e:
            raise StorageError(f"Cannot read monitoring channel: {e}") from e
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return value.strip() or None
