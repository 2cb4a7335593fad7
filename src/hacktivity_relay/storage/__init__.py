"""Storage layer - Relayed report ledger and destination registry."""

from hacktivity_relay.storage.base import DestinationRegistry, IdentifierLedger, StorageError
from hacktivity_relay.storage.factory import StorageBundle, create_storage
from hacktivity_relay.storage.files import FileDestinationRegistry, FileLedger
from hacktivity_relay.storage.redis_backend import RedisDestinationRegistry, RedisLedger

__all__ = [
    "DestinationRegistry",
    "FileDestinationRegistry",
    "FileLedger",
    "IdentifierLedger",
    "RedisDestinationRegistry",
    "RedisLedger",
    "StorageBundle",
    "StorageError",
    "create_storage",
]
