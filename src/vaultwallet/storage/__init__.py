"""Persistence for encrypted wallet data."""

from vaultwallet.storage.base import KeyValueStore, MemoryKeyValueStore
from vaultwallet.storage.database import close_db, init_db
from vaultwallet.storage.repository import SqlKeyValueStore

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqlKeyValueStore",
    "init_db",
    "close_db",
]
