"""Persistence for raw event records."""

from .backends import (
    JsonFileBackend,
    MemoryBackend,
    RemoteApiBackend,
    StorageBackend,
    backend_from_settings,
)
from .raw_store import DEFAULT_SEED_EVENTS, RawEventStore, default_seed_events

__all__ = [
    "DEFAULT_SEED_EVENTS",
    "JsonFileBackend",
    "MemoryBackend",
    "RawEventStore",
    "RemoteApiBackend",
    "StorageBackend",
    "backend_from_settings",
    "default_seed_events",
]
