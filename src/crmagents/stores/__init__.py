"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides record-store and counter-cache implementations and their base contracts.
"""

from __future__ import annotations

from .base import CounterCache, CounterWindow, RecordStore
from .factory import create_counter_cache_from_env, create_record_store_from_env
from .in_memory import InMemoryCounterCache, InMemoryRecordStore
from .sqlite import SQLiteRecordStore


def __getattr__(name: str):
    if name == "RedisCounterCache":
        from .redis import RedisCounterCache

        return RedisCounterCache
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "CounterCache",
    "CounterWindow",
    "RecordStore",
    "InMemoryCounterCache",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
    "RedisCounterCache",
    "create_counter_cache_from_env",
    "create_record_store_from_env",
]
