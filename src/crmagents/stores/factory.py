"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides factory functions for creating store backends based on environment variables.
"""

from __future__ import annotations

import os

from .base import CounterCache, RecordStore
from .in_memory import InMemoryCounterCache, InMemoryRecordStore
from .sqlite import SQLiteRecordStore


def create_record_store_from_env() -> RecordStore:
    """Create a record store based on `CRMAGENTS_RECORD_BACKEND`."""
    backend = os.getenv("CRMAGENTS_RECORD_BACKEND", "sqlite").strip().lower()

    if backend in ("mem", "memory", "inmemory", "in_memory"):
        return InMemoryRecordStore()

    if backend in ("sqlite", "sqlite3"):
        path = os.getenv("CRMAGENTS_SQLITE_PATH", "crmagents.sqlite3")
        return SQLiteRecordStore(path=path)

    raise ValueError(f"Unknown CRMAGENTS_RECORD_BACKEND: {backend}")


def create_counter_cache_from_env() -> CounterCache:
    """Create a counter cache based on `CRMAGENTS_CACHE_BACKEND`."""
    backend = os.getenv("CRMAGENTS_CACHE_BACKEND", "memory").strip().lower()

    if backend in ("mem", "memory", "inmemory", "in_memory"):
        return InMemoryCounterCache()

    if backend in ("redis",):
        from .redis import RedisCounterCache

        url = os.getenv("CRMAGENTS_REDIS_URL")
        if not url:
            host = os.getenv("CRMAGENTS_REDIS_HOST", "localhost")
            port = os.getenv("CRMAGENTS_REDIS_PORT", "6379")
            db = os.getenv("CRMAGENTS_REDIS_DB", "0")
            password = os.getenv("CRMAGENTS_REDIS_PASSWORD", "")
            url = (
                f"redis://:{password}@{host}:{port}/{db}"
                if password
                else f"redis://{host}:{port}/{db}"
            )
        namespace = os.getenv("CRMAGENTS_REDIS_NAMESPACE", "crmagents")
        return RedisCounterCache(url=url, namespace=namespace)

    raise ValueError(f"Unknown CRMAGENTS_CACHE_BACKEND: {backend}")
