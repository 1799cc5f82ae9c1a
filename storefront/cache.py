# storefront/cache.py
"""Small in-process TTL cache for catalog reads.

Backed by ``cachetools.TLRUCache`` so each entry carries its own TTL. Admin
writes call ``invalidate_by_pattern`` with the table name so the next read
hits the database again.
"""
import base64
import hashlib
import json
import logging
import threading
import time
from functools import wraps

from cachetools import TLRUCache
from flask import current_app

log = logging.getLogger("shop")


def _expires_at(_key, entry, now):
    return now + entry[1]


class TTLCache:
    def __init__(self, maxsize=1024, clock=time.monotonic):
        self._entries = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=clock)
        self._lock = threading.Lock()

    def set(self, key, value, ttl_minutes=5):
        with self._lock:
            self._entries[key] = (value, ttl_minutes * 60)

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
        return None if entry is None else entry[0]

    def delete(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def invalidate_by_pattern(self, pattern):
        """Drop every key containing ``pattern``; returns how many went."""
        with self._lock:
            self._entries.expire()
            doomed = [k for k in list(self._entries) if pattern in k]
            for k in doomed:
                self._entries.pop(k, None)
        return len(doomed)

    def keys(self):
        with self._lock:
            self._entries.expire()
            return list(self._entries)

    def __len__(self):
        with self._lock:
            self._entries.expire()
            return len(self._entries)


store_cache = TTLCache()


def cache_key(table, operation, params=None):
    base = f"{table}_{operation}"
    if params:
        raw = params if isinstance(params, str) else json.dumps(params, sort_keys=True, default=str)
        digest = hashlib.sha1(raw.encode()).digest()
        return f"{base}_{base64.urlsafe_b64encode(digest).decode()[:20]}"
    return base


def cached(table, ttl_minutes=None):
    """Cache a read function's result under ``<table>_<function name>``.

    Without an explicit ttl the app's CACHE_TTL_MINUTES applies.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            params = [list(args), kwargs] if (args or kwargs) else None
            key = cache_key(table, fn.__name__, params)
            hit = store_cache.get(key)
            if hit is not None:
                log.debug(f"cache hit {key}")
                return hit
            log.debug(f"cache miss {key}")
            result = fn(*args, **kwargs)
            ttl = ttl_minutes if ttl_minutes is not None else current_app.config.get("CACHE_TTL_MINUTES", 5)
            store_cache.set(key, result, ttl)
            return result
        return wrapper
    return decorator
