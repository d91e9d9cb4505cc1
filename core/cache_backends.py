"""
Cache backends behind one interface.

Backends:
    - LocMemCacheBackend: in-process dict, process-lifetime only, no serialization
    - RedisCacheBackend: Redis hash per key, serialized payloads, shared across processes
    - NullCacheBackend: caching disabled, every read is a miss

Each entry may carry an absolute TTL (hard deadline from creation) and a
sliding window (reset by refresh_expiry). When both are set the absolute TTL
caps every extension.
"""
import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import redis

from .exceptions import CacheUnavailable

logger = logging.getLogger(__name__)

# Marker for "no expiry component" inside Redis hashes
NO_EXPIRY = -1


class CacheBackend:
    """
    Interface shared by every cache backend.

    Backends with `serializes = True` accept and return bytes; the others
    accept and return snapshot objects directly.
    """
    serializes = True

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None on miss."""
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl: Optional[float] = None,
            sliding: Optional[float] = None) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def refresh_expiry(self, key: str) -> None:
        """Restart the sliding window of an entry, bounded by its absolute TTL."""
        raise NotImplementedError

    def remove_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with prefix. Returns the count."""
        raise NotImplementedError


class _Entry:
    __slots__ = ('value', 'absolute_deadline', 'sliding', 'expires_at')

    def __init__(self, value, absolute_deadline, sliding, expires_at):
        self.value = value
        self.absolute_deadline = absolute_deadline
        self.sliding = sliding
        self.expires_at = expires_at


def _effective_deadline(now: float, absolute_deadline: Optional[float],
                        sliding: Optional[float]) -> Optional[float]:
    deadlines = []
    if absolute_deadline is not None:
        deadlines.append(absolute_deadline)
    if sliding is not None:
        deadlines.append(now + sliding)
    return min(deadlines) if deadlines else None


class LocMemCacheBackend(CacheBackend):
    """In-process cache. Lookups never block on I/O."""
    serializes = False

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _live_entry(self, key: str, now: float) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def get(self, key):
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                return None
            return copy.deepcopy(entry.value)

    def set(self, key, value, ttl=None, sliding=None):
        now = self._clock()
        absolute_deadline = now + ttl if ttl is not None else None
        entry = _Entry(
            copy.deepcopy(value),
            absolute_deadline,
            sliding,
            _effective_deadline(now, absolute_deadline, sliding),
        )
        with self._lock:
            self._entries[key] = entry

    def remove(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def refresh_expiry(self, key):
        with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)
            if entry is None or entry.sliding is None:
                return
            entry.expires_at = _effective_deadline(now, entry.absolute_deadline, entry.sliding)

    def remove_prefix(self, prefix):
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def __len__(self):
        with self._lock:
            now = self._clock()
            return sum(1 for key in list(self._entries) if self._live_entry(key, now))


class RedisCacheBackend(CacheBackend):
    """
    Redis-backed cache.

    Each key holds a hash with the payload (`data`), the absolute deadline in
    epoch milliseconds (`absexp`) and the sliding window in milliseconds
    (`sldexp`). The Redis key expiry always equals the effective deadline, so
    Redis evicts entries on its own.
    """

    def __init__(self, url: str = 'redis://localhost:6379/0', key_prefix: str = '',
                 client: Optional[redis.Redis] = None,
                 clock: Callable[[], float] = time.time,
                 socket_timeout: float = 5):
        self.key_prefix = key_prefix
        self._clock = clock
        self.client = client or redis.Redis.from_url(
            url,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
        )

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get(self, key):
        try:
            data = self.client.hget(self._key(key), 'data')
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis get failed for {key}: {e}") from e
        return data

    def set(self, key, value, ttl=None, sliding=None):
        now_ms = self._now_ms()
        absexp = now_ms + int(ttl * 1000) if ttl is not None else NO_EXPIRY
        sldexp = int(sliding * 1000) if sliding is not None else NO_EXPIRY
        deadline = _effective_deadline(
            now_ms,
            absexp if absexp != NO_EXPIRY else None,
            sldexp if sldexp != NO_EXPIRY else None,
        )
        redis_key = self._key(key)
        try:
            with self.client.pipeline() as pipe:
                pipe.delete(redis_key)
                pipe.hset(redis_key, mapping={'data': value, 'absexp': absexp, 'sldexp': sldexp})
                if deadline is not None:
                    pipe.pexpire(redis_key, max(1, int(deadline - now_ms)))
                pipe.execute()
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis set failed for {key}: {e}") from e

    def remove(self, key):
        try:
            self.client.delete(self._key(key))
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis remove failed for {key}: {e}") from e

    def refresh_expiry(self, key):
        redis_key = self._key(key)
        try:
            absexp, sldexp = self.client.hmget(redis_key, ['absexp', 'sldexp'])
            if sldexp is None or int(sldexp) == NO_EXPIRY:
                return
            now_ms = self._now_ms()
            absolute = int(absexp) if absexp is not None and int(absexp) != NO_EXPIRY else None
            remaining = _effective_deadline(now_ms, absolute, int(sldexp)) - now_ms
            if remaining <= 0:
                self.client.delete(redis_key)
            else:
                self.client.pexpire(redis_key, int(remaining))
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis refresh failed for {key}: {e}") from e

    def remove_prefix(self, prefix):
        removed = 0
        try:
            batch = []
            for redis_key in self.client.scan_iter(match=f"{self._key(prefix)}*", count=500):
                batch.append(redis_key)
                if len(batch) >= 500:
                    removed += self.client.delete(*batch)
                    batch = []
            if batch:
                removed += self.client.delete(*batch)
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis prefix removal failed for {prefix}: {e}") from e
        return removed


class NullCacheBackend(CacheBackend):
    """Caching disabled: every read misses and writes are dropped."""
    serializes = False

    def get(self, key):
        return None

    def set(self, key, value, ttl=None, sliding=None):
        pass

    def remove(self, key):
        pass

    def refresh_expiry(self, key):
        pass

    def remove_prefix(self, prefix):
        return 0


def build_cache_backend(config: Dict[str, Any]) -> CacheBackend:
    """
    Build a backend from the INVENTORY_CACHE settings dict.

    Recognised BACKEND values: 'locmem', 'redis', 'none'.
    """
    name = config.get('BACKEND', 'locmem').lower()
    if name == 'redis':
        logger.info(f"Using Redis cache backend at {config.get('LOCATION')}")
        return RedisCacheBackend(
            url=config.get('LOCATION', 'redis://localhost:6379/0'),
            key_prefix=config.get('KEY_PREFIX', ''),
            socket_timeout=config.get('SOCKET_TIMEOUT', 5),
        )
    if name == 'locmem':
        logger.info("Using in-process cache backend")
        return LocMemCacheBackend()
    if name == 'none':
        logger.info("Caching disabled")
        return NullCacheBackend()
    raise ValueError(f"Unknown cache backend: {name}")
