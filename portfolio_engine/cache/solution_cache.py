"""
Result cache for optimization runs.

Solutions are stored as camelCase JSON under two keys:

- ``{prefix}:{problem_id}``: lookup by problem id
- ``{prefix}:request:{sha256}``: lookup by request fingerprint, used to
  answer a repeated request without solving again

The cache is best-effort. Every store failure is logged at WARNING and
treated as a miss (reads) or ignored (writes); callers never see it.

Backends implement the small ``CacheStore`` protocol. ``InMemoryCacheStore``
keeps entries in a dict with expiry times; ``RedisCacheStore`` uses
``SETEX`` on a redis server.
"""

from typing import Callable, Dict, Optional, Protocol, Tuple
import hashlib
import logging
import threading
import time

import redis
from pydantic import ValidationError

from portfolio_engine.config import CacheConfig
from portfolio_engine.problems.models import Solution


# Configure module logger
logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    """Minimal key/value store with per-entry expiry."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        ...


class InMemoryCacheStore:
    """Process-local store; expired entries are dropped on read and swept on write."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
            self._entries[key] = (value, now + ttl_seconds)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore:
    """
    Redis-backed store.

    Args:
        redis_url: Connection URL, e.g. ``redis://localhost:6379/0``
        client: Pre-built client (takes precedence over ``redis_url``)
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        if client is None:
            if not redis_url:
                raise ValueError("redis_url is required when no client is given")
            client = redis.Redis.from_url(redis_url, decode_responses=True)
        self.client = client

    def get(self, key: str) -> Optional[str]:
        value = self.client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self.client.setex(key, ttl_seconds, value)


def create_store(config: CacheConfig) -> CacheStore:
    """Build the store selected by ``config``."""
    if config.uses_redis:
        logger.info("Using redis result cache")
        return RedisCacheStore(config.redis_url)
    logger.info("Using in-memory result cache")
    return InMemoryCacheStore()


def request_fingerprint(payload: str) -> str:
    """Stable hash of a serialized request."""
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class SolutionCache:
    """
    Best-effort Solution cache on top of a ``CacheStore``.

    Attributes:
        store: Backend store
        config: TTL, key prefix and on/off switch
    """

    def __init__(self, store: Optional[CacheStore] = None, config: Optional[CacheConfig] = None):
        self.config = config or CacheConfig()
        self.store = store if store is not None else create_store(self.config)

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def problem_key(self, problem_id: str) -> str:
        return f"{self.config.key_prefix}:{problem_id}"

    def request_key(self, fingerprint: str) -> str:
        return f"{self.config.key_prefix}:request:{fingerprint}"

    def get(self, key: str) -> Optional[Solution]:
        """Cached solution for ``key``, or None on miss or failure."""
        if not self.enabled:
            return None
        try:
            payload = self.store.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if payload is None:
            return None
        try:
            return Solution.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None

    def put(self, solution: Solution, fingerprint: Optional[str] = None) -> bool:
        """
        Store a solution under its problem key (and request key).

        Returns:
            True when every write succeeded
        """
        if not self.enabled:
            return False

        payload = solution.model_dump_json(by_alias=True)
        keys = [self.problem_key(solution.problem_id)]
        if fingerprint is not None:
            keys.append(self.request_key(fingerprint))

        ok = True
        for key in keys:
            try:
                self.store.set_with_ttl(key, payload, self.config.ttl_seconds)
            except Exception as e:
                logger.warning(f"Cache write failed for {key}: {e}")
                ok = False
        return ok
