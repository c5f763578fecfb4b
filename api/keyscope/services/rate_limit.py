"""
Token bucket rate limiting with a pluggable bucket store.

The limiter holds no global state: the API builds one at startup (Redis
store in production, in-memory store for tests and single-process runs)
and hangs it on app.state.
"""
import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger()


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int
    key: str


class InMemoryBucketStore:
    """Buckets in a dict, guarded by an asyncio lock. Single process only.

    A bucket that has refilled completely is the same as no bucket, so those
    are swept out every `sweep_every` takes.
    """

    def __init__(self, sweep_every: int = 1000):
        # key -> (tokens, last_refill, full_at)
        self._buckets: Dict[str, Tuple[float, float, float]] = {}
        self._lock = asyncio.Lock()
        self.sweep_every = sweep_every
        self._takes = 0

    def __len__(self) -> int:
        return len(self._buckets)

    def _sweep(self, now: float) -> None:
        full = [key for key, (_, _, full_at) in self._buckets.items() if full_at <= now]
        for key in full:
            del self._buckets[key]

    async def take(self, key: str, capacity: int, refill_rate: float, now: float) -> Tuple[bool, float]:
        async with self._lock:
            self._takes += 1
            if self._takes % self.sweep_every == 0:
                self._sweep(now)

            tokens, last_refill, _ = self._buckets.get(key, (float(capacity), now, now))
            tokens = min(capacity, tokens + max(0.0, now - last_refill) * refill_rate)
            allowed = tokens >= 1
            if allowed:
                tokens -= 1
            full_at = now + (capacity - tokens) / refill_rate
            self._buckets[key] = (tokens, now, full_at)
            return allowed, tokens


# Refill and take atomically
TAKE_SCRIPT = """
local capacity = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local ttl = tonumber(ARGV[4])
local state = redis.call('HMGET', KEYS[1], 'tokens', 'last_refill')
local tokens = tonumber(state[1]) or capacity
local last = tonumber(state[2]) or now
tokens = math.min(capacity, tokens + math.max(0, now - last) * rate)
local allowed = 0
if tokens >= 1 then
  tokens = tokens - 1
  allowed = 1
end
redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'last_refill', tostring(now))
redis.call('EXPIRE', KEYS[1], ttl)
return {allowed, tostring(tokens)}
"""


class RedisBucketStore:
    def __init__(self, redis: aioredis.Redis, prefix: str = "keyscope:ratelimit"):
        self.redis = redis
        self.prefix = prefix

    async def take(self, key: str, capacity: int, refill_rate: float, now: float) -> Tuple[bool, float]:
        ttl = max(1, math.ceil(capacity / refill_rate) * 2)
        allowed, tokens = await self.redis.eval(
            TAKE_SCRIPT, 1, f"{self.prefix}:{key}", capacity, refill_rate, now, ttl
        )
        return bool(int(allowed)), float(tokens)


class TokenBucketLimiter:
    """`limit` requests per `period` seconds per key, refilled continuously."""

    def __init__(self, store, period: int = 60, clock: Callable[[], float] = time.time):
        self.store = store
        self.period = period
        self.clock = clock

    async def check(self, key: str, limit: int) -> RateLimitResult:
        refill_rate = limit / self.period
        try:
            allowed, tokens = await self.store.take(key, limit, refill_rate, self.clock())
        except RedisError as e:
            # Fail open while the store is unreachable
            logger.error("rate_limit: store unavailable, allowing request", key=key, error=str(e))
            return RateLimitResult(allowed=True, limit=limit, remaining=limit, retry_after=0, key=key)

        retry_after = 0 if allowed else max(1, math.ceil((1 - tokens) / refill_rate))
        if not allowed:
            logger.warning("rate_limit: exceeded", key=key, limit=limit, retry_after=retry_after)
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=int(tokens),
            retry_after=retry_after,
            key=key,
        )
