"""
Rate Limiting Middleware

Token bucket per tenant, stored in Redis so every API worker draws from
the same bucket.

A bucket holds up to RATE_LIMIT_BURST tokens and refills at
RATE_LIMIT_PER_MINUTE. Requests made with a tenant's API key and with its
users' JWTs share one bucket. Requests without a tenant (registration,
login, ...) are not limited.

If Redis is down the limiter lets requests through rather than take the
API down with it.
"""
import logging
import math
import time
from typing import Optional, Tuple

import redis
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.config import get_settings
from app.core.exceptions import RateLimitExceeded, error_response

logger = logging.getLogger(__name__)
settings = get_settings()

EXCLUDED_PATHS = ("/docs", "/redoc", "/openapi.json", "/health")

# Attempts at the read-modify-write before a contended request is denied
MAX_TRANSACTION_RETRIES = 5


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        redis_client: Optional["redis.Redis"] = None,
        rate_limit_per_minute: int = None,
        burst: int = None,
        enabled: bool = None,
    ):
        super().__init__(app)
        self.enabled = settings.RATE_LIMIT_ENABLED if enabled is None else enabled
        self.rate_per_second = (rate_limit_per_minute or settings.RATE_LIMIT_PER_MINUTE) / 60.0
        self.burst = burst or settings.RATE_LIMIT_BURST
        # Keys outlive a full refill by a second, then Redis drops them
        self.key_ttl = math.ceil(self.burst / self.rate_per_second) + 1

        self.redis_client = redis_client
        if self.enabled and redis_client is None:
            self.redis_client = self._connect()

    @property
    def redis_available(self) -> bool:
        return self.redis_client is not None

    def _connect(self) -> Optional["redis.Redis"]:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True, socket_connect_timeout=5)
        try:
            client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error(f"Redis unreachable at startup, rate limiting disabled: {e}")
            return None
        logger.info("Rate limiting backed by Redis")
        return client

    async def dispatch(self, request: Request, call_next):
        tenant = getattr(request.state, "tenant", None)
        if (
            not self.enabled
            or not self.redis_available
            or tenant is None
            or request.url.path.startswith(EXCLUDED_PATHS)
        ):
            return await call_next(request)

        # Blocking Redis round trips stay off the event loop
        allowed, retry_after = await run_in_threadpool(self.check_rate_limit, tenant.tenant_id)
        if allowed:
            return await call_next(request)

        logger.warning(f"Rate limit exceeded for tenant {tenant.name}", extra={"tenant_id": tenant.tenant_id})
        return error_response(RateLimitExceeded(retry_after), retry_after=retry_after)

    def check_rate_limit(self, tenant_id: str, now: float = None) -> Tuple[bool, int]:
        """
        Take one token from the tenant's bucket.

        Returns (allowed, retry_after_seconds). A new bucket starts full.

        The read and the write run as a WATCH/MULTI transaction: if another
        worker changes the bucket in between, the write is discarded and the
        take is retried against the new state.
        """
        key = f"rate_limit:{tenant_id}"
        now = time.time() if now is None else now

        try:
            with self.redis_client.pipeline() as pipe:
                for _ in range(MAX_TRANSACTION_RETRIES):
                    try:
                        pipe.watch(key)
                        bucket = pipe.hgetall(key)
                        tokens = float(bucket.get("tokens", self.burst))
                        updated = float(bucket.get("updated", now))

                        tokens = min(self.burst, tokens + max(0.0, now - updated) * self.rate_per_second)
                        if tokens < 1:
                            pipe.unwatch()
                            return False, int((1 - tokens) / self.rate_per_second) + 1

                        pipe.multi()
                        pipe.hset(key, mapping={"tokens": tokens - 1, "updated": now})
                        pipe.expire(key, self.key_ttl)
                        pipe.execute()
                        return True, 0
                    except redis.WatchError:
                        continue
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return True, 0

        logger.warning(f"Rate limit bucket for tenant {tenant_id} too contended, request denied")
        return False, 1
