"""Fixed-window request limiter keyed by acting identity."""
import json
import logging
import time
from typing import Dict, Optional
import redis
from .config import RATE_LIMIT_REDIS_URL, SIGN_RATE_LIMIT, SIGN_RATE_WINDOW
from .errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, limits: Dict[str, dict], redis_url: Optional[str] = None):
        self.limits = limits
        self.redis_client = redis.from_url(redis_url) if redis_url else None
        self.memory_store: Dict[str, dict] = {}

    def _key(self, scope: str, identity: str) -> str:
        return f"rate_limit:{scope}:{identity}"

    def _get(self, key: str, now: float) -> dict:
        if self.redis_client is not None:
            raw = self.redis_client.get(key)
            return json.loads(raw) if raw else {"count": 0, "window_start": now}
        return self.memory_store.get(key, {"count": 0, "window_start": now})

    def _set(self, key: str, data: dict, ttl: int, now: float):
        if self.redis_client is not None:
            self.redis_client.setex(key, ttl, json.dumps(data))
            return
        data["expires"] = now + ttl
        self.memory_store[key] = data
        self.memory_store = {k: v for k, v in self.memory_store.items() if v.get("expires", now) > now}

    def check(self, scope: str, identity: str, now: Optional[float] = None):
        """Count one request; raise ``RateLimitExceeded`` past the limit."""
        limit = self.limits.get(scope)
        if limit is None:
            return
        now = time.time() if now is None else now
        key = self._key(scope, identity)
        try:
            data = self._get(key, now)
            if now - data["window_start"] >= limit["window"]:
                data = {"count": 1, "window_start": now}
            else:
                data["count"] += 1
            self._set(key, data, limit["window"], now)
        except redis.RedisError:
            logger.warning("rate limit store unavailable; letting %s through", identity)
            return
        if data["count"] > limit["requests"]:
            retry_after = max(1, int(limit["window"] - (now - data["window_start"])))
            logger.info("rate limit %s hit by %s", scope, identity)
            raise RateLimitExceeded(headers={"Retry-After": str(retry_after)})

    def reset(self):
        self.memory_store.clear()


rate_limiter = RateLimiter(
    {"sign": {"requests": SIGN_RATE_LIMIT, "window": SIGN_RATE_WINDOW}},
    redis_url=RATE_LIMIT_REDIS_URL,
)
