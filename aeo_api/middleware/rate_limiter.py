from __future__ import annotations

import time
from typing import Optional, Tuple

import redis.asyncio as redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from aeo_api.core.config import settings
from aeo_api.core.exceptions import RateLimitError
from aeo_api.core.logging import get_structlog_logger
from aeo_api.services.redis import get_redis_client

logger = get_structlog_logger(__name__)


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Fixed-window per-client limit on the lead capture endpoints, kept in Redis."""

    def __init__(
        self,
        app,
        redis_client: Optional[redis.Redis] = None,
        limit: Optional[int] = None,
        period: Optional[int] = None,
        path_prefix: Optional[str] = None,
    ):
        super().__init__(app)
        self.redis = redis_client
        self.rate_limit_requests = limit or settings.rate_limit_requests
        self.rate_limit_period = period or settings.rate_limit_period
        self.path_prefix = path_prefix or f"{settings.api_prefix}/auth"

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        client_id = self._get_client_id(request)

        allowed, remaining, reset_time = await self._check_rate_limit(client_id)

        if not allowed:
            retry_after = max(1, reset_time - int(time.time()))
            logger.warning(
                "rate_limit.exceeded",
                client_id=client_id,
                path=request.url.path,
                retry_after=retry_after,
            )
            error = RateLimitError(
                retry_after=retry_after,
                code="rate_limited",
                details={
                    "limit": self.rate_limit_requests,
                    "period": self.rate_limit_period,
                    "retry_after": retry_after,
                },
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.rate_limit_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)

        return response

    def _get_client_id(self, request: Request) -> str:
        """Client IP, honouring the first X-Forwarded-For hop."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return f"ip:{forwarded_for.split(',')[0].strip()}"

        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    async def _check_rate_limit(self, client_id: str) -> Tuple[bool, int, int]:
        window = int(time.time() // self.rate_limit_period)
        reset_time = (window + 1) * self.rate_limit_period
        key = f"ratelimit:{client_id}:{window}"

        try:
            if self.redis is None:
                self.redis = await get_redis_client()

            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.rate_limit_period)
                results = await pipe.execute()
                current_count = results[0]

            remaining = max(0, self.rate_limit_requests - current_count)
            return current_count <= self.rate_limit_requests, remaining, reset_time

        except Exception as e:
            # Fail open
            logger.error("rate_limit.error", error=str(e), client_id=client_id[:50])
            return True, self.rate_limit_requests, reset_time
