"""
Order Service — Idempotency Key Middleware

Order commands are retried by flaky tablets; a retried confirm or item add
must not run twice. Using Redis:
  - Cache hit  → return cached response immediately (no business logic)
  - Cache miss → execute handler, store response for IDEMPOTENCY_KEY_TTL_SECONDS

Keys are scoped by restaurant and user, so no one replays another caller's
response. The stored entry remembers the method and path it answered; the same
key sent with a different command is refused with 422 and nothing runs. When
Redis is unavailable the request runs normally.
"""
import json
import logging
import re

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from order_service.core.config import get_settings
from order_service.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)

IDEMPOTENCY_PREFIX = "idempotent:"
IDEMPOTENCY_METHODS = {"POST", "PATCH", "DELETE"}
IDEMPOTENCY_PATH = re.compile(r"^/api/v1/orders(/.*)?$")


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """
    Applies to state-mutating order endpoints.
    Reads Idempotency-Key header and either:
      1. Returns cached response (replay)
      2. Executes handler and caches the response
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method not in IDEMPOTENCY_METHODS:
            return await call_next(request)

        if not IDEMPOTENCY_PATH.match(request.url.path):
            return await call_next(request)

        idem_key = request.headers.get("Idempotency-Key")
        user = getattr(request.state, "user", None)
        if not idem_key or user is None:
            return await call_next(request)

        redis = get_redis()
        cache_key = f"{IDEMPOTENCY_PREFIX}{user.restaurant_id}:{user.user_id}:{idem_key}"
        fingerprint = f"{request.method} {request.url.path}"

        # Cache HIT → replay stored response
        try:
            cached = await redis.get(cache_key)
        except Exception as exc:
            logger.warning("Idempotency cache unavailable, running request: %s", exc)
            return await call_next(request)
        if cached:
            data = json.loads(cached)
            if data.get("request") != fingerprint:
                logger.info("Idempotency-Key %s reused for %s (stored for %s)", idem_key, fingerprint, data.get("request"))
                return JSONResponse(
                    content={"detail": "Idempotency-Key was already used for a different request."},
                    status_code=422,
                )
            return JSONResponse(
                content=data["body"],
                status_code=data["status_code"],
                headers={"X-Idempotency-Replay": "true"},
            )

        # Cache MISS → proceed to handler
        response = await call_next(request)

        # Capture and cache response body
        body_bytes = b""
        async for chunk in response.body_iterator:
            body_bytes += chunk

        try:
            body = json.loads(body_bytes)
        except ValueError:
            body = body_bytes.decode("utf-8", errors="replace")

        if response.status_code < 500:
            try:
                await redis.setex(
                    cache_key,
                    settings.IDEMPOTENCY_KEY_TTL_SECONDS,
                    json.dumps({"request": fingerprint, "body": body, "status_code": response.status_code}),
                )
            except Exception as exc:
                logger.warning("Failed to store idempotent response for %s: %s", cache_key, exc)

        return Response(
            content=body_bytes,
            status_code=response.status_code,
            media_type=response.media_type,
            headers=dict(response.headers),
        )
