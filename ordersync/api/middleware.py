import time
import uuid
import asyncio
from typing import Dict, Tuple, List
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from ordersync.utils.logger import get_loggers, REDACTED, SENSITIVE_QUERY_KEYS
logger = get_loggers("Middleware")


def _error_body(message: str, code: str, retryable: bool = False, **extra) -> dict:
    return {"ok": False, "error": message, "code": code, "retryable": retryable, **extra}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    EXCLUDE_PATHS = {"/health", "/favicon.ico"}
    SENSITIVE_PARAMS = SENSITIVE_QUERY_KEYS | {"password", "secret", "api_key"}

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        if request.url.path in self.EXCLUDE_PATHS:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        start_time = time.time()
        self._log_request(request_id, request)
        try:
            response = await call_next(request)
        except Exception as exc:
            process_time = time.time() - start_time
            logger.error(
                f"Request failed | ID: {request_id} | {request.method} {request.url.path} | "
                f"Error: {exc.__class__.__name__}: {exc} | Duration: {process_time:.3f}s",
                exc_info=True
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=_error_body("Internal Server Error", "internal_error",
                                    request_id=request_id),
                headers={"X-Request-ID": request_id}
            )
        process_time = time.time() - start_time
        self._log_response(request_id, request, response, process_time)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        return response

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _redact_sensitive_data(self, data: dict) -> dict:
        return {
            key: REDACTED if key.lower() in self.SENSITIVE_PARAMS else value
            for key, value in data.items()
        }

    def _log_request(self, request_id: str, request: Request):
        safe_params = self._redact_sensitive_data(dict(request.query_params))
        logger.info(
            f"→ Request | ID: {request_id} | {request.method} {request.url.path} | "
            f"Client: {self._get_client_ip(request)} | "
            f"Params: {safe_params if safe_params else 'none'}"
        )

    def _log_response(self, request_id: str, request: Request, response: Response, duration: float):
        level = "info" if response.status_code < 400 else "warning" if response.status_code < 500 else "error"
        getattr(logger, level)(
            f"← Response | ID: {request_id} | {request.method} {request.url.path} | "
            f"Status: {response.status_code} | Duration: {duration:.3f}s"
        )


class RateLimitMiddleware(BaseHTTPMiddleware):
    EXEMPT_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    def __init__(self, app: ASGIApp, redis_client=None, requests_per_minute: int = 60):
        super().__init__(app)
        self.redis = redis_client
        self.requests_per_minute = requests_per_minute
        self.window_size = 60
        self._hits: Dict[str, List[float]] = {}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)
        client_id = self._get_client_identifier(request)
        is_allowed, retry_after = await self._check_rate_limit(client_id)
        if not is_allowed:
            logger.warning(
                f"Rate limit exceeded | Client: {client_id} | Path: {request.url.path} | "
                f"Retry after: {retry_after}s"
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content=_error_body("Too many requests", "rate_limited", True,
                                    retry_after=retry_after),
                headers={"Retry-After": str(retry_after)}
            )
        return await call_next(request)

    def _get_client_identifier(self, request: Request) -> str:
        ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        if not ip:
            ip = request.client.host if request.client else "unknown"
        return f"ip:{ip}"

    async def _check_rate_limit(self, client_id: str) -> Tuple[bool, int]:
        if self.redis:
            return await self._check_rate_limit_redis(client_id)
        return self._check_rate_limit_memory(client_id)

    async def _check_rate_limit_redis(self, client_id: str) -> Tuple[bool, int]:
        try:
            key = f"rate_limit:{client_id}"
            now = time.time()
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window_size)
            pipe.zcard(key)
            pipe.zadd(key, {str(now): now})
            pipe.expire(key, self.window_size)
            results = await pipe.execute()
            if results[1] >= self.requests_per_minute:
                oldest_request = await self.redis.zrange(key, 0, 0, withscores=True)
                if oldest_request:
                    return False, int(self.window_size - (now - oldest_request[0][1])) + 1
                return False, self.window_size
            return True, 0
        except Exception as e:
            logger.error(f"Redis rate limiting error: {e}")
            return self._check_rate_limit_memory(client_id)

    def _check_rate_limit_memory(self, client_id: str) -> Tuple[bool, int]:
        now = time.time()
        window_start = now - self.window_size
        hits = [t for t in self._hits.get(client_id, []) if t > window_start]
        if len(hits) >= self.requests_per_minute:
            self._hits[client_id] = hits
            return False, int(self.window_size - (now - hits[0])) + 1
        hits.append(now)
        self._hits[client_id] = hits
        if len(self._hits) > 10000:
            self._cleanup_old_clients(window_start)
        return True, 0

    def _cleanup_old_clients(self, window_start: float):
        stale = [c for c, hits in self._hits.items() if not hits or hits[-1] < window_start]
        for client_id in stale:
            del self._hits[client_id]
        logger.debug(f"Cleaned up {len(stale)} old rate limit entries")


class TimeoutMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, timeout_seconds: int = 30):
        super().__init__(app)
        self.timeout = timeout_seconds

    async def dispatch(self, request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Request timeout | {request.method} {request.url.path} | Timeout: {self.timeout}s")
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content=_error_body(
                    f"Request exceeded {self.timeout} second timeout", "timeout", True)
            )
