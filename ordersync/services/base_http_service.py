import httpx
from typing import Optional, Dict
from ordersync.config import settings
from ordersync.errors import AuthExpiredError, MarketplaceAPIError, RateLimitedError, UpstreamServerError
from ordersync.utils.retry_decorators import http_retry
from ordersync.utils.logger import get_loggers, redact_url
logger = get_loggers("BaseHttpService")


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


class BaseHttpService:
    def __init__(self, service_name: str, default_timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.service_name = service_name
        self.default_timeout = default_timeout
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None
        self._custom_headers: Dict[str, str] = {}

    async def init_client(self, **client_kwargs):
        if not self.client:
            kwargs = {
                "timeout": self.default_timeout,
                **client_kwargs
            }
            if self.transport is not None:
                kwargs["transport"] = self.transport
            self.client = httpx.AsyncClient(**kwargs)
            logger.debug(f"Initialized HTTP client for {self.service_name}")

    async def close_client(self):
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.debug(f"Closed HTTP client for {self.service_name}")

    def set_custom_headers(self, headers: Dict[str, str]):
        self._custom_headers.update(headers)

    def raise_for_status(self, response: httpx.Response, url: str):
        status = response.status_code
        if status < 400:
            return
        safe_url = redact_url(url)
        if status in (401, 403):
            logger.warning(
                f"{self.service_name} rejected credentials ({status}) for {safe_url}")
            raise AuthExpiredError(
                f"{self.service_name} rejected the access token", status_code=status)
        if status == 429:
            retry_after = _retry_after(response)
            logger.warning(
                f"Rate limited by {self.service_name} on {safe_url}, retry after {retry_after}s")
            raise RateLimitedError(
                f"{self.service_name} rate limit reached", retry_after=retry_after)
        logger.error(
            f"HTTP error for {self.service_name}: {status} on {safe_url}")
        if status >= 500:
            raise UpstreamServerError(
                f"{self.service_name} upstream error {status}", status_code=status)
        raise MarketplaceAPIError(
            f"{self.service_name} request failed with {status}", status_code=status)

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        await self.init_client()
        headers = {**self._custom_headers, **kwargs.pop('headers', {})}
        logger.debug(
            f"Making {method} request to {redact_url(url)} for {self.service_name}")
        response = await self.client.request(method, url, headers=headers, **kwargs)
        self.raise_for_status(response, str(response.request.url))
        logger.debug(f"Successfully completed {method} request to {redact_url(url)}")
        return response

    async def _make_request(self, method: str, url: str, **kwargs) -> httpx.Response:
        retrying = http_retry(
            max_attempts=settings.HTTP_RETRY_ATTEMPTS,
            min_wait=settings.HTTP_RETRY_MIN_WAIT,
            max_wait=settings.HTTP_RETRY_MAX_WAIT,
        )
        try:
            return await retrying(self._send)(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error(
                f"Transport error for {self.service_name} on {redact_url(url)}: {e.__class__.__name__}")
            raise MarketplaceAPIError(
                f"{self.service_name} unreachable: {e.__class__.__name__}") from e

    async def __aenter__(self):
        await self.init_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_client()
