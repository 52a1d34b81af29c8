import httpx
from typing import Any, Dict, Optional
from urllib.parse import urlencode
from ordersync.config import settings
from ordersync.errors import MarketplaceAPIError
from ordersync.services.base_http_service import BaseHttpService
from ordersync.utils.logger import get_loggers, redact_url
logger = get_loggers("MercadoLivreService")


class MercadoLivreService(BaseHttpService):
    def __init__(self, access_token: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__("mercadolivre", default_timeout=settings.HTTP_TIMEOUT_SECONDS,
                         transport=transport)
        self.access_token = access_token
        self.base_url = settings.ML_API_BASE_URL.rstrip("/")
        self.set_custom_headers({"Accept": "application/json"})

    def _auth_headers(self) -> Dict[str, str]:
        if not self.access_token:
            return {}
        return {"Authorization": f"Bearer {self.access_token}"}

    def _decode(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                f"Unreadable body from {self.service_name} on {redact_url(str(response.request.url))}")
            raise MarketplaceAPIError(
                f"{self.service_name} returned an invalid response body",
                status_code=response.status_code) from e
        if not isinstance(data, dict):
            raise MarketplaceAPIError(
                f"{self.service_name} returned an unexpected response body",
                status_code=response.status_code)
        return data

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._make_request(
            "GET", f"{self.base_url}/{endpoint.lstrip('/')}", params=params, headers=self._auth_headers())
        return self._decode(response)

    async def get_me(self) -> Dict[str, Any]:
        return await self._get("users/me")

    async def search_orders(self, seller_id: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = {"seller": seller_id, **(params or {})}
        data = await self._get("orders/search", query)
        results = data.get("results") or []
        logger.info(
            f"Fetched {len(results)} orders from MercadoLivre for seller {seller_id}")
        return data

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        return await self._get(f"orders/{order_id}")

    async def get_shipment(self, shipment_id: str) -> Dict[str, Any]:
        return await self._get(f"shipments/{shipment_id}")

    async def _token_request(self, form: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._make_request(
            "POST", f"{self.base_url}/oauth/token", data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"})
        return self._decode(response)

    async def refresh_access_token(self, refresh_token: str, client_id: Optional[str] = None) -> Dict[str, Any]:
        logger.info("Refreshing MercadoLivre access token")
        return await self._token_request({
            "grant_type": "refresh_token",
            "client_id": client_id or settings.ML_CLIENT_ID,
            "client_secret": settings.ML_CLIENT_SECRET,
            "refresh_token": refresh_token,
        })

    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> Dict[str, Any]:
        form = {
            "grant_type": "authorization_code",
            "client_id": settings.ML_CLIENT_ID,
            "client_secret": settings.ML_CLIENT_SECRET,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier
        logger.info("Exchanging MercadoLivre authorization code")
        return await self._token_request(form)

    @staticmethod
    def authorization_url(redirect_uri: str, state: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": settings.ML_CLIENT_ID,
            "redirect_uri": redirect_uri,
        }
        if state:
            params["state"] = state
        return f"{settings.ML_AUTH_BASE_URL.rstrip('/')}/authorization?{urlencode(params)}"
