import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from ordersync.config import settings
from ordersync.errors import OrderSyncError
from ordersync.schemas.orders import OrderFilters
from ordersync.services.mercadolivre_service import MercadoLivreService
from ordersync.services.status_mapping import to_marketplace_status
from ordersync.services.token_provider import AccessToken, TokenProvider
from ordersync.utils.logger import get_loggers
logger = get_loggers("RemoteOrderFetcher")

DAY_START = "T00:00:00.000-00:00"
DAY_END = "T23:59:59.999-00:00"


@dataclass
class FetchParams:
    seller_id: Optional[str] = None
    limit: int = 50
    offset: int = 0
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    updated_from: Optional[str] = None
    updated_to: Optional[str] = None
    status: Optional[str] = None
    tags: Optional[str] = None
    q: Optional[str] = None
    sort: Optional[str] = None
    include_shipping: bool = False

    @classmethod
    def from_filters(cls, filters: Optional[OrderFilters], limit: int = 50, offset: int = 0,
                     include_shipping: bool = False) -> "FetchParams":
        filters = filters or OrderFilters()
        return cls(
            limit=limit,
            offset=offset,
            date_from=filters.data_inicio,
            date_to=filters.data_fim,
            updated_from=filters.atualizado_desde,
            updated_to=filters.atualizado_ate,
            status=filters.situacao,
            q=filters.search,
            sort=filters.sort,
            include_shipping=include_shipping,
        )


@dataclass
class FetchResult:
    orders: List[Dict[str, Any]] = field(default_factory=list)
    paging: Dict[str, int] = field(default_factory=dict)


def _bound(value: Optional[str], suffix: str) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    if "T" in value:
        return value
    return f"{value}{suffix}"


def clamp_limit(limit: Optional[int]) -> int:
    limit = limit or settings.ML_DEFAULT_LIMIT
    return max(1, min(int(limit), settings.ML_SEARCH_MAX_LIMIT))


def build_search_query(params: FetchParams) -> Dict[str, Any]:
    query: Dict[str, Any] = {
        "limit": clamp_limit(params.limit),
        "offset": max(int(params.offset or 0), 0),
    }
    optional = {
        "order.date_created.from": _bound(params.date_from, DAY_START),
        "order.date_created.to": _bound(params.date_to, DAY_END),
        "order.date_last_updated.from": _bound(params.updated_from, DAY_START),
        "order.date_last_updated.to": _bound(params.updated_to, DAY_END),
        "order.status": to_marketplace_status(params.status),
        "tags": params.tags,
        "q": params.q,
        "sort": params.sort,
    }
    query.update({k: v for k, v in optional.items() if v})
    return query


class RemoteOrderFetcher:
    """Paged order search for one integration account.

    One instance serves one operation: the seller id, once resolved, is
    reused by every later page.
    """

    def __init__(self, token_provider: TokenProvider, account_id: str,
                 service_factory: Callable[[], MercadoLivreService] = MercadoLivreService,
                 seller_id: Optional[str] = None):
        self.token_provider = token_provider
        self.account_id = account_id
        self.service_factory = service_factory
        self._seller_id = seller_id

    async def _resolve_seller(self, ml: MercadoLivreService, token: AccessToken,
                              params: FetchParams) -> str:
        if params.seller_id:
            self._seller_id = str(params.seller_id)
        if self._seller_id is None and token.seller_id:
            self._seller_id = token.seller_id
        if self._seller_id is None:
            me = await ml.get_me()
            self._seller_id = str(me["id"])
            logger.info(
                f"Resolved seller {self._seller_id} for account {self.account_id}")
        return self._seller_id

    async def _enrich_shipping(self, ml: MercadoLivreService, orders: List[Dict[str, Any]]):
        targets = [
            o for o in orders[:settings.ML_SHIPMENT_ENRICH_MAX]
            if isinstance(o.get("shipping"), dict) and o["shipping"].get("id")
        ]
        results = await asyncio.gather(
            *(ml.get_shipment(str(o["shipping"]["id"])) for o in targets),
            return_exceptions=True,
        )
        for order, result in zip(targets, results):
            if isinstance(result, OrderSyncError):
                logger.warning(
                    f"Shipment enrichment failed for order {order.get('id')}: {result.message}")
                continue
            if isinstance(result, BaseException):
                raise result
            order["shipping_details"] = result

    async def fetch_orders(self, params: FetchParams) -> FetchResult:
        token = await self.token_provider.get_valid_access_token(self.account_id)
        query = build_search_query(params)
        async with self.service_factory() as ml:
            ml.access_token = token.token
            seller_id = await self._resolve_seller(ml, token, params)
            data = await ml.search_orders(seller_id, query)
            orders = [o for o in (data.get("results") or []) if isinstance(o, dict)]
            if params.include_shipping and orders:
                await self._enrich_shipping(ml, orders)
        paging = data.get("paging") or {}
        return FetchResult(
            orders=orders,
            paging={
                "total": int(paging.get("total", len(orders)) or 0),
                "limit": int(paging.get("limit", query["limit"]) or 0),
                "offset": int(paging.get("offset", query["offset"]) or 0),
            },
        )

    async def fetch_all(self, params: FetchParams) -> AsyncIterator[List[Dict[str, Any]]]:
        page = replace(params, limit=clamp_limit(params.limit), offset=max(params.offset, 0))
        while True:
            result = await self.fetch_orders(page)
            if result.orders:
                yield result.orders
            fetched = page.offset + len(result.orders)
            if len(result.orders) < page.limit or fetched >= result.paging.get("total", 0):
                break
            page = replace(page, offset=fetched)
