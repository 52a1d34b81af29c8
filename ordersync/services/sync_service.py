from dataclasses import dataclass, field
from functools import lru_cache
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from ordersync.config import settings
from ordersync.errors import (AccountNotFoundError, OrderSyncError, RecordError,
                              UnknownProviderError)
from ordersync.schemas.orders import (AggregateCounters, BulkActionResult, CanonicalOrder,
                                      OrderFilters, RecordErrorOut, SkippedOrder, SyncRequest)
from ordersync.services.eligibility import (CANCEL_MARKER, STOCK_MARKER, Eligibility,
                                            append_marker, cancel_eligibility, stock_eligibility)
from ordersync.services.mercadolivre_service import MercadoLivreService
from ordersync.services.order_fetcher import FetchParams, RemoteOrderFetcher
from ordersync.services.order_transformer import transform_order
from ordersync.services.status_mapping import CanonicalStatus
from ordersync.services.store import OrderStore, Pagination, row_matches
from ordersync.services.token_provider import PROVIDER, TokenProvider, utcnow
from ordersync.utils.logger import get_loggers
logger = get_loggers("OrderSyncService")

SOURCE_STORE = "banco"
SOURCE_LIVE = "tempo-real"
INITIAL_SYNC_DAYS = 30
ORDER_SEARCH_COLUMNS = "nome_cliente|numero|cpf_cnpj|obs__ilike"
HISTORY_SEARCH_COLUMNS = "numero_pedido|cliente_nome|sku_produto__ilike"
# search parameters the marketplace has no equivalent for
STORE_ONLY_FILTERS = ("cidade__ilike", "uf", "valor_total__gte", "valor_total__lte")


@dataclass
class SyncOutcome:
    source: str
    results: List[Dict[str, Any]] = field(default_factory=list)
    paging: Dict[str, int] = field(default_factory=dict)
    errors: List[RecordErrorOut] = field(default_factory=list)
    synced: int = 0
    error: Optional[OrderSyncError] = None
    unsupported: bool = False


@dataclass
class IngestResult:
    orders: List[CanonicalOrder] = field(default_factory=list)
    synced: int = 0
    errors: List[RecordErrorOut] = field(default_factory=list)


def _record_error(order_id: Optional[str], kind: str, message: str) -> RecordErrorOut:
    return RecordErrorOut(order_id=order_id, kind=kind, message=message)


def _ml_timestamp(value: datetime) -> str:
    value = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000-00:00")


def store_filters(account_id: str, filters: Optional[OrderFilters]) -> Dict[str, Any]:
    filters = filters or OrderFilters()
    query: Dict[str, Any] = {"integration_account_id": account_id}
    optional = {
        "situacao": filters.situacao,
        "data_pedido__gte": filters.data_inicio,
        "data_pedido__lte": filters.data_fim,
        "last_updated__gte": filters.atualizado_desde,
        "last_updated__lte": filters.atualizado_ate,
        ORDER_SEARCH_COLUMNS: filters.search,
        "cidade__ilike": filters.cidade,
        "uf": filters.uf.upper() if filters.uf else None,
        "valor_total__gte": filters.valor_min,
        "valor_total__lte": filters.valor_max,
    }
    query.update({k: v for k, v in optional.items() if v is not None and v != ""})
    return query


def store_only_filters(account_id: str, filters: Optional[OrderFilters]) -> Dict[str, Any]:
    query = store_filters(account_id, filters)
    return {k: v for k, v in query.items() if k in STORE_ONLY_FILTERS}


class OrderSyncService:
    def __init__(self, store: OrderStore, token_provider: TokenProvider,
                 service_factory: Callable[[], MercadoLivreService] = MercadoLivreService,
                 transform: Callable[..., CanonicalOrder] = transform_order,
                 fetcher_factory: Optional[Callable[[Dict[str, Any]], RemoteOrderFetcher]] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.token_provider = token_provider
        self.service_factory = service_factory
        self.transform = transform
        self.fetcher_factory = fetcher_factory
        self.clock = clock

    async def load_account(self, tenant_id: Optional[str], account_id: str) -> Dict[str, Any]:
        filters: Dict[str, Any] = {"id": account_id, "is_active": True}
        if tenant_id is not None:
            filters["tenant_id"] = tenant_id
        found = await self.store.select("integration_accounts", filters)
        if not found.rows:
            raise AccountNotFoundError(
                "Integration account not found", account_id=account_id)
        return found.rows[0]

    def fetcher_for(self, account: Dict[str, Any]) -> RemoteOrderFetcher:
        provider = account.get("provider") or PROVIDER
        if provider != PROVIDER:
            raise UnknownProviderError(
                f"Provider '{provider}' is not supported yet", account_id=account["id"])
        if self.fetcher_factory is not None:
            return self.fetcher_factory(account)
        return RemoteOrderFetcher(
            self.token_provider, account["id"], self.service_factory,
            seller_id=account.get("seller_id"))

    async def read_store(self, account_id: str, filters: Optional[OrderFilters],
                         limit: int, offset: int):
        found = await self.store.select(
            "pedidos", store_filters(account_id, filters),
            Pagination(limit=limit, offset=offset), order_by="-data_pedido")
        if found.rows:
            ids = [row["id"] for row in found.rows]
            items = await self.store.select("itens_pedidos", {"pedido_id__in": ids})
            by_order: Dict[str, List[Dict[str, Any]]] = {}
            for item in items.rows:
                by_order.setdefault(item["pedido_id"], []).append(item)
            for row in found.rows:
                row["itens"] = by_order.get(row["id"], [])
        return found

    async def sync(self, tenant_id: Optional[str], request: SyncRequest) -> SyncOutcome:
        account_id = request.integration_account_id
        account = await self.load_account(tenant_id, account_id)
        empty_paging = {"total": 0, "limit": request.limit, "offset": request.offset}
        try:
            fetcher = self.fetcher_for(account)
        except UnknownProviderError as e:
            logger.info(f"Account {account_id}: {e.message}, returning empty result")
            return SyncOutcome(source=SOURCE_STORE, paging=empty_paging, unsupported=True)

        if request.force_source != SOURCE_LIVE:
            try:
                stored = await self.read_store(
                    account_id, request.filters, request.limit, request.offset)
            except Exception as e:
                logger.warning(f"Store read failed for account {account_id}: {e}")
                if request.force_source == SOURCE_STORE:
                    return SyncOutcome(
                        source=SOURCE_STORE, paging=empty_paging,
                        error=OrderSyncError("Persisted store unavailable"))
            else:
                if stored.rows or request.force_source == SOURCE_STORE:
                    return SyncOutcome(
                        source=SOURCE_STORE,
                        results=stored.rows,
                        paging={"total": stored.total, "limit": request.limit,
                                "offset": request.offset},
                    )
                logger.info(
                    f"No stored orders for account {account_id}, falling back to live fetch")

        params = FetchParams.from_filters(
            request.filters, request.limit, request.offset, request.include_shipping)
        try:
            fetched = await fetcher.fetch_orders(params)
        except OrderSyncError as e:
            logger.error(f"Live fetch failed for account {account_id}: [{e.code}] {e.message}")
            return SyncOutcome(source=SOURCE_STORE, paging=empty_paging, error=e)

        ingested = await self.ingest(account, fetched.orders)
        local = store_only_filters(account_id, request.filters)
        return SyncOutcome(
            source=SOURCE_LIVE,
            results=[order.model_dump() for order in ingested.orders
                     if row_matches(order.to_row(), local)],
            paging=fetched.paging,
            errors=ingested.errors,
            synced=ingested.synced,
        )

    async def ingest(self, account: Dict[str, Any], raw_orders: Iterable[Dict[str, Any]],
                     today: Optional[date] = None) -> IngestResult:
        result = IngestResult()
        account_id = account["id"]
        for raw in raw_orders:
            order_id = str(raw.get("id")) if isinstance(raw, dict) and raw.get("id") is not None else None
            try:
                order = self.transform(raw, account_id, today=today)
            except RecordError as e:
                logger.error(f"Transform failed for order {order_id}: {e.message}")
                result.errors.append(_record_error(order_id, e.code, e.message))
                continue
            except Exception as e:
                logger.error(f"Transform failed for order {order_id}: {e}")
                result.errors.append(_record_error(order_id, "transform_error", str(e)))
                continue
            result.orders.append(order)
            try:
                await self.store.upsert(
                    "pedidos", [order.to_row()], conflict_key="id",
                    only_if_changed="last_updated")
                if order.itens:
                    await self.store.upsert(
                        "itens_pedidos", [item.model_dump() for item in order.itens],
                        conflict_key="pedido_id,sku")
            except Exception as e:
                logger.error(f"Upsert failed for order {order.id}: {e}")
                result.errors.append(_record_error(order.id, "upsert_error", str(e)))
                continue
            result.synced += 1
        logger.info(
            f"Ingested {result.synced} orders for account {account_id} ({len(result.errors)} errors)")
        return result

    async def sync_incremental(self, account_id: str) -> IngestResult:
        account = await self.load_account(None, account_id)
        try:
            fetcher = self.fetcher_for(account)
        except UnknownProviderError as e:
            logger.info(f"Skipping incremental sync for {account_id}: {e.message}")
            return IngestResult()
        started = self.clock()
        since = account.get("last_sync_at") or started - timedelta(days=INITIAL_SYNC_DAYS)
        params = FetchParams(
            limit=settings.ML_SEARCH_MAX_LIMIT,
            updated_from=_ml_timestamp(since),
            sort="date_asc",
        )
        total = IngestResult()
        async for page in fetcher.fetch_all(params):
            batch = await self.ingest(account, page)
            total.synced += batch.synced
            total.errors.extend(batch.errors)
        if total.errors:
            logger.warning(
                f"Incremental sync for {account_id} had {len(total.errors)} record errors, keeping last_sync_at")
        else:
            await self.store.update(
                "integration_accounts", {"id": account_id}, {"last_sync_at": started})
        logger.info(f"Incremental sync for {account_id}: {total.synced} orders")
        return total

    async def load_mappings(self, skus: Iterable[str],
                            cache: Optional[Dict[str, Optional[Dict[str, Any]]]] = None
                            ) -> Dict[str, Optional[Dict[str, Any]]]:
        cache = {} if cache is None else cache
        missing = sorted({s for s in skus if s and s not in cache})
        if missing:
            found = await self.store.select(
                "mapeamentos_depara", {"sku_pedido__in": missing, "ativo": True})
            for row in found.rows:
                cache[row["sku_pedido"]] = row
            for sku in missing:
                cache.setdefault(sku, None)
        return cache

    @staticmethod
    def classify(skus: List[str], mappings: Dict[str, Optional[Dict[str, Any]]]) -> Optional[str]:
        """Return ``ready`` when every SKU maps to a stock SKU, ``pending`` otherwise."""
        if not skus:
            return None
        complete = [
            bool(mappings.get(sku) and (mappings[sku].get("sku_correspondente") or mappings[sku].get("sku_simples")))
            for sku in skus
        ]
        return "ready" if all(complete) else "pending"

    async def aggregate_counts(self, tenant_id: Optional[str], account_ids: List[str],
                               filters: Optional[OrderFilters] = None) -> AggregateCounters:
        counters = AggregateCounters()
        mappings: Dict[str, Optional[Dict[str, Any]]] = {}
        owned: List[str] = []
        for account_id in account_ids:
            try:
                account = await self.load_account(tenant_id, account_id)
                owned.append(account_id)
                fetcher = self.fetcher_for(account)
                params = FetchParams.from_filters(filters, limit=settings.AGGREGATOR_PAGE_SIZE)
                async for page in fetcher.fetch_all(params):
                    counters.total += len(page)
                    page_skus = [self._order_skus(order) for order in page]
                    await self.load_mappings([s for skus in page_skus for s in skus], mappings)
                    for skus in page_skus:
                        bucket = self.classify(skus, mappings)
                        if bucket == "ready":
                            counters.prontos_baixa += 1
                        elif bucket == "pending":
                            counters.mapeamento_pendente += 1
            except UnknownProviderError as e:
                logger.info(f"Skipping counters for {account_id}: {e.message}")
            except OrderSyncError as e:
                logger.warning(f"Counters failed for account {account_id}: [{e.code}] {e.message}")
                counters.errors.append(RecordErrorOut(
                    account_id=account_id, kind=e.code, message=e.message))
        counters.baixados = await self.count_baixados(owned, filters, counters) if owned else 0
        logger.info(
            f"Counters for {len(account_ids)} accounts: total={counters.total} "
            f"prontos={counters.prontos_baixa} pendentes={counters.mapeamento_pendente} "
            f"baixados={counters.baixados}")
        return counters

    @staticmethod
    def _order_skus(raw: Dict[str, Any]) -> List[str]:
        skus = []
        for entry in raw.get("order_items") or []:
            item = (entry or {}).get("item") or {}
            sku = item.get("seller_sku") or item.get("seller_custom_field")
            if sku:
                skus.append(str(sku))
        return skus

    async def count_baixados(self, account_ids: List[str], filters: Optional[OrderFilters],
                             counters: Optional[AggregateCounters] = None) -> int:
        filters = filters or OrderFilters()
        query: Dict[str, Any] = {"integration_account_id__in": list(account_ids), "status": "baixado"}
        optional = {
            "data_pedido__gte": filters.data_inicio,
            "data_pedido__lte": filters.data_fim,
            HISTORY_SEARCH_COLUMNS: filters.search,
        }
        query.update({k: v for k, v in optional.items() if v})
        try:
            found = await self.store.select("historico_vendas", query, Pagination(limit=0))
        except Exception as e:
            logger.warning(f"Could not count processed orders: {e}")
            if counters is not None:
                counters.errors.append(RecordErrorOut(kind="store_error", message=str(e)))
            return 0
        return found.total

    async def _tenant_orders(self, tenant_id: Optional[str], order_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        filters: Dict[str, Any] = {"id__in": list(order_ids)}
        if tenant_id is not None:
            accounts = await self.store.select("integration_accounts", {"tenant_id": tenant_id})
            filters["integration_account_id__in"] = [a["id"] for a in accounts.rows]
        found = await self.store.select("pedidos", filters)
        return {row["id"]: row for row in found.rows}

    async def _bulk(self, action: str, tenant_id: Optional[str], order_ids: List[str],
                    predicate: Callable[[Dict[str, Any]], Eligibility],
                    apply: Callable[[Dict[str, Any]], Any]) -> BulkActionResult:
        result = BulkActionResult(action=action)
        orders = await self._tenant_orders(tenant_id, order_ids)
        for order_id in dict.fromkeys(order_ids):
            order = orders.get(order_id)
            if order is None:
                result.skipped.append(SkippedOrder(order_id=order_id, reason="Pedido não encontrado"))
                continue
            verdict = predicate(order)
            if not verdict.eligible:
                result.skipped.append(SkippedOrder(order_id=order_id, reason=verdict.reason))
                continue
            try:
                await apply(order)
            except Exception as e:
                logger.error(f"{action} failed for order {order_id}: {e}")
                result.errors.append(_record_error(order_id, f"{action}_error", str(e)))
                continue
            result.processed.append(order_id)
        logger.info(
            f"{action}: {len(result.processed)} processed, {len(result.skipped)} skipped, "
            f"{len(result.errors)} errors")
        return result

    async def _apply_stock(self, order: Dict[str, Any]):
        items = (await self.store.select("itens_pedidos", {"pedido_id": order["id"]})).rows
        mappings = await self.load_mappings(item["sku"] for item in items)
        movements: List[Tuple[str, int]] = []
        for item in items:
            mapping = mappings.get(item["sku"]) or {}
            kit = max(1, int(mapping.get("quantidade") or 1))
            units = int(item.get("quantidade") or 0) * kit
            stock_sku = mapping.get("sku_correspondente") or mapping.get("sku_simples") or item["sku"]
            movements.append((stock_sku, units))
        # the history row is the idempotency claim; unchanged rows report 0 written
        claimed = await self.store.upsert("historico_vendas", [{
            "id_unico": order["id"],
            "numero_pedido": order.get("numero") or order["id"],
            "sku_produto": ", ".join(item["sku"] for item in items),
            "sku_estoque": ", ".join(sku for sku, _ in movements),
            "quantidade": sum(int(item.get("quantidade") or 0) for item in items),
            "total_itens": sum(units for _, units in movements),
            "valor_total": order.get("valor_total") or 0,
            "cliente_nome": order.get("nome_cliente"),
            "data_pedido": order.get("data_pedido"),
            "status": "baixado",
            "integration_account_id": order.get("integration_account_id"),
        }], conflict_key="id_unico", only_if_changed="status")
        await self.store.update("pedidos", {"id": order["id"]}, {
            "obs_interna": append_marker(order.get("obs_interna"), STOCK_MARKER)})
        if not claimed:
            logger.warning(f"Order {order['id']}: stock already written off, only restoring marker")
            return
        for stock_sku, units in movements:
            products = await self.store.select("produtos", {"sku_interno": stock_sku})
            if not products.rows:
                logger.warning(f"Order {order['id']}: no product for sku {stock_sku}")
                continue
            product = products.rows[0]
            remaining = max(0, int(product.get("quantidade_atual") or 0) - units)
            await self.store.update("produtos", {"id": product["id"]}, {
                "quantidade_atual": remaining,
                "ultima_movimentacao": self.clock(),
            })

    async def _apply_cancel(self, order: Dict[str, Any]):
        await self.store.update("pedidos", {"id": order["id"]}, {
            "situacao": CanonicalStatus.CANCELADO.value,
            "obs_interna": append_marker(order.get("obs_interna"), CANCEL_MARKER),
        })

    async def bulk_stock(self, tenant_id: Optional[str], order_ids: List[str]) -> BulkActionResult:
        return await self._bulk("baixar_estoque", tenant_id, order_ids,
                                stock_eligibility, self._apply_stock)

    async def bulk_cancel(self, tenant_id: Optional[str], order_ids: List[str]) -> BulkActionResult:
        return await self._bulk("cancelar_pedido", tenant_id, order_ids,
                                cancel_eligibility, self._apply_cancel)


def build_sync_service() -> OrderSyncService:
    from ordersync.database import get_session_factory
    from ordersync.services.credential_vault import FernetCredentialVault
    from ordersync.services.store import SqlAlchemyStore
    session_factory = get_session_factory()
    vault = FernetCredentialVault(session_factory)
    return OrderSyncService(SqlAlchemyStore(session_factory), TokenProvider(vault))


@lru_cache()
def get_default_sync_service() -> OrderSyncService:
    """Process-wide service so every caller shares one token refresh registry."""
    return build_sync_service()
