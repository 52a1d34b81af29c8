from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from typing import Optional
from ordersync.api.dependencies import (CurrentUser, get_aggregator_cache, get_current_tenant,
                                        get_sync_service, require_write)
from ordersync.schemas.orders import AggregateRequest, BulkActionRequest, SyncRequest
from ordersync.services.aggregator_cache import AggregatorCache
from ordersync.services.status_mapping import (combined_label, is_delivered, is_problem,
                                               normalize_status, status_tone, substatus_description)
from ordersync.services.sync_service import SOURCE_LIVE, OrderSyncService
from ordersync.utils.logger import get_loggers
logger = get_loggers("PedidosRoutes")

router = APIRouter(prefix="/pedidos", tags=["pedidos"])


@router.post("/sync")
async def sync_pedidos(
    body: SyncRequest,
    tenant_id: str = Depends(get_current_tenant),
    service: OrderSyncService = Depends(get_sync_service),
    cache: AggregatorCache = Depends(get_aggregator_cache),
):
    if body.force_source == SOURCE_LIVE:
        cache.invalidate(body.integration_account_id)
    outcome = await service.sync(tenant_id, body)
    if outcome.error is not None:
        payload = {**outcome.error.to_dict(), "source": outcome.source, "results": []}
        return JSONResponse(status_code=outcome.error.http_status, content=payload)
    return {
        "ok": True,
        "results": outcome.results,
        "paging": outcome.paging,
        "source": outcome.source,
        "errors": [e.model_dump() for e in outcome.errors],
        "synced": outcome.synced,
        "unsupported": outcome.unsupported,
    }


@router.post("/aggregate")
async def aggregate_pedidos(
    body: AggregateRequest,
    tenant_id: str = Depends(get_current_tenant),
    cache: AggregatorCache = Depends(get_aggregator_cache),
):
    counters = await cache.get_aggregate_counts(
        tenant_id, body.integration_account_ids, body.filters, force=body.force)
    return {"ok": True, **counters.model_dump(by_alias=True)}


@router.post("/bulk")
async def bulk_pedidos(
    body: BulkActionRequest,
    current_user: CurrentUser = Depends(require_write),
    service: OrderSyncService = Depends(get_sync_service),
    cache: AggregatorCache = Depends(get_aggregator_cache),
):
    if body.action == "baixar_estoque":
        result = await service.bulk_stock(current_user.tenant_id, body.order_ids)
    else:
        result = await service.bulk_cancel(current_user.tenant_id, body.order_ids)
    if result.processed:
        cache.invalidate()
    return {"ok": not result.errors, **result.model_dump()}


@router.get("/status-label")
async def status_label(
    status: Optional[str] = Query(None),
    substatus: Optional[str] = Query(None),
    _: str = Depends(get_current_tenant),
):
    return {
        "situacao": normalize_status(status),
        "label": combined_label(status, substatus),
        "description": substatus_description(substatus),
        "tone": status_tone(status, substatus),
        "delivered": is_delivered(status, substatus),
        "problem": is_problem(status, substatus),
    }
