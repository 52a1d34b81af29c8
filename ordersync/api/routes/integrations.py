from fastapi import APIRouter, Depends, Query
from ordersync.api.dependencies import (CurrentUser, get_oauth_connector, get_sync_service,
                                        require_write)
from ordersync.schemas.orders import ConnectRequest
from ordersync.services.mercadolivre_service import MercadoLivreService
from ordersync.services.sync_service import OrderSyncService
from ordersync.services.token_provider import OAuthConnector

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/mercadolivre/authorize")
async def authorize_url(
    redirect_uri: str = Query(..., min_length=1),
    state: str = Query(None),
    _: CurrentUser = Depends(require_write),
):
    return {"ok": True, "url": MercadoLivreService.authorization_url(redirect_uri, state)}


@router.post("/{account_id}/connect")
async def connect_account(
    account_id: str,
    body: ConnectRequest,
    current_user: CurrentUser = Depends(require_write),
    service: OrderSyncService = Depends(get_sync_service),
    connector: OAuthConnector = Depends(get_oauth_connector),
):
    await service.load_account(current_user.tenant_id, account_id)
    credential = await connector.connect(account_id, body.code, body.redirect_uri)
    return {
        "ok": True,
        "integration_account_id": account_id,
        "seller_id": credential.payload.get("user_id"),
        "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
    }
