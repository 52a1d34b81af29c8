from fastapi import Depends, HTTPException, status, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional, List
from pydantic import BaseModel
from ordersync.services.aggregator_cache import AggregatorCache
from ordersync.services.auth_service import AuthService
from ordersync.services.sync_service import OrderSyncService
from ordersync.services.token_provider import OAuthConnector
from ordersync.utils.logger import get_loggers
logger = get_loggers("Dependencies")
security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    user_id: str
    tenant_id: str
    email: Optional[str] = None
    scopes: List[str]

    class Config:
        frozen = True


def get_auth_service() -> AuthService:
    return AuthService()


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
    auth_service: AuthService = Depends(get_auth_service),
) -> CurrentUser:
    request_id = getattr(request.state, "request_id", "unknown")
    if not credentials:
        logger.warning(f"[{request_id}] Missing authentication credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials missing",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token_data = auth_service.verify_token(
        credentials.credentials, expected_type="access_token")
    if not token_data:
        logger.warning(f"[{request_id}] Invalid or expired token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if x_tenant_id and token_data.tenant_id != x_tenant_id:
        logger.warning(
            f"[{request_id}] User {token_data.user_id} attempted access to tenant {x_tenant_id}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access to this tenant is forbidden"
        )
    return CurrentUser(
        user_id=token_data.user_id,
        tenant_id=token_data.tenant_id,
        email=token_data.email,
        scopes=token_data.scopes
    )


async def get_current_tenant(
    current_user: CurrentUser = Depends(get_current_user)
) -> str:
    return current_user.tenant_id


def require_scope(required_scope: str):
    async def scope_dependency(
        current_user: CurrentUser = Depends(get_current_user)
    ):
        if required_scope not in current_user.scopes:
            logger.warning(
                f"User {current_user.user_id} missing required scope: {required_scope}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required scope: {required_scope}"
            )
        return current_user
    return scope_dependency


require_write = require_scope("write")


def get_sync_service(request: Request) -> OrderSyncService:
    return request.app.state.sync_service


def get_aggregator_cache(request: Request) -> AggregatorCache:
    return request.app.state.aggregator_cache


def get_oauth_connector(request: Request) -> OAuthConnector:
    return request.app.state.oauth_connector
