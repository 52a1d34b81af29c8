from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from ordersync.config import settings
from ordersync.errors import AuthExpiredError, OrderSyncError
from ordersync.services.credential_vault import Credential, CredentialVault
from ordersync.services.mercadolivre_service import MercadoLivreService
from ordersync.utils.single_flight import SingleFlight
from ordersync.utils.logger import get_loggers
logger = get_loggers("TokenProvider")

PROVIDER = "mercadolivre"
DEFAULT_EXPIRES_IN = 21600


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class AccessToken:
    account_id: str
    token: str
    expires_at: Optional[datetime] = None
    seller_id: Optional[str] = None
    # refresh failed; token still inside its lifetime
    stale: bool = False


def _seller_id(credential: Credential) -> Optional[str]:
    user_id = credential.payload.get("user_id")
    return str(user_id) if user_id else None


def _to_access_token(credential: Credential, stale: bool = False) -> AccessToken:
    return AccessToken(
        account_id=credential.account_id,
        token=credential.access_token,
        expires_at=credential.expires_at,
        seller_id=_seller_id(credential),
        stale=stale,
    )


class TokenProvider:
    def __init__(self, vault: CredentialVault,
                 service_factory: Callable[[], MercadoLivreService] = MercadoLivreService,
                 clock: Callable[[], datetime] = utcnow,
                 refresh_margin_seconds: Optional[int] = None,
                 provider: str = PROVIDER):
        self.vault = vault
        self.service_factory = service_factory
        self.clock = clock
        self.refresh_margin = timedelta(
            seconds=settings.TOKEN_REFRESH_MARGIN_SECONDS if refresh_margin_seconds is None else refresh_margin_seconds)
        self.provider = provider
        self._flight = SingleFlight()

    def needs_refresh(self, credential: Credential) -> bool:
        if credential.expires_at is None:
            return False
        return _aware(credential.expires_at) - self.clock() < self.refresh_margin

    def is_expired(self, credential: Credential) -> bool:
        if credential.expires_at is None:
            return False
        return _aware(credential.expires_at) <= self.clock()

    async def get_valid_access_token(self, account_id: str) -> AccessToken:
        credential = await self.vault.get(account_id, self.provider)
        if not self.needs_refresh(credential):
            return _to_access_token(credential)
        return await self._flight.do(account_id, lambda: self._refresh(account_id))

    def _degrade(self, credential: Credential, reason: Any) -> AccessToken:
        if self.is_expired(credential):
            logger.error(
                f"Token refresh failed for account {credential.account_id} and token is expired: {reason}")
            raise AuthExpiredError(
                "Access token expired and could not be refreshed", account_id=credential.account_id)
        logger.warning(
            f"Token refresh failed for account {credential.account_id}, using current token: {reason}")
        return _to_access_token(credential, stale=True)

    async def _refresh(self, account_id: str) -> AccessToken:
        credential = await self.vault.get(account_id, self.provider)
        if not self.needs_refresh(credential):
            return _to_access_token(credential)
        if not credential.refresh_token:
            return self._degrade(credential, "no refresh token stored")
        try:
            async with self.service_factory() as ml:
                data = await ml.refresh_access_token(credential.refresh_token, credential.client_id)
        except OrderSyncError as e:
            return self._degrade(credential, e.message)
        except Exception as e:
            return self._degrade(credential, f"{e.__class__.__name__}: {e}")
        access_token = data.get("access_token")
        if not access_token:
            return self._degrade(credential, "token response without access_token")
        expires_at = self.clock() + timedelta(
            seconds=int(data.get("expires_in") or DEFAULT_EXPIRES_IN))
        rotated = credential.rotated(
            access_token, data.get("refresh_token"), expires_at)
        try:
            await self.vault.save(rotated)
        except Exception as e:
            # the old refresh token may already be revoked upstream
            logger.error(f"Could not persist refreshed token for account {account_id}: {e}")
        logger.info(
            f"Refreshed access token for account {account_id}, valid until {expires_at.isoformat()}")
        return _to_access_token(rotated)


class OAuthConnector:
    """Mint the first credential of an account from an authorization code."""

    def __init__(self, vault: CredentialVault, store=None,
                 service_factory: Callable[[], MercadoLivreService] = MercadoLivreService,
                 clock: Callable[[], datetime] = utcnow,
                 provider: str = PROVIDER):
        self.vault = vault
        self.store = store
        self.service_factory = service_factory
        self.clock = clock
        self.provider = provider

    async def connect(self, account_id: str, code: str, redirect_uri: str,
                      code_verifier: Optional[str] = None) -> Credential:
        async with self.service_factory() as ml:
            data: Dict[str, Any] = await ml.exchange_code(code, redirect_uri, code_verifier)
            access_token = data.get("access_token")
            if not access_token:
                raise AuthExpiredError(
                    "Authorization code exchange returned no token", account_id=account_id)
            user_id = data.get("user_id")
            if not user_id:
                ml.access_token = access_token
                user_id = (await ml.get_me()).get("id")
        credential = Credential(
            account_id=account_id,
            provider=self.provider,
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=self.clock() + timedelta(
                seconds=int(data.get("expires_in") or DEFAULT_EXPIRES_IN)),
            client_id=settings.ML_CLIENT_ID,
            payload={"user_id": str(user_id) if user_id else None},
        )
        await self.vault.save(credential)
        if self.store is not None and user_id:
            await self.store.update(
                "integration_accounts", {"id": account_id}, {"seller_id": str(user_id)})
        logger.info(f"Connected MercadoLivre account {account_id} (seller {user_id})")
        return credential
