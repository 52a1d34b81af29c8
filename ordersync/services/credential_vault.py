import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import async_sessionmaker
from ordersync.config import settings
from ordersync.errors import CredentialNotFound
from ordersync.models.integrations import IntegrationSecret
from ordersync.utils.logger import get_loggers
logger = get_loggers("CredentialVault")


@dataclass
class Credential:
    account_id: str
    provider: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    client_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def rotated(self, access_token: str, refresh_token: Optional[str], expires_at: datetime) -> "Credential":
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            expires_at=expires_at,
        )

    def to_json(self) -> str:
        return json.dumps({
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "client_id": self.client_id,
            "payload": self.payload,
        })

    @classmethod
    def from_json(cls, account_id: str, provider: str, raw: str) -> "Credential":
        data = json.loads(raw)
        expires_at = data.get("expires_at")
        return cls(
            account_id=account_id,
            provider=provider,
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            client_id=data.get("client_id"),
            payload=data.get("payload") or {},
        )


class CredentialVault(ABC):
    @abstractmethod
    async def get(self, account_id: str, provider: str) -> Credential:
        ...

    @abstractmethod
    async def save(self, credential: Credential) -> None:
        ...


class FernetCredentialVault(CredentialVault):
    """Credential payloads stored as Fernet tokens in ``integration_secrets``."""

    def __init__(self, session_factory: async_sessionmaker, encryption_key: Optional[str] = None):
        self.session_factory = session_factory
        self.fernet = Fernet((encryption_key or settings.APP_ENCRYPTION_KEY).encode())

    def encrypt(self, credential: Credential) -> bytes:
        return self.fernet.encrypt(credential.to_json().encode())

    def decrypt(self, account_id: str, provider: str, token: bytes) -> Credential:
        try:
            raw = self.fernet.decrypt(token).decode()
        except InvalidToken:
            logger.error(
                f"Stored credential for account {account_id} could not be decrypted")
            raise CredentialNotFound(
                "Stored credential is unreadable, reconnect the account", account_id=account_id)
        return Credential.from_json(account_id, provider, raw)

    async def get(self, account_id: str, provider: str) -> Credential:
        async with self.session_factory() as session:
            result = await session.execute(
                select(IntegrationSecret).where(
                    IntegrationSecret.integration_account_id == account_id,
                    IntegrationSecret.provider == provider,
                )
            )
            secret = result.scalar_one_or_none()
        if secret is None:
            raise CredentialNotFound(
                "No stored credential for account", account_id=account_id)
        return self.decrypt(account_id, provider, secret.secret_enc)

    async def save(self, credential: Credential) -> None:
        now = datetime.now(timezone.utc)
        values = {
            "integration_account_id": credential.account_id,
            "provider": credential.provider,
            "secret_enc": self.encrypt(credential),
            "expires_at": credential.expires_at,
            "updated_at": now,
        }
        stmt = insert(IntegrationSecret).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["integration_account_id", "provider"],
            set_={k: stmt.excluded[k] for k in ("secret_enc", "expires_at", "updated_at")},
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()
        logger.info(f"Stored credential for account {credential.account_id}")
