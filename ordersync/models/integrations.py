from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, LargeBinary, UniqueConstraint
from sqlalchemy.sql import func
import uuid
from ordersync.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class IntegrationAccount(Base):
    __tablename__ = "integration_accounts"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    provider = Column(String(50), nullable=False, default="mercadolivre")
    name = Column(String(255))
    seller_id = Column(String(64))
    is_active = Column(Boolean, default=True, nullable=False)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class IntegrationSecret(Base):
    __tablename__ = "integration_secrets"
    __table_args__ = (
        UniqueConstraint("integration_account_id", "provider",
                         name="uq_integration_secrets_account_provider"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    integration_account_id = Column(String(36), ForeignKey(
        'integration_accounts.id', ondelete='CASCADE'), nullable=False)
    provider = Column(String(50), nullable=False)
    # Fernet token of the JSON credential payload
    secret_enc = Column(LargeBinary, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
