#!/usr/bin/env python3
"""
Create a tenant integration account plus an access token to call the API with
"""

import asyncio
import os
import sys
import uuid
from pathlib import Path
import dotenv
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
dotenv.load_dotenv()

from ordersync.database import create_tables, get_session_factory, shutdown_databases
from ordersync.services.auth_service import AuthService
from ordersync.services.store import SqlAlchemyStore
from ordersync.utils.logger import get_loggers

logger = get_loggers("TestDataSetup")


async def main():
    await create_tables()
    store = SqlAlchemyStore(get_session_factory())
    tenant_id = os.getenv("TEST_TENANT_ID", "test_tenant_001")
    account_id = str(uuid.uuid4())
    await store.upsert("integration_accounts", [{
        "id": account_id,
        "tenant_id": tenant_id,
        "provider": "mercadolivre",
        "name": "Mercado Livre (teste)",
        "is_active": True,
    }], conflict_key="id")
    await store.upsert("mapeamentos_depara", [{
        "id": str(uuid.uuid4()),
        "sku_pedido": "KIT-EXEMPLO",
        "sku_correspondente": "SKU-EXEMPLO",
        "quantidade": 2,
        "ativo": True,
    }], conflict_key="id")
    await store.upsert("produtos", [{
        "id": str(uuid.uuid4()),
        "sku_interno": "SKU-EXEMPLO",
        "nome": "Produto exemplo",
        "quantidade_atual": 100,
    }], conflict_key="sku_interno")

    access_token = AuthService().create_access_token(data={
        "user_id": "test_user_001",
        "tenant_id": tenant_id,
        "email": "test@ordersync.local",
        "scopes": ["read", "write"],
    })
    logger.info(f"Created integration account {account_id} for tenant {tenant_id}")
    print("✅ Test data created")
    print(f"🏢 Tenant ID: {tenant_id}")
    print(f"🔌 Integration account: {account_id}")
    print(f"🔐 Access Token: {access_token}")
    print("\nNext: python scripts/connect_mercadolivre.py "
          f"{account_id} <redirect_uri>")
    await shutdown_databases()


if __name__ == "__main__":
    asyncio.run(main())
