#!/usr/bin/env python3
"""
Connect a MercadoLivre seller account: open the consent page, exchange the
authorization code and store the encrypted credential.
"""

import asyncio
import sys
import webbrowser
from pathlib import Path
import dotenv
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
dotenv.load_dotenv()

from ordersync.database import create_tables, shutdown_databases
from ordersync.services.mercadolivre_service import MercadoLivreService
from ordersync.services.sync_service import get_default_sync_service
from ordersync.services.token_provider import OAuthConnector


async def connect(account_id: str, redirect_uri: str):
    await create_tables()
    service = get_default_sync_service()
    await service.load_account(None, account_id)

    url = MercadoLivreService.authorization_url(redirect_uri, state=account_id)
    print("🚀 MercadoLivre OAuth Setup")
    print("=" * 50)
    print("1. Authorize the application in the browser")
    print("2. Copy the `code` parameter from the redirect URL")
    print("3. Paste it here")
    webbrowser.open(url)
    print(f"\n🔗 Manual URL (if needed):\n{url}")

    code = input("\n📝 Paste the authorization code: ").strip()
    if not code:
        print("❌ Authorization code required!")
        return
    connector = OAuthConnector(service.token_provider.vault, service.store)
    credential = await connector.connect(account_id, code, redirect_uri)
    print(f"✅ Connected seller {credential.payload.get('user_id')}")
    print(f"⏰ Token valid until {credential.expires_at.isoformat()}")
    await shutdown_databases()


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("usage: connect_mercadolivre.py <integration_account_id> <redirect_uri>")
        sys.exit(1)
    asyncio.run(connect(sys.argv[1], sys.argv[2]))
