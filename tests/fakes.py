import asyncio
import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ordersync.errors import CredentialNotFound
from ordersync.services.credential_vault import Credential, CredentialVault
from ordersync.services.order_fetcher import FetchResult
from ordersync.services.store import OrderStore, Pagination, SelectResult, conflict_columns, row_matches

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def account_row(account_id, tenant_id, provider="mercadolivre", seller_id=None, **extra):
    row = {
        "id": account_id,
        "tenant_id": tenant_id,
        "provider": provider,
        "name": f"Conta {account_id}",
        "seller_id": seller_id,
        "is_active": True,
        "last_sync_at": None,
    }
    row.update(extra)
    return row


def raw_order(order_id, status="paid", skus=("SKU-1",), last_updated="2024-03-01T10:00:00.000-03:00", **extra):
    order = {
        "id": order_id,
        "status": status,
        "date_created": "2024-03-01T10:00:00.000-03:00",
        "last_updated": last_updated,
        "total_amount": 100,
        "buyer": {"nickname": f"buyer{order_id}"},
        "order_items": [
            {"item": {"id": f"MLB{i}", "title": f"Produto {sku}", "seller_sku": sku},
             "quantity": 1, "unit_price": 50}
            for i, sku in enumerate(skus)
        ],
    }
    order.update(extra)
    return order


class InMemoryStore(OrderStore):
    """Dict-backed store speaking the same filter language as the SQL one."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self.select_calls: Dict[str, int] = {}
        self.upsert_calls: Dict[str, int] = {}
        self.written: Dict[str, int] = {}
        self.failing_tables = set()
        self.failing_upsert_ids = set()

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    async def select(self, table, filters=None, pagination=None, order_by=None):
        self.select_calls[table] = self.select_calls.get(table, 0) + 1
        if table in self.failing_tables:
            raise RuntimeError(f"{table} unavailable")
        matched = [r for r in self.rows(table) if row_matches(r, filters)]
        if order_by:
            column = order_by.lstrip("-")
            matched.sort(key=lambda r: (r.get(column) is None, r.get(column)),
                         reverse=order_by.startswith("-"))
        total = len(matched)
        pagination = pagination or Pagination()
        end = None if pagination.limit is None else pagination.offset + pagination.limit
        page = matched[pagination.offset:end]
        return SelectResult(rows=copy.deepcopy(page), total=total)

    async def upsert(self, table, rows, conflict_key, only_if_changed=None):
        self.upsert_calls[table] = self.upsert_calls.get(table, 0) + 1
        if table in self.failing_tables:
            raise RuntimeError(f"{table} unavailable")
        keys = conflict_columns(conflict_key)
        written = 0
        for row in rows:
            if row.get("id") in self.failing_upsert_ids:
                raise RuntimeError(f"constraint violation for {row['id']}")
            existing = next(
                (r for r in self.rows(table) if all(r.get(k) == row.get(k) for k in keys)), None)
            if existing is None:
                new_row = {"id": str(uuid.uuid4())} if "id" not in row else {}
                new_row.update(copy.deepcopy(row))
                self.rows(table).append(new_row)
                written += 1
                continue
            if only_if_changed and existing.get(only_if_changed) == row.get(only_if_changed):
                continue
            existing.update(copy.deepcopy(row))
            written += 1
        self.written[table] = self.written.get(table, 0) + written
        return written

    async def update(self, table, filters, patch):
        if not filters:
            raise ValueError("update requires at least one filter")
        count = 0
        for row in self.rows(table):
            if row_matches(row, filters):
                row.update(copy.deepcopy(patch))
                count += 1
        return count


def make_credential(account_id="acc-1", expires_in=3600, refresh_token="refresh-1",
                    access_token="old-token", user_id="99", now=NOW):
    return Credential(
        account_id=account_id,
        provider="mercadolivre",
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=now + timedelta(seconds=expires_in),
        client_id="123456",
        payload={"user_id": user_id} if user_id else {},
    )


class FakeVault(CredentialVault):
    def __init__(self, *credentials: Credential):
        self.credentials = {(c.account_id, c.provider): c for c in credentials}
        self.saves = 0
        self.save_error = None

    async def get(self, account_id, provider):
        credential = self.credentials.get((account_id, provider))
        if credential is None:
            raise CredentialNotFound("No stored credential for account", account_id=account_id)
        return credential

    async def save(self, credential):
        self.saves += 1
        if self.save_error is not None:
            raise self.save_error
        self.credentials[(credential.account_id, credential.provider)] = credential


class FakeMarketplace:
    """Stands in for MercadoLivreService behind a service factory."""

    def __init__(self, refresh_response=None, refresh_error=None, delay=0.01,
                 exchange_response=None, me=None):
        self.refresh_response = refresh_response or {
            "access_token": "new-token", "refresh_token": "refresh-2", "expires_in": 21600}
        self.refresh_error = refresh_error
        self.exchange_response = exchange_response or {}
        self.me = me or {"id": 99}
        self.delay = delay
        self.access_token = None
        self.refresh_calls = 0
        self.me_calls = 0

    def __call__(self):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def refresh_access_token(self, refresh_token, client_id=None):
        self.refresh_calls += 1
        await asyncio.sleep(self.delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        return dict(self.refresh_response)

    async def exchange_code(self, code, redirect_uri, code_verifier=None):
        return dict(self.exchange_response)

    async def get_me(self):
        self.me_calls += 1
        return dict(self.me)


class FakeFetcher:
    """Serves a fixed list of raw orders, or raises ``error`` on every call."""

    def __init__(self, orders=None, error=None):
        self.orders = list(orders or [])
        self.error = error
        self.calls = 0
        self.params = []

    async def fetch_orders(self, params):
        self.calls += 1
        self.params.append(params)
        if self.error is not None:
            raise self.error
        page = self.orders[params.offset:params.offset + params.limit]
        return FetchResult(
            orders=copy.deepcopy(page),
            paging={"total": len(self.orders), "limit": params.limit, "offset": params.offset},
        )

    async def fetch_all(self, params):
        offset = params.offset
        while True:
            self.calls += 1
            self.params.append(params)
            if self.error is not None:
                raise self.error
            page = self.orders[offset:offset + params.limit]
            if page:
                yield copy.deepcopy(page)
            offset += len(page)
            if len(page) < params.limit or offset >= len(self.orders):
                break


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)
