import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from fakes import FakeFetcher, FakeMarketplace, FakeVault, FixedClock, InMemoryStore, account_row, raw_order
from ordersync.api.middleware import RateLimitMiddleware
from ordersync.errors import AuthExpiredError, RateLimitedError
from ordersync.main import create_application
from ordersync.services.aggregator_cache import AggregatorCache
from ordersync.services.auth_service import AuthService
from ordersync.services.sync_service import OrderSyncService
from ordersync.services.token_provider import OAuthConnector, TokenProvider


def bearer(tenant_id="tenant-1", scopes=("read", "write")):
    token = AuthService().create_access_token({
        "user_id": "user-1", "tenant_id": tenant_id, "scopes": list(scopes)})
    return {"Authorization": f"Bearer {token}"}


class Harness:
    def __init__(self, fetcher=None):
        self.store = InMemoryStore({"integration_accounts": [account_row("acc-1", "tenant-1", seller_id="99")]})
        self.fetcher = fetcher or FakeFetcher([raw_order("1"), raw_order("2", skus=("KIT",))])
        self.vault = FakeVault()
        self.service = OrderSyncService(
            self.store, TokenProvider(self.vault),
            fetcher_factory=lambda account: self.fetcher, clock=FixedClock())
        self.cache = AggregatorCache(self.service.aggregate_counts, ttl_seconds=60, debounce_seconds=0)
        marketplace = FakeMarketplace(exchange_response={
            "access_token": "tok", "refresh_token": "r", "expires_in": 600, "user_id": 4321})
        self.connector = OAuthConnector(self.vault, self.store, service_factory=marketplace, clock=FixedClock())
        self.client = TestClient(create_application(self.service, self.cache, self.connector))


@pytest.fixture
def harness():
    return Harness()


def test_health(harness):
    assert harness.client.get("/health").json()["status"] == "healthy"


def test_sync_requires_authentication(harness):
    response = harness.client.post("/api/v1/pedidos/sync", json={"integration_account_id": "acc-1"})
    assert response.status_code == 401


def test_sync_rejects_invalid_body(harness):
    response = harness.client.post("/api/v1/pedidos/sync", json={"limit": 500}, headers=bearer())
    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["code"] == "validation_error"


def test_sync_falls_back_to_live_then_serves_store(harness):
    response = harness.client.post(
        "/api/v1/pedidos/sync", json={"integration_account_id": "acc-1"}, headers=bearer())
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["source"] == "tempo-real"
    assert body["synced"] == 2

    response = harness.client.post(
        "/api/v1/pedidos/sync", json={"integration_account_id": "acc-1"}, headers=bearer())
    assert response.json()["source"] == "banco"
    assert harness.fetcher.calls == 1


def test_sync_unknown_account_is_404(harness):
    response = harness.client.post(
        "/api/v1/pedidos/sync", json={"integration_account_id": "nope"}, headers=bearer())
    assert response.status_code == 404
    assert response.json()["code"] == "account_not_found"


def test_sync_other_tenant_is_404(harness):
    response = harness.client.post(
        "/api/v1/pedidos/sync", json={"integration_account_id": "acc-1"}, headers=bearer("tenant-2"))
    assert response.status_code == 404


def test_tenant_header_mismatch_is_forbidden(harness):
    headers = {**bearer(), "X-Tenant-ID": "tenant-2"}
    response = harness.client.post(
        "/api/v1/pedidos/sync", json={"integration_account_id": "acc-1"}, headers=headers)
    assert response.status_code == 403


@pytest.mark.parametrize("error, status, code, retryable", [
    (AuthExpiredError("expired"), 401, "requires_reauthentication", False),
    (RateLimitedError("slow", retry_after=5), 429, "rate_limited", True),
])
def test_sync_remote_errors_are_mapped(error, status, code, retryable):
    harness = Harness(FakeFetcher(error=error))
    response = harness.client.post(
        "/api/v1/pedidos/sync", json={"integration_account_id": "acc-1"}, headers=bearer())
    assert response.status_code == status
    body = response.json()
    assert (body["ok"], body["code"], body["retryable"]) == (False, code, retryable)
    assert body["source"] == "banco"
    assert body["results"] == []


def test_aggregate_counters(harness):
    harness.store.rows("mapeamentos_depara").append(
        {"id": "m1", "sku_pedido": "KIT", "sku_correspondente": "BASE", "quantidade": 1, "ativo": True})
    response = harness.client.post(
        "/api/v1/pedidos/aggregate", json={"integration_account_id": "acc-1"}, headers=bearer())
    assert response.status_code == 200
    body = response.json()
    assert (body["total"], body["prontosBaixa"], body["mapeamentoPendente"], body["baixados"]) == (2, 1, 1, 0)
    assert body["from_cache"] is False

    again = harness.client.post(
        "/api/v1/pedidos/aggregate", json={"integration_account_ids": ["acc-1"]}, headers=bearer())
    assert again.json()["from_cache"] is True


def test_aggregate_requires_accounts(harness):
    response = harness.client.post("/api/v1/pedidos/aggregate", json={}, headers=bearer())
    assert response.status_code == 400


def test_bulk_requires_write_scope(harness):
    response = harness.client.post(
        "/api/v1/pedidos/bulk", json={"order_ids": ["1"], "action": "cancelar_pedido"},
        headers=bearer(scopes=("read",)))
    assert response.status_code == 403


def test_bulk_cancel(harness):
    harness.client.post("/api/v1/pedidos/sync", json={"integration_account_id": "acc-1"}, headers=bearer())
    response = harness.client.post(
        "/api/v1/pedidos/bulk", json={"order_ids": ["1", "zzz"], "action": "cancelar_pedido"},
        headers=bearer())
    body = response.json()
    assert body["ok"] is True
    assert body["processed"] == ["1"]
    assert body["skipped"] == [{"order_id": "zzz", "reason": "Pedido não encontrado"}]


def test_status_label(harness):
    response = harness.client.get(
        "/api/v1/pedidos/status-label", params={"status": "shipped", "substatus": "damaged"},
        headers=bearer())
    assert response.json() == {
        "situacao": "Enviado",
        "label": "Enviado • Danificado",
        "description": "Produto com avarias",
        "tone": "problem",
        "delivered": False,
        "problem": True,
    }


def test_connect_account(harness):
    response = harness.client.post(
        "/api/v1/integrations/acc-1/connect",
        json={"code": "abc", "redirect_uri": "https://app/callback"}, headers=bearer())
    assert response.status_code == 200
    assert response.json()["seller_id"] == "4321"
    assert harness.vault.saves == 1
    assert harness.store.rows("integration_accounts")[0]["seller_id"] == "4321"


def test_rate_limit_middleware_returns_error_body():
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, requests_per_minute=2)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    client = TestClient(app)
    assert [client.get("/ping").status_code for _ in range(2)] == [200, 200]
    response = client.get("/ping")
    assert response.status_code == 429
    assert response.json()["code"] == "rate_limited"
    assert response.json()["retryable"] is True
    assert int(response.headers["Retry-After"]) > 0
