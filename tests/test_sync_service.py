import asyncio
from datetime import timedelta

import pytest

from fakes import NOW, FakeFetcher, FakeVault, FixedClock, InMemoryStore, account_row, raw_order
from ordersync.errors import AccountNotFoundError, AuthExpiredError, RateLimitedError, TransformError
from ordersync.schemas.orders import OrderFilters, SyncRequest
from ordersync.services.order_transformer import transform_order
from ordersync.services.store import OrderStore
from ordersync.services.sync_service import INITIAL_SYNC_DAYS, OrderSyncService, store_filters
from ordersync.services.token_provider import TokenProvider


def make_service(store, fetcher, transform=transform_order, clock=None):
    return OrderSyncService(
        store, TokenProvider(FakeVault()),
        transform=transform,
        fetcher_factory=lambda account: fetcher,
        clock=clock or FixedClock(),
    )


def stored_order(order_id, account_id="acc-1", **extra):
    row = {
        "id": order_id,
        "numero": order_id,
        "nome_cliente": "Cliente",
        "data_pedido": "2024-03-01",
        "situacao": "Pago",
        "valor_total": 100.0,
        "integration_account_id": account_id,
        "obs_interna": None,
        "last_updated": "2024-03-01T10:00:00.000-03:00",
    }
    row.update(extra)
    return row


def sync(service, tenant_id="tenant-1", **body):
    body.setdefault("integration_account_id", "acc-1")
    return asyncio.run(service.sync(tenant_id, SyncRequest(**body)))


def test_stored_orders_are_served_without_remote_call(store):
    store.rows("pedidos").append(stored_order("1"))
    store.rows("itens_pedidos").append({"id": "i1", "pedido_id": "1", "sku": "SKU-1", "quantidade": 1})
    fetcher = FakeFetcher([raw_order("2")])

    outcome = sync(make_service(store, fetcher))

    assert outcome.source == "banco"
    assert [r["id"] for r in outcome.results] == ["1"]
    assert outcome.results[0]["itens"][0]["sku"] == "SKU-1"
    assert outcome.paging == {"total": 1, "limit": 50, "offset": 0}
    assert fetcher.calls == 0


def test_empty_store_falls_back_to_live_and_persists(store):
    fetcher = FakeFetcher([raw_order("1"), raw_order("2")])

    outcome = sync(make_service(store, fetcher))

    assert outcome.source == "tempo-real"
    assert fetcher.calls == 1
    assert outcome.synced == 2
    assert {r["id"] for r in outcome.results} == {"1", "2"}
    assert {r["id"] for r in store.rows("pedidos")} == {"1", "2"}
    assert len(store.rows("itens_pedidos")) == 2


def test_force_live_skips_store(store):
    store.rows("pedidos").append(stored_order("1"))
    fetcher = FakeFetcher([raw_order("2")])

    outcome = sync(make_service(store, fetcher), force_source="tempo-real")

    assert outcome.source == "tempo-real"
    assert fetcher.calls == 1
    assert store.select_calls.get("pedidos", 0) == 0


def test_force_store_never_goes_remote(store):
    fetcher = FakeFetcher([raw_order("2")])
    outcome = sync(make_service(store, fetcher), force_source="banco")
    assert outcome.source == "banco"
    assert outcome.results == []
    assert fetcher.calls == 0


def test_store_failure_falls_back_to_live(store):
    store.failing_tables.add("pedidos")
    fetcher = FakeFetcher([raw_order("1")])
    outcome = sync(make_service(store, fetcher))
    assert outcome.source == "tempo-real"
    assert fetcher.calls == 1
    assert outcome.errors[0].kind == "upsert_error"


def test_store_filters_are_translated(store):
    store.rows("pedidos").extend([
        stored_order("1", nome_cliente="Ana Lima", uf="SP", cidade="Campinas"),
        stored_order("2", nome_cliente="Bruno", uf="RJ", cidade="Niterói"),
        stored_order("3", account_id="acc-2", nome_cliente="Ana Outra", uf="SP"),
    ])
    outcome = sync(make_service(store, FakeFetcher()), filters={"search": "ana", "uf": "sp"})
    assert [r["id"] for r in outcome.results] == ["1"]

    query = store_filters("acc-1", OrderFilters(situacao="Pago", valor_min=10, cidade=""))
    assert query == {"integration_account_id": "acc-1", "situacao": "Pago", "valor_total__gte": 10}


@pytest.mark.parametrize("error", [
    AuthExpiredError("expired"),
    RateLimitedError("slow down", retry_after=3),
])
def test_remote_failure_is_reported_not_raised(store, error):
    outcome = sync(make_service(store, FakeFetcher(error=error)))
    assert outcome.source == "banco"
    assert outcome.results == []
    assert outcome.error is error


def test_unknown_account_or_foreign_tenant(store):
    service = make_service(store, FakeFetcher())
    with pytest.raises(AccountNotFoundError):
        sync(service, integration_account_id="missing")
    with pytest.raises(AccountNotFoundError):
        sync(service, tenant_id="tenant-2")


def test_unsupported_provider_returns_empty_result():
    store = InMemoryStore({"integration_accounts": [account_row("acc-1", "tenant-1", provider="shopee")]})
    fetcher = FakeFetcher([raw_order("1")])
    outcome = sync(make_service(store, fetcher))
    assert outcome.unsupported
    assert outcome.results == []
    assert fetcher.calls == 0


def test_one_bad_order_does_not_abort_the_batch(store):
    def flaky_transform(raw, account_id, today=None):
        if raw["id"] == "2":
            raise TransformError("bad payload", order_id="2")
        return transform_order(raw, account_id, today=today)

    service = make_service(store, FakeFetcher(), transform=flaky_transform)
    result = asyncio.run(service.ingest(
        store.rows("integration_accounts")[0], [raw_order("1"), raw_order("2"), raw_order("3")]))

    assert result.synced == 2
    assert [(e.order_id, e.kind) for e in result.errors] == [("2", "transform_error")]
    assert {r["id"] for r in store.rows("pedidos")} == {"1", "3"}


def test_upsert_failure_is_collected_per_record(store):
    store.failing_upsert_ids.add("2")
    service = make_service(store, FakeFetcher())
    result = asyncio.run(service.ingest(
        store.rows("integration_accounts")[0], [raw_order("1"), raw_order("2")]))
    assert result.synced == 1
    assert [(e.order_id, e.kind) for e in result.errors] == [("2", "upsert_error")]


def test_ingest_is_idempotent(store):
    service = make_service(store, FakeFetcher())
    account = store.rows("integration_accounts")[0]
    payload = {"id": 555, "status": "paid", "date_created": "2024-03-01T10:00:00Z",
               "total_amount": 199.9, "buyer": {"nickname": "ana"}}

    asyncio.run(service.ingest(account, [payload]))
    first = [dict(r) for r in store.rows("pedidos")]
    asyncio.run(service.ingest(account, [payload]))

    assert store.rows("pedidos") == first
    assert store.written["pedidos"] == 1
    row = first[0]
    assert (row["id"], row["data_pedido"], row["nome_cliente"], row["situacao"], row["valor_total"]) == \
        ("555", "2024-03-01", "ana", "Pago", 199.9)


def test_reingest_keeps_internal_notes(store):
    service = make_service(store, FakeFetcher())
    account = store.rows("integration_accounts")[0]
    asyncio.run(service.ingest(account, [raw_order("1")]))
    store.rows("pedidos")[0]["obs_interna"] = "[ESTOQUE_BAIXADO]"
    asyncio.run(service.ingest(account, [raw_order("1", status="shipped", last_updated="2024-03-02T00:00:00Z")]))
    row = store.rows("pedidos")[0]
    assert row["situacao"] == "Enviado"
    assert row["obs_interna"] == "[ESTOQUE_BAIXADO]"


def test_incremental_sync_stamps_last_sync(store):
    clock = FixedClock()
    fetcher = FakeFetcher([raw_order(str(i)) for i in range(3)])
    service = make_service(store, fetcher, clock=clock)

    result = asyncio.run(service.sync_incremental("acc-1"))

    assert result.synced == 3
    params = fetcher.params[0]
    assert params.sort == "date_asc"
    since = NOW - timedelta(days=INITIAL_SYNC_DAYS)
    assert params.updated_from == since.strftime("%Y-%m-%dT%H:%M:%S.000-00:00")
    assert store.rows("integration_accounts")[0]["last_sync_at"] == NOW


def test_incremental_sync_keeps_cursor_on_record_errors(store):
    store.failing_upsert_ids.add("1")
    service = make_service(store, FakeFetcher([raw_order("1"), raw_order("2")]))
    result = asyncio.run(service.sync_incremental("acc-1"))
    assert result.synced == 1
    assert store.rows("integration_accounts")[0]["last_sync_at"] is None


def test_aggregate_counts_classifies_orders():
    store = InMemoryStore({
        "integration_accounts": [
            account_row("acc-1", "tenant-1"),
            account_row("acc-2", "tenant-1"),
        ],
        "mapeamentos_depara": [
            {"id": "m1", "sku_pedido": "KIT", "sku_correspondente": "BASE", "quantidade": 2, "ativo": True},
            {"id": "m2", "sku_pedido": "HALF", "sku_correspondente": None, "sku_simples": None, "ativo": True},
        ],
        "historico_vendas": [
            {"id": "h1", "id_unico": "9", "status": "baixado", "integration_account_id": "acc-1"},
            {"id": "h2", "id_unico": "8", "status": "baixado", "integration_account_id": "acc-3"},
        ],
    })
    fetcher = FakeFetcher([
        raw_order("1", skus=("KIT",)),
        raw_order("2", skus=("KIT", "HALF")),
        raw_order("3", skus=("UNKNOWN",)),
        raw_order("4", skus=()),
    ])
    failing = FakeFetcher(error=AuthExpiredError("expired"))
    service = OrderSyncService(
        store, TokenProvider(FakeVault()),
        fetcher_factory=lambda account: fetcher if account["id"] == "acc-1" else failing)

    counters = asyncio.run(service.aggregate_counts("tenant-1", ["acc-1", "acc-2"]))

    assert counters.total == 4
    assert counters.prontos_baixa == 1
    assert counters.mapeamento_pendente == 2
    assert counters.baixados == 1
    assert [(e.account_id, e.kind) for e in counters.errors] == [("acc-2", "requires_reauthentication")]
    dumped = counters.model_dump(by_alias=True)
    assert dumped["prontosBaixa"] == 1 and dumped["mapeamentoPendente"] == 2


def test_live_fallback_applies_store_only_filters(store):
    fetcher = FakeFetcher([raw_order("1", total_amount=2500), raw_order("2"), raw_order("3", total_amount=1200)])

    outcome = sync(make_service(store, fetcher), filters={"valor_min": 1000, "valor_max": 2000})

    assert outcome.source == "tempo-real"
    assert [r["id"] for r in outcome.results] == ["3"]
    assert outcome.synced == 3
    assert {r["id"] for r in store.rows("pedidos")} == {"1", "2", "3"}


def test_aggregate_counts_ignore_other_tenants_accounts():
    store = InMemoryStore({
        "integration_accounts": [
            account_row("acc-1", "tenant-1"),
            account_row("acc-3", "tenant-2"),
        ],
        "historico_vendas": [
            {"id": "h1", "id_unico": "7", "status": "baixado", "integration_account_id": "acc-3"},
            {"id": "h2", "id_unico": "8", "status": "baixado", "integration_account_id": "acc-3"},
        ],
    })
    service = OrderSyncService(store, TokenProvider(FakeVault()),
                               fetcher_factory=lambda account: FakeFetcher())

    counters = asyncio.run(service.aggregate_counts("tenant-1", ["acc-1", "acc-3"]))
    assert [(e.account_id, e.kind) for e in counters.errors] == [("acc-3", "account_not_found")]
    assert counters.baixados == 0

    foreign_only = asyncio.run(service.aggregate_counts("tenant-1", ["acc-3"]))
    assert foreign_only.baixados == 0
    assert store.select_calls.get("historico_vendas", 0) == 1


def test_store_without_every_verb_cannot_be_built():
    class ReadOnlyStore(OrderStore):
        async def select(self, table, filters=None, pagination=None, order_by=None):
            return None

    with pytest.raises(TypeError):
        ReadOnlyStore()
