import asyncio

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.redis import RedisJobStore

from fakes import FakeFetcher, FakeVault, FixedClock, InMemoryStore, account_row, raw_order
from ordersync.errors import AuthExpiredError
from ordersync.services.scheduler_service import INCREMENTAL_SYNC_JOB_ID, SchedulerService, _jobstore
from ordersync.services.sync_service import OrderSyncService
from ordersync.services.token_provider import TokenProvider
from ordersync.tasks.sync_tasks import incremental_sync_all_accounts


def test_incremental_sync_isolates_failing_accounts():
    store = InMemoryStore({"integration_accounts": [
        account_row("acc-1", "tenant-1"),
        account_row("acc-2", "tenant-1"),
        account_row("acc-3", "tenant-1", is_active=False),
    ]})
    fetchers = {
        "acc-1": FakeFetcher([raw_order("1"), raw_order("2")]),
        "acc-2": FakeFetcher(error=AuthExpiredError("expired")),
    }
    service = OrderSyncService(store, TokenProvider(FakeVault()),
                               fetcher_factory=lambda account: fetchers[account["id"]],
                               clock=FixedClock())

    summary = asyncio.run(incremental_sync_all_accounts(service))

    assert summary == {"accounts": 2, "synced": 2, "failed_accounts": 1, "record_errors": 0}
    stamped = {a["id"]: a["last_sync_at"] for a in store.rows("integration_accounts")}
    assert stamped["acc-1"] is not None
    assert stamped["acc-2"] is None


def test_jobstore_selection():
    assert isinstance(_jobstore(None), MemoryJobStore)
    assert isinstance(_jobstore("redis://:secret@cache:6380/2"), RedisJobStore)


def test_scheduler_registers_incremental_job():
    async def run():
        scheduler = SchedulerService(redis_url="")
        scheduler.start()
        try:
            return scheduler.get_jobs()
        finally:
            scheduler.shutdown()

    jobs = asyncio.run(run())
    assert [job["id"] for job in jobs] == [INCREMENTAL_SYNC_JOB_ID]
    assert jobs[0]["next_run"] is not None
