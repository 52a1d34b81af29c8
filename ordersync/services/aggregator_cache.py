import asyncio
import json
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional
from ordersync.config import settings
from ordersync.schemas.orders import AggregateCounters, OrderFilters
from ordersync.utils.logger import get_loggers
logger = get_loggers("AggregatorCache")

ComputeFn = Callable[[Optional[str], List[str], Optional[OrderFilters]], Awaitable[AggregateCounters]]


@dataclass
class _Entry:
    expires_at: float
    value: AggregateCounters
    accounts: FrozenSet[str]


class AggregatorCache:
    """TTL cache of aggregate counters keyed by tenant, accounts and filters.

    Calls for the same key that arrive inside the debounce window, or while
    a computation is running, share that computation. Any invalidation bumps
    the generation so that computations started earlier do not write back.
    """

    def __init__(self, compute: ComputeFn, ttl_seconds: Optional[float] = None,
                 debounce_seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.compute = compute
        self.ttl = settings.AGGREGATOR_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.debounce = settings.AGGREGATOR_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self.clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._pending: Dict[str, asyncio.Task] = {}
        self._generation = 0

    @staticmethod
    def make_key(tenant_id: Optional[str], account_ids: List[str],
                 filters: Optional[OrderFilters] = None) -> str:
        payload = {
            "tenant": tenant_id,
            "accounts": sorted(set(account_ids)),
            "filters": filters.model_dump(exclude_none=True) if filters else {},
        }
        return "aggregator_" + json.dumps(payload, sort_keys=True, default=str)

    def __len__(self) -> int:
        return len(self._entries)

    def invalidate(self, account_id: Optional[str] = None):
        self._generation += 1
        if account_id is None:
            self._entries.clear()
            logger.info("Aggregator cache cleared")
            return
        stale = [k for k, e in self._entries.items() if account_id in e.accounts]
        for key in stale:
            del self._entries[key]
        logger.info(f"Invalidated {len(stale)} cached aggregates for account {account_id}")

    def _release(self, key: str, task: asyncio.Task):
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled():
            task.exception()

    async def _run(self, key: str, tenant_id: Optional[str], account_ids: List[str],
                   filters: Optional[OrderFilters]) -> AggregateCounters:
        if self.debounce > 0:
            await asyncio.sleep(self.debounce)
        generation = self._generation
        value = await self.compute(tenant_id, account_ids, filters)
        if value.errors:
            logger.info(f"Not caching aggregate with {len(value.errors)} account errors")
        elif generation == self._generation:
            self._entries[key] = _Entry(
                expires_at=self.clock() + self.ttl,
                value=value,
                accounts=frozenset(account_ids),
            )
        else:
            logger.info("Discarding aggregate computed before an invalidation")
        return value

    async def get_aggregate_counts(self, tenant_id: Optional[str], account_ids: List[str],
                                   filters: Optional[OrderFilters] = None,
                                   force: bool = False) -> AggregateCounters:
        key = self.make_key(tenant_id, account_ids, filters)
        if force:
            self._generation += 1
            self._entries.pop(key, None)
            self._pending.pop(key, None)
        else:
            entry = self._entries.get(key)
            if entry is not None:
                if entry.expires_at > self.clock():
                    return entry.value.model_copy(update={"from_cache": True})
                del self._entries[key]
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(
                self._run(key, tenant_id, list(account_ids), filters))
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        value = await asyncio.shield(task)
        return value.model_copy()
