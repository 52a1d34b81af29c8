from typing import Dict, Optional
from ordersync.errors import OrderSyncError
from ordersync.services.sync_service import OrderSyncService, get_default_sync_service
from ordersync.utils.logger import get_loggers
logger = get_loggers("sync_tasks")


async def incremental_sync_all_accounts(service: Optional[OrderSyncService] = None) -> Dict[str, int]:
    """Pull orders updated since the last run for every active account."""
    service = service or get_default_sync_service()
    accounts = await service.store.select("integration_accounts", {"is_active": True})
    summary = {"accounts": 0, "synced": 0, "failed_accounts": 0, "record_errors": 0}
    for account in accounts.rows:
        summary["accounts"] += 1
        try:
            result = await service.sync_incremental(account["id"])
        except OrderSyncError as e:
            summary["failed_accounts"] += 1
            logger.error(f"Incremental sync failed for {account['id']}: [{e.code}] {e.message}")
            continue
        except Exception as e:
            summary["failed_accounts"] += 1
            logger.error(f"Incremental sync failed for {account['id']}: {e}")
            continue
        summary["synced"] += result.synced
        summary["record_errors"] += len(result.errors)
    logger.info(f"Incremental sync finished: {summary}")
    return summary
