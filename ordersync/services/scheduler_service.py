from typing import Optional, Dict, List
from urllib.parse import urlsplit
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.redis import RedisJobStore
from apscheduler.triggers.interval import IntervalTrigger
from ordersync.config import settings
from ordersync.tasks.sync_tasks import incremental_sync_all_accounts
from ordersync.utils.logger import get_loggers

logger = get_loggers("SchedulerService")

INCREMENTAL_SYNC_JOB_ID = "incremental_sync_all_accounts"


def _jobstore(redis_url: Optional[str]):
    if not redis_url:
        return MemoryJobStore()
    parts = urlsplit(redis_url)
    db = parts.path.lstrip("/")
    return RedisJobStore(
        host=parts.hostname or "localhost",
        port=parts.port or 6379,
        db=int(db) if db else 0,
        password=parts.password,
    )


class SchedulerService:
    def __init__(self, redis_url: Optional[str] = None):
        self._scheduler = AsyncIOScheduler(
            jobstores={'default': _jobstore(redis_url if redis_url is not None else settings.REDIS_URL)},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 3600
            },
            timezone='UTC'
        )

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    def start(self):
        if not self._scheduler.running:
            self._register_jobs()
            self._scheduler.start()
            logger.info('Scheduler started successfully!')

    def shutdown(self):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler shutdown complete!")

    def _register_jobs(self):
        self._scheduler.add_job(
            incremental_sync_all_accounts,
            trigger=IntervalTrigger(minutes=settings.INCREMENTAL_SYNC_MINUTES),
            id=INCREMENTAL_SYNC_JOB_ID,
            name='Incremental order sync - all accounts',
            replace_existing=True,
        )
        logger.info('All scheduled jobs has been registered!')

    def remove_job(self, job_id: str):
        self._scheduler.remove_job(job_id)
        logger.info(f"Removed job :{job_id}")

    def get_jobs(self) -> List[Dict]:
        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]
