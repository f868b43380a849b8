import logging
from typing import Optional

import redis
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore

from app.core.config import settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(
    jobstores={"default": MemoryJobStore()},
    job_defaults={"coalesce": True, "max_instances": 1},
)

PURGE_JOB_ID = "purge_expired_tokens"


def purge_expired_tokens(redis_client: Optional[redis.Redis] = None) -> int:
    """Drop blacklist and session-index rows whose tokens have expired."""
    from app.core.database import SessionLocal
    from app.services.revocation_store import RevocationStoreError, build_revocation_store

    db = SessionLocal()
    try:
        removed = build_revocation_store(db, redis_client).purge_expired()
        if removed:
            logger.info(f"Purged {removed} expired revocation entries")
        return removed
    except RevocationStoreError as e:
        logger.error(f"Expired token purge failed: {e}")
        return 0
    finally:
        db.close()


def start_scheduler(redis_client: Optional[redis.Redis] = None):
    """Start the scheduler with the expired-token purge job."""
    scheduler.add_job(
        purge_expired_tokens,
        "interval",
        minutes=settings.TOKEN_CLEANUP_INTERVAL_MINUTES,
        id=PURGE_JOB_ID,
        kwargs={"redis_client": redis_client},
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"APScheduler started, purging expired tokens every {settings.TOKEN_CLEANUP_INTERVAL_MINUTES} minutes")


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler shut down")
