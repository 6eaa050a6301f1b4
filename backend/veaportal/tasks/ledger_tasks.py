import asyncio
import logging
from celery import shared_task

from veaportal.core.deps import build_verification_service, get_gateway, get_payment_store

logger = logging.getLogger("vea")


async def run_backfill() -> int:
    service = build_verification_service(get_payment_store(), get_gateway())
    return await service.backfill_ledger()


@shared_task(
    bind=True,
    max_retries=3,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_jitter=True,
)
def backfill_ledger(self) -> int:
    """
    Sync Celery entry point for the async ledger backfill.
    """
    try:
        return asyncio.run(run_backfill())
    except Exception as exc:
        logger.error(f"Ledger backfill failed: {exc}")
        raise
