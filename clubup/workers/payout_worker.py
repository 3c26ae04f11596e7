"""
Payout Background Worker
Runs the scheduled payout processor on an interval, as an alternative to
calling POST /cron/payouts from an external scheduler
"""

import asyncio
import logging
import os

from ..database import SessionLocal
from ..domain.payouts.service import PayoutProcessor, PayoutRunResult
from ..providers import Providers, build_providers

logger = logging.getLogger(__name__)

PAYOUT_WORKER_INTERVAL_SECONDS = int(os.getenv("PAYOUT_WORKER_INTERVAL_SECONDS", "900"))


async def process_due_payouts(providers: Providers) -> PayoutRunResult:
    """One payout run in its own database session"""
    db = SessionLocal()
    try:
        processor = PayoutProcessor(db, providers.stripe, providers.paypal)
        return await processor.process_scheduled_payouts()
    finally:
        db.close()


async def run_payout_worker(interval_seconds: int = PAYOUT_WORKER_INTERVAL_SECONDS):
    """
    Main worker loop - runs every 15 minutes by default
    """
    logger.info("🚀 Starting payout worker...")
    providers = build_providers()

    while True:
        try:
            result = await process_due_payouts(providers)
            if result.failures:
                logger.warning(f"⚠️ {len(result.failures)} payout(s) failed this run")
        except Exception as e:
            logger.error(f"❌ Error in payout worker loop: {e}")

        await asyncio.sleep(interval_seconds)
