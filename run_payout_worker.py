"""
Payout Background Worker Runner
Run this as a separate process: python run_payout_worker.py
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from clubup.workers.payout_worker import run_payout_worker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info("🚀 Starting Payout Background Worker...")
    try:
        asyncio.run(run_payout_worker())
    except KeyboardInterrupt:
        logger.info("👋 Payout worker stopped by user")
    except Exception as e:
        logger.error(f"❌ Payout worker crashed: {e}")
        sys.exit(1)
