#!/usr/bin/env python3
"""
Manual Downgrade Reconciliation

Re-runs the free-tier downgrade for one or more Stripe customers, e.g. after
a webhook delivery was exhausted. Safe to run repeatedly.

Usage:
    python scripts/reconcile_downgrade.py cus_123 [cus_456 ...]
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from app.db.session import close_engines, write_session_scope
from app.exceptions import ReconciliationError
from app.observability.logging import setup_logging
from app.services.downgrade import DowngradeReconciler

logger = structlog.get_logger()


async def reconcile_customers(customer_ids: list[str]) -> int:
    """Reconcile each customer; returns the number of failures."""
    failures = 0
    try:
        for customer_id in customer_ids:
            async with write_session_scope() as session:
                try:
                    result = await DowngradeReconciler(session).reconcile(customer_id)
                except ReconciliationError as exc:
                    failures += 1
                    logger.error("manual_reconcile_failed", customer_id=customer_id, error=exc.message)
                    continue

            if result is None:
                logger.warning("manual_reconcile_no_user", customer_id=customer_id)
            else:
                logger.info(
                    "manual_reconcile_done",
                    customer_id=customer_id,
                    user_id=str(result.user_id),
                    converted=result.converted_count,
                )
    finally:
        await close_engines()
    return failures


def main():
    parser = argparse.ArgumentParser(
        description="Downgrade users to the free tier and make excess private lists public",
    )
    parser.add_argument("customer_ids", nargs="+", help="Stripe customer ids (cus_...)")
    args = parser.parse_args()

    setup_logging()
    failures = asyncio.run(reconcile_customers(args.customer_ids))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
