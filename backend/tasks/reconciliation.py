"""
Reconciliation Report
=====================
Background task that finds co-payments every contributor paid for but that
never became an order (materialization hit a data problem) and reports each
one for manual follow-up. It never creates orders or moves money.

Features:
- Runs every RECONCILIATION_INTERVAL seconds (default 10 minutes)
- Logs each stuck co-payment as reconciliation_required
- Returns the findings so an admin view can show them
"""

import asyncio
import os
from typing import Optional

import structlog

from pipeline.errors import TransientError
from schemas.domain import utcnow
from storage.repository import SettlementRepository

logger = structlog.get_logger().bind(component="reconciliation")


# =============================================================================
# CONFIGURATION
# =============================================================================

class ReconciliationConfig:
    """Reconciliation loop configuration"""

    # How often to scan (seconds)
    CHECK_INTERVAL = int(os.getenv("RECONCILIATION_INTERVAL", "600"))

    # Maximum co-payments reported per cycle
    MAX_PER_CYCLE = int(os.getenv("RECONCILIATION_BATCH_SIZE", "100"))

    ENABLED = os.getenv("RECONCILIATION_ENABLED", "true").lower() == "true"


# =============================================================================
# SCAN
# =============================================================================

async def scan_once(repository: SettlementRepository, limit: Optional[int] = None) -> list[dict]:
    """Report completed co-payments with no order. Returns one entry per finding."""
    stuck = await repository.find_completed_without_order(limit or ReconciliationConfig.MAX_PER_CYCLE)
    now = utcnow()

    findings = []
    for co_payment in stuck:
        stuck_since = co_payment.completed_at or co_payment.created_at
        finding = {
            "co_payment_id": co_payment.id,
            "total_amount": co_payment.total_amount,
            "vendor_id": co_payment.order_intent.resolve_vendor_id(),
            "customer_email": co_payment.order_intent.customer.email,
            "stuck_minutes": int((now - stuck_since).total_seconds() // 60),
        }
        logger.error("reconciliation_required", **{**finding, "total_amount": str(co_payment.total_amount)})
        findings.append(finding)

    logger.info("reconciliation_scan_complete", found=len(findings))
    return findings


async def reconciliation_loop(repository: SettlementRepository, interval: Optional[int] = None):
    """Repeat scan_once until cancelled."""
    interval = interval or ReconciliationConfig.CHECK_INTERVAL
    logger.info(
        "reconciliation_loop_started",
        interval=interval,
        enabled=ReconciliationConfig.ENABLED,
    )

    if not ReconciliationConfig.ENABLED:
        logger.info("reconciliation_loop_disabled")
        return

    while True:
        try:
            await scan_once(repository)
        except TransientError as e:
            logger.warning("reconciliation_scan_failed", error=str(e))

        await asyncio.sleep(interval)
