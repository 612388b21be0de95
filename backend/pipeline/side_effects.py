"""
Post-order side effects.

Settlement and both notifications run after an order is confirmed. They are
best effort: each failure is logged and swallowed so the order stands.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from pipeline.settlement import SettlementEngine
from schemas.domain import Order
from services.notifications import LoggingNotifier, Notifier
from storage.repository import SettlementRepository

logger = structlog.get_logger().bind(component="side_effects")

# schedules fn(*args) to run later, e.g. BackgroundTasks.add_task
Defer = Callable[..., None]


async def best_effort(label: str, awaitable: Awaitable[Any], log=None, **context) -> Optional[Any]:
    """Await, log any exception and return None in its place."""
    log = log or logger
    try:
        return await awaitable
    except Exception as e:
        log.error(
            "side_effect_failed",
            side_effect=label,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
            **context,
        )
        return None


class PostOrderEffects:
    """Runs settlement, vendor and customer notification for one order."""

    def __init__(
        self,
        repository: SettlementRepository,
        settlement: SettlementEngine,
        notifier: Optional[Notifier] = None,
    ):
        self.repository = repository
        self.settlement = settlement
        self.notifier = notifier or LoggingNotifier()

    async def run(self, order: Order, customer_email: Optional[str] = None, customer_name: Optional[str] = None):
        log = logger.bind(order_id=order.id, order_number=order.order_number)
        vendor = await best_effort("load_vendor", self.repository.get_vendor(order.vendor_id), log=log)
        user = await best_effort("load_customer", self.repository.get_user(order.user_id), log=log)

        if vendor is None:
            log.error("side_effects_skipped", reason="vendor_not_found", vendor_id=order.vendor_id)
            return

        customer_email = customer_email or (user.email if user else None)
        customer_name = customer_name or (user.name if user else None)

        effects = [
            best_effort(
                "settlement",
                self.settlement.settle(order.id, order.final_amount, vendor.payout_profile),
                log=log,
            ),
            best_effort("vendor_notification", self.notifier.notify_vendor(order, vendor), log=log),
        ]
        if customer_email:
            effects.append(
                best_effort(
                    "customer_notification",
                    self.notifier.notify_customer(order, vendor, customer_email, customer_name),
                    log=log,
                )
            )
        else:
            log.warning("customer_notification_skipped", reason="no_customer_email")

        await asyncio.gather(*effects)
        log.info("post_order_effects_complete")

    async def dispatch(
        self,
        order: Order,
        defer: Optional[Defer] = None,
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
    ):
        """
        Run the effects now, or hand them to defer to run after the caller
        has answered (FastAPI's BackgroundTasks.add_task fits).
        """
        if defer is None:
            await self.run(order, customer_email, customer_name)
            return
        defer(self.run, order, customer_email, customer_name)
        logger.info("post_order_effects_deferred", order_id=order.id)
