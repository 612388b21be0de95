"""
Turns a completed co-payment into exactly one confirmed order.

The order row and the co-payment link are written together by
set_order_id_if_null; only the caller that wins that compare-and-set creates
an order. If the write fails nothing is linked, so a redelivered webhook
can retry.
"""

import os
import secrets
import time
from datetime import timedelta
from typing import Optional

import structlog

from pipeline.errors import (
    AlreadyProcessed,
    DataIntegrityError,
    OrderNumberConflict,
    PreconditionError,
    TransientError,
)
from schemas.domain import (
    CoPayment,
    CoPaymentStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    new_id,
    utcnow,
)
from storage.repository import SettlementRepository

DEFAULT_DELIVERY_HOURS = int(os.getenv("DEFAULT_DELIVERY_HOURS", "3"))
ORDER_NUMBER_ATTEMPTS = 3


def generate_order_number() -> str:
    """ORD-<year>-<last 6 digits of epoch millis>-<4 hex>"""
    now = utcnow()
    millis = str(int(time.time() * 1000))[-6:]
    return f"ORD-{now.year}-{millis}-{secrets.token_hex(2)}"


class OrderMaterializer:

    def __init__(
        self,
        repository: SettlementRepository,
        default_delivery_hours: Optional[int] = None,
    ):
        self.repository = repository
        self.default_delivery_hours = default_delivery_hours or DEFAULT_DELIVERY_HOURS
        self._logger = structlog.get_logger().bind(component="order_materializer")

    async def materialize_from_co_payment(
        self,
        co_payment: CoPayment,
        gateway_payment_id: Optional[str] = None,
    ) -> Order:
        """
        Create the order for a completed co-payment.

        Raises:
            PreconditionError: co-payment not completed, or already linked
            DataIntegrityError: order intent lacks items, vendor or customer email
            AlreadyProcessed: another caller linked an order first
            TransientError: the order could not be persisted; nothing was linked
        """
        log = self._logger.bind(co_payment_id=co_payment.id)

        if co_payment.status != CoPaymentStatus.COMPLETED:
            raise PreconditionError(f"co-payment {co_payment.id} is {co_payment.status.value}, not completed")
        if co_payment.order_id is not None:
            raise PreconditionError(f"co-payment {co_payment.id} already has order {co_payment.order_id}")

        intent = co_payment.order_intent
        if not intent.items:
            raise DataIntegrityError(f"co-payment {co_payment.id} has no line items")

        vendor_id = intent.resolve_vendor_id()
        if not vendor_id:
            raise DataIntegrityError(f"co-payment {co_payment.id} has no vendor")
        vendor = await self.repository.get_vendor(vendor_id)
        if vendor is None:
            raise DataIntegrityError(f"vendor {vendor_id} for co-payment {co_payment.id} not found")

        customer = intent.customer
        customer_email = customer.email or (intent.delivery_address.email if intent.delivery_address else None)
        if not customer_email:
            raise DataIntegrityError(f"co-payment {co_payment.id} has no customer email")

        user = await self.repository.find_or_create_user(
            customer_email,
            name=customer.name or (intent.delivery_address.full_name if intent.delivery_address else None),
            phone=customer.phone or (intent.delivery_address.phone if intent.delivery_address else None),
        )

        subtotal = intent.subtotal if intent.subtotal is not None else intent.items_subtotal()
        final_amount = intent.total if intent.total is not None else co_payment.total_amount
        estimated_delivery = intent.estimated_delivery or utcnow() + timedelta(hours=self.default_delivery_hours)

        fields = dict(
            id=new_id(),
            user_id=user.id,
            vendor_id=vendor.id,
            total_amount=subtotal,
            delivery_fee=intent.delivery_fee,
            discount=intent.discount,
            final_amount=final_amount,
            payment_status=PaymentStatus.COMPLETED,
            payment_method=PaymentMethod.SPLIT.value,
            gateway_payment_id=gateway_payment_id,
            status=OrderStatus.CONFIRMED,
            delivery_address=intent.delivery_address,
            items=intent.items,
            estimated_delivery=estimated_delivery,
            co_payment_id=co_payment.id,
        )

        try:
            order = await self._link_with_unique_number(co_payment.id, fields)
        except Exception as e:
            log.warning("order_link_failed", error=str(e), error_type=type(e).__name__)
            if isinstance(e, TransientError):
                raise
            raise TransientError(f"order for co-payment {co_payment.id} could not be persisted: {e}") from e

        if order is None:
            log.info("order_materialization_lost_claim")
            raise AlreadyProcessed(f"co-payment {co_payment.id} already materialized")

        log.info(
            "order_materialized",
            order_id=order.id,
            order_number=order.order_number,
            vendor_id=vendor.id,
            final_amount=str(order.final_amount),
        )
        return order

    async def _link_with_unique_number(self, co_payment_id: str, fields: dict) -> Optional[Order]:
        """Order on success, None when another caller linked an order first."""
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order = Order(order_number=generate_order_number(), **fields)
            try:
                linked = await self.repository.set_order_id_if_null(co_payment_id, order)
            except OrderNumberConflict:
                self._logger.warning("order_number_conflict", order_number=order.order_number, attempt=attempt)
                if attempt == ORDER_NUMBER_ATTEMPTS:
                    raise
                continue
            return order if linked else None
