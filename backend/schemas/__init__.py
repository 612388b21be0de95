# schemas/__init__.py
from schemas.domain import (
    Contributor,
    ContributorStatus,
    CoPayment,
    CoPaymentSnapshot,
    CoPaymentStatus,
    DeliveryAddress,
    LineItem,
    Order,
    OrderIntent,
    OrderStatus,
    PaymentSplit,
    PaymentStatus,
    PayoutProfile,
    SplitStatus,
    User,
    Vendor,
)
from schemas.webhook_events import (
    GatewayEvent,
    IgnoredEvent,
    PaymentLinkCancelledEvent,
    PaymentLinkPaidEvent,
)

__all__ = [
    "Contributor",
    "ContributorStatus",
    "CoPayment",
    "CoPaymentSnapshot",
    "CoPaymentStatus",
    "DeliveryAddress",
    "LineItem",
    "Order",
    "OrderIntent",
    "OrderStatus",
    "PaymentSplit",
    "PaymentStatus",
    "PayoutProfile",
    "SplitStatus",
    "User",
    "Vendor",
    "GatewayEvent",
    "IgnoredEvent",
    "PaymentLinkCancelledEvent",
    "PaymentLinkPaidEvent",
]
