# services/__init__.py
from services.notifications import (
    EmailNotifier,
    EmailTemplates,
    LoggingNotifier,
    Notifier,
    build_notifier,
)
from services.payouts import (
    HttpPayoutClient,
    PayoutClient,
    PayoutRequest,
    PayoutResponse,
    SimulatedPayoutClient,
    build_payout_client,
)

__all__ = [
    "EmailNotifier",
    "EmailTemplates",
    "LoggingNotifier",
    "Notifier",
    "build_notifier",
    "HttpPayoutClient",
    "PayoutClient",
    "PayoutRequest",
    "PayoutResponse",
    "SimulatedPayoutClient",
    "build_payout_client",
]
