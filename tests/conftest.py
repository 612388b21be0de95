import asyncio
import json
from decimal import Decimal
from typing import Optional

import pytest

from pipeline.coordinator import PaymentCoordinator
from pipeline.errors import PayoutLegError
from pipeline.settlement import SettlementEngine
from pipeline.webhook_auth import sign_payload
from schemas.domain import (
    Contributor,
    CoPayment,
    CustomerInfo,
    DeliveryAddress,
    LineItem,
    OrderIntent,
    PayoutProfile,
    Vendor,
)
from services.notifications import Notifier
from services.payouts import PayoutClient, PayoutRequest, PayoutResponse
from storage.memory import InMemorySettlementRepository

WEBHOOK_SECRET = "whsec_test_secret"


# =============================================================================
# FAKES
# =============================================================================

class FakeNotifier(Notifier):

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.vendor_calls = []
        self.customer_calls = []

    async def notify_vendor(self, order, vendor):
        self.vendor_calls.append((order.id, vendor.id))
        if self.fail:
            raise RuntimeError("email provider down")
        return "msg-vendor"

    async def notify_customer(self, order, vendor, customer_email, customer_name=None):
        self.customer_calls.append((order.id, customer_email))
        if self.fail:
            raise RuntimeError("email provider down")
        return "msg-customer"


class FakePayoutClient(PayoutClient):

    def __init__(self, failing_legs: tuple = ()):
        self.failing_legs = set(failing_legs)
        self.requests: list[tuple[str, PayoutRequest]] = []

    async def create_payout(self, request: PayoutRequest, leg: str) -> PayoutResponse:
        self.requests.append((leg, request))
        if leg in self.failing_legs:
            raise PayoutLegError(leg, "provider rejected", status_code=400)
        return PayoutResponse(
            id=f"pout_{leg}_{len(self.requests)}",
            status="processing",
            amount=request.amount,
            reference_id=request.reference_id,
            created_at=1700000000,
        )


class YieldingRepository(InMemorySettlementRepository):
    """Suspends before each store call, as a networked store would, so
    tasks gathered on one loop interleave between calls."""

    async def get_co_payment(self, co_payment_id):
        await asyncio.sleep(0)
        return await super().get_co_payment(co_payment_id)

    async def get_contributor(self, contributor_id):
        await asyncio.sleep(0)
        return await super().get_contributor(contributor_id)

    async def get_contributor_by_payment_link(self, payment_link_id):
        await asyncio.sleep(0)
        return await super().get_contributor_by_payment_link(payment_link_id)

    async def list_contributors(self, co_payment_id):
        await asyncio.sleep(0)
        return await super().list_contributors(co_payment_id)

    async def mark_contributor_paid(self, contributor_id, paid_at):
        await asyncio.sleep(0)
        return await super().mark_contributor_paid(contributor_id, paid_at)

    async def advance_co_payment_status(self, co_payment_id, status, completed_at=None):
        await asyncio.sleep(0)
        return await super().advance_co_payment_status(co_payment_id, status, completed_at)

    async def get_vendor(self, vendor_id):
        await asyncio.sleep(0)
        return await super().get_vendor(vendor_id)

    async def find_or_create_user(self, email, name=None, phone=None):
        await asyncio.sleep(0)
        return await super().find_or_create_user(email, name=name, phone=phone)

    async def set_order_id_if_null(self, co_payment_id, order):
        await asyncio.sleep(0)
        return await super().set_order_id_if_null(co_payment_id, order)

    async def record_cancelled_link(self, payment_link_id):
        await asyncio.sleep(0)
        return await super().record_cancelled_link(payment_link_id)

    async def is_link_cancelled(self, payment_link_id):
        await asyncio.sleep(0)
        return await super().is_link_cancelled(payment_link_id)


# =============================================================================
# BUILDERS
# =============================================================================

PLATFORM_PROFILE = PayoutProfile(
    account_number="9988776655",
    ifsc_code="ICIC0000001",
    beneficiary_name="Cake Shop Platform",
)


def make_vendor(vendor_id: str = "vendor-1", profile: Optional[PayoutProfile] = None) -> Vendor:
    return Vendor(
        id=vendor_id,
        name="Sweet Tooth Bakery",
        email="orders@sweettooth.test",
        payout_profile=profile or PayoutProfile(
            account_number="1234567890",
            ifsc_code="HDFC0001234",
            beneficiary_name="Sweet Tooth Bakery",
        ),
    )


def make_order_intent(vendor_id: Optional[str] = "vendor-1", email: Optional[str] = "priya@example.com", items=None) -> OrderIntent:
    if items is None:
        items = [
            LineItem(cake_id="cake-1", name="Chocolate Truffle", quantity=1, price=Decimal("400"), vendor_id=vendor_id),
        ]
    return OrderIntent(
        customer=CustomerInfo(name="Priya", email=email, phone="9000000000"),
        items=items,
        delivery_address=DeliveryAddress(
            full_name="Priya",
            address="12 MG Road",
            city="Bengaluru",
            pincode="560001",
        ),
        vendor_id=vendor_id,
        subtotal=Decimal("400"),
        delivery_fee=Decimal("50"),
        discount=Decimal("0"),
        total=Decimal("450"),
    )


def make_co_payment(amounts=(100, 200, 150), intent: Optional[OrderIntent] = None, co_payment_id: str = "cp-1"):
    co_payment = CoPayment(
        id=co_payment_id,
        total_amount=Decimal(sum(amounts)),
        order_intent=intent or make_order_intent(),
    )
    contributors = [
        Contributor(
            id=f"{co_payment_id}-c{i}",
            co_payment_id=co_payment_id,
            email=f"friend{i}@example.com",
            name=f"Friend {i}",
            amount=Decimal(amount),
            payment_link_id=f"plink_{co_payment_id}_{i}",
        )
        for i, amount in enumerate(amounts)
    ]
    return co_payment, contributors


def paid_event(link_id: str, payment_id: str = "pay_001", status: Optional[str] = "paid",
               notes: Optional[dict] = None, kind: str = "payment_link.paid") -> dict:
    entity = {"id": link_id, "amount": 10000, "notes": notes or {}}
    if status is not None:
        entity["status"] = status
    return {
        "event": kind,
        "payload": {
            "payment_link": {"entity": entity},
            "payment": {"entity": {"id": payment_id, "amount": 10000, "status": "captured"}},
        },
    }


def cancelled_event(link_id: str, kind: str = "payment_link.cancelled") -> dict:
    return {
        "event": kind,
        "payload": {"payment_link": {"entity": {"id": link_id, "status": "cancelled"}}},
    }


def signed(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    body = json.dumps(event).encode()
    return body, sign_payload(body, secret)


def build_test_coordinator(repository, notifier, payout_client) -> PaymentCoordinator:
    settlement = SettlementEngine(
        repository,
        payout_client,
        platform_profile=PLATFORM_PROFILE,
        platform_percent=20,
        vendor_percent=80,
    )
    return PaymentCoordinator(
        repository,
        notifier=notifier,
        payout_client=payout_client,
        settlement=settlement,
        webhook_secret=WEBHOOK_SECRET,
        signature_bypass=False,
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def repository():
    return InMemorySettlementRepository()


@pytest.fixture
def vendor():
    return make_vendor()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def payout_client():
    return FakePayoutClient()


@pytest.fixture
def seeded(repository, vendor):
    """Co-payment cp-1 with contributors of 100, 200 and 150."""
    co_payment, contributors = make_co_payment()

    async def seed():
        await repository.add_vendor(vendor)
        await repository.add_co_payment(co_payment, contributors)

    asyncio.run(seed())
    return co_payment, contributors


@pytest.fixture
def coordinator(repository, notifier, payout_client):
    return build_test_coordinator(repository, notifier, payout_client)
