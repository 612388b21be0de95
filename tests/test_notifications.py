import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from conftest import FakeNotifier, make_vendor
from pipeline.settlement import SettlementEngine
from pipeline.side_effects import PostOrderEffects, best_effort
from schemas.domain import LineItem, Order
from services.notifications import EmailNotifier, EmailTemplates, LoggingNotifier


def make_order(**overrides):
    fields = dict(
        id="order-1",
        order_number="ORD-2026-123456-abcd",
        user_id="user-1",
        vendor_id="vendor-1",
        total_amount=Decimal("400"),
        delivery_fee=Decimal("50"),
        final_amount=Decimal("450"),
        items=[LineItem(name="Red Velvet <Deluxe>", quantity=2, price=Decimal("200"), customization="Happy Birthday")],
    )
    fields.update(overrides)
    return Order(**fields)


def test_templates_escape_and_include_order_details():
    subject, body = EmailTemplates().vendor_order(make_order(), make_vendor())

    assert "ORD-2026-123456-abcd" in subject
    assert "Red Velvet &lt;Deluxe&gt;" in body
    assert "Happy Birthday" in body
    assert "₹450.00" in body


def test_customer_template_greets_by_name():
    subject, body = EmailTemplates().customer_confirmation(make_order(), make_vendor(), "Priya")
    assert subject == "Order Confirmed - #ORD-2026-123456-abcd"
    assert "Hi Priya," in body


def test_email_notifier_posts_to_emails_endpoint():
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append((str(request.url), request.headers["authorization"], json.loads(request.content)))
        return httpx.Response(200, json={"id": "email_1"})

    notifier = EmailNotifier("re_key", "https://mail.test", "orders@cakeshop.test", transport=httpx.MockTransport(handler))
    message_id = asyncio.run(notifier.notify_customer(make_order(), make_vendor(), "priya@example.com", "Priya"))

    assert message_id == "email_1"
    url, auth, payload = sent[0]
    assert url == "https://mail.test/emails"
    assert auth == "Bearer re_key"
    assert payload["to"] == ["priya@example.com"]
    assert payload["from"] == "orders@cakeshop.test"


def test_email_notifier_raises_on_provider_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"message": "down"}))
    notifier = EmailNotifier("re_key", "https://mail.test", transport=transport)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(notifier.notify_vendor(make_order(), make_vendor()))


def test_vendor_without_email_is_skipped():
    vendor = make_vendor().model_copy(update={"email": None})
    transport = httpx.MockTransport(lambda request: pytest.fail("no request expected"))

    assert asyncio.run(EmailNotifier("k", "https://mail.test", transport=transport).notify_vendor(make_order(), vendor)) is None


def test_logging_notifier_sends_nothing():
    assert asyncio.run(LoggingNotifier().notify_vendor(make_order(), make_vendor())) is None


# =============================================================================
# best effort side effects
# =============================================================================

def test_best_effort_swallows_and_returns_none():
    async def boom():
        raise RuntimeError("nope")

    assert asyncio.run(best_effort("boom", boom())) is None


def test_best_effort_returns_result():
    async def ok():
        return 42

    assert asyncio.run(best_effort("ok", ok())) == 42


def test_post_order_effects_survive_notifier_failure(repository, payout_client):
    vendor = make_vendor()
    user = asyncio.run(repository.find_or_create_user("priya@example.com", name="Priya"))
    asyncio.run(repository.add_vendor(vendor))
    order = make_order(user_id=user.id)
    notifier = FakeNotifier(fail=True)
    effects = PostOrderEffects(repository, SettlementEngine(repository, payout_client), notifier)

    asyncio.run(effects.run(order))

    assert notifier.vendor_calls == [(order.id, vendor.id)]
    assert notifier.customer_calls == [(order.id, "priya@example.com")]
    assert asyncio.run(repository.get_payment_split(order.id)) is not None


def test_post_order_effects_survive_settlement_failure(repository, notifier, mocker):
    vendor = make_vendor()
    asyncio.run(repository.add_vendor(vendor))
    settlement = SettlementEngine(repository)
    mocker.patch.object(settlement, "settle", side_effect=RuntimeError("ledger down"))
    order = make_order()

    asyncio.run(PostOrderEffects(repository, settlement, notifier).run(order, customer_email="a@b.test"))

    assert notifier.vendor_calls == [(order.id, vendor.id)]
    assert notifier.customer_calls == [(order.id, "a@b.test")]
