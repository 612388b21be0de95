import asyncio
from decimal import Decimal

import pytest

import tasks.reconciliation
from conftest import make_co_payment
from pipeline.errors import TransientError
from schemas.domain import CoPaymentStatus, Order, utcnow
from tasks.reconciliation import reconciliation_loop, scan_once


def test_scan_reports_completed_co_payments_without_order(repository):
    stuck, stuck_contributors = make_co_payment(co_payment_id="cp-stuck")
    linked, linked_contributors = make_co_payment(co_payment_id="cp-linked")
    open_, open_contributors = make_co_payment(co_payment_id="cp-open")

    async def seed():
        await repository.add_co_payment(stuck, stuck_contributors)
        await repository.add_co_payment(linked, linked_contributors)
        await repository.add_co_payment(open_, open_contributors)
        await repository.advance_co_payment_status("cp-stuck", CoPaymentStatus.COMPLETED, utcnow())
        await repository.advance_co_payment_status("cp-linked", CoPaymentStatus.COMPLETED, utcnow())
        await repository.set_order_id_if_null("cp-linked", Order(
            id="order-1",
            order_number="ORD-2026-000001-aaaa",
            user_id="user-1",
            vendor_id="vendor-1",
            total_amount=Decimal("450"),
            final_amount=Decimal("450"),
        ))
        await repository.advance_co_payment_status("cp-open", CoPaymentStatus.PARTIAL)

    asyncio.run(seed())

    findings = asyncio.run(scan_once(repository))

    assert [f["co_payment_id"] for f in findings] == ["cp-stuck"]
    assert findings[0]["vendor_id"] == "vendor-1"
    assert findings[0]["stuck_minutes"] == 0


def test_scan_never_creates_orders(repository):
    co_payment, contributors = make_co_payment()
    asyncio.run(repository.add_co_payment(co_payment, contributors))
    asyncio.run(repository.advance_co_payment_status(co_payment.id, CoPaymentStatus.COMPLETED, utcnow()))

    asyncio.run(scan_once(repository))
    asyncio.run(scan_once(repository))

    assert asyncio.run(repository.get_co_payment(co_payment.id)).order_id is None


def test_status_never_moves_backwards(repository):
    co_payment, contributors = make_co_payment()
    asyncio.run(repository.add_co_payment(co_payment, contributors))
    asyncio.run(repository.advance_co_payment_status(co_payment.id, CoPaymentStatus.COMPLETED, utcnow()))

    after = asyncio.run(repository.advance_co_payment_status(co_payment.id, CoPaymentStatus.PARTIAL))

    assert after.status == CoPaymentStatus.COMPLETED


def test_loop_survives_transient_failures_until_cancelled(repository, mocker, monkeypatch):
    monkeypatch.setattr(tasks.reconciliation.ReconciliationConfig, "ENABLED", True)
    scan = mocker.patch("tasks.reconciliation.scan_once", side_effect=[TransientError("db down"), []])
    mocker.patch("tasks.reconciliation.asyncio.sleep", side_effect=[None, asyncio.CancelledError()])

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(reconciliation_loop(repository, interval=1))

    assert scan.call_count == 2


def test_disabled_loop_returns_immediately(repository, mocker, monkeypatch):
    monkeypatch.setattr(tasks.reconciliation.ReconciliationConfig, "ENABLED", False)
    scan = mocker.patch("tasks.reconciliation.scan_once")

    asyncio.run(reconciliation_loop(repository, interval=1))

    scan.assert_not_called()
