"""
In-memory settlement repository.

Every primitive runs under one asyncio.Lock and performs no I/O while holding
it, so each conditional update is atomic with respect to concurrent webhook
tasks on the same event loop. Records are copied on the way in and out.
"""

import asyncio
from datetime import datetime
from typing import Optional

from pipeline.errors import AlreadyProcessed, OrderNumberConflict
from schemas.domain import (
    Contributor,
    ContributorStatus,
    CoPayment,
    CoPaymentStatus,
    LinkCancellation,
    Order,
    OrderStatus,
    PaymentSplit,
    PaymentStatus,
    User,
    Vendor,
    utcnow,
)
from storage.repository import SettlementRepository


class InMemorySettlementRepository(SettlementRepository):
    """Single-process repository for tests and local development."""

    def __init__(self):
        self._co_payments: dict[str, CoPayment] = {}
        self._contributors: dict[str, Contributor] = {}
        self._by_link: dict[str, str] = {}  # payment_link_id -> contributor_id
        self._orders: dict[str, Order] = {}
        self._order_numbers: set[str] = set()
        self._users: dict[str, User] = {}  # email -> user
        self._vendors: dict[str, Vendor] = {}
        self._splits: dict[str, PaymentSplit] = {}  # order_id -> split
        self._cancelled_links: dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy(model):
        return model.model_copy(deep=True) if model is not None else None

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    async def add_co_payment(self, co_payment: CoPayment, contributors: list[Contributor]) -> CoPayment:
        async with self._lock:
            self._co_payments[co_payment.id] = self._copy(co_payment)
            for contributor in contributors:
                self._contributors[contributor.id] = self._copy(contributor)
                self._by_link[contributor.payment_link_id] = contributor.id
            return self._copy(co_payment)

    async def add_vendor(self, vendor: Vendor) -> Vendor:
        async with self._lock:
            self._vendors[vendor.id] = self._copy(vendor)
            return self._copy(vendor)

    # -------------------------------------------------------------------------
    # Co-payments & contributors
    # -------------------------------------------------------------------------

    async def get_co_payment(self, co_payment_id: str) -> Optional[CoPayment]:
        async with self._lock:
            return self._copy(self._co_payments.get(co_payment_id))

    async def get_co_payment_by_order(self, order_id: str) -> Optional[CoPayment]:
        async with self._lock:
            for co_payment in self._co_payments.values():
                if co_payment.order_id == order_id:
                    return self._copy(co_payment)
            return None

    async def list_co_payments(self, limit: int = 20) -> list[CoPayment]:
        async with self._lock:
            ordered = sorted(self._co_payments.values(), key=lambda cp: cp.created_at, reverse=True)
            return [self._copy(cp) for cp in ordered[:limit]]

    async def find_completed_without_order(self, limit: int = 100) -> list[CoPayment]:
        async with self._lock:
            stuck = [
                cp for cp in self._co_payments.values()
                if cp.status == CoPaymentStatus.COMPLETED and cp.order_id is None
            ]
            stuck.sort(key=lambda cp: cp.completed_at or cp.created_at)
            return [self._copy(cp) for cp in stuck[:limit]]

    async def list_contributors(self, co_payment_id: str) -> list[Contributor]:
        async with self._lock:
            return [
                self._copy(c) for c in self._contributors.values()
                if c.co_payment_id == co_payment_id
            ]

    async def get_contributor(self, contributor_id: str) -> Optional[Contributor]:
        async with self._lock:
            return self._copy(self._contributors.get(contributor_id))

    async def get_contributor_by_payment_link(self, payment_link_id: str) -> Optional[Contributor]:
        async with self._lock:
            contributor_id = self._by_link.get(payment_link_id)
            if contributor_id is None:
                return None
            return self._copy(self._contributors.get(contributor_id))

    async def mark_contributor_paid(self, contributor_id: str, paid_at: datetime) -> Optional[Contributor]:
        async with self._lock:
            contributor = self._contributors.get(contributor_id)
            if contributor is None:
                return None
            if (
                contributor.status == ContributorStatus.PENDING
                and contributor.payment_link_id not in self._cancelled_links
            ):
                contributor.status = ContributorStatus.PAID
                contributor.paid_at = paid_at
            return self._copy(contributor)

    async def advance_co_payment_status(
        self,
        co_payment_id: str,
        status: CoPaymentStatus,
        completed_at: Optional[datetime] = None,
    ) -> Optional[CoPayment]:
        async with self._lock:
            co_payment = self._co_payments.get(co_payment_id)
            if co_payment is None:
                return None
            if status.rank > co_payment.status.rank:
                co_payment.status = status
            if co_payment.status == CoPaymentStatus.COMPLETED and co_payment.completed_at is None:
                co_payment.completed_at = completed_at or utcnow()
            return self._copy(co_payment)

    async def set_order_id_if_null(self, co_payment_id: str, order: Order) -> bool:
        async with self._lock:
            co_payment = self._co_payments.get(co_payment_id)
            if co_payment is None or co_payment.order_id is not None:
                return False
            if order.order_number in self._order_numbers:
                raise OrderNumberConflict(f"order number {order.order_number} already exists")
            self._orders[order.id] = self._copy(order)
            self._order_numbers.add(order.order_number)
            co_payment.order_id = order.id
            return True

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def create_order(self, order: Order) -> Order:
        async with self._lock:
            if order.order_number in self._order_numbers:
                raise OrderNumberConflict(f"order number {order.order_number} already exists")
            self._orders[order.id] = self._copy(order)
            self._order_numbers.add(order.order_number)
            return self._copy(order)

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            return self._copy(self._orders.get(order_id))

    async def mark_order_paid_if_pending(self, order_id: str, gateway_payment_id: Optional[str]) -> bool:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.payment_status == PaymentStatus.COMPLETED:
                return False
            order.payment_status = PaymentStatus.COMPLETED
            order.gateway_payment_id = gateway_payment_id
            if order.status == OrderStatus.PENDING:
                order.status = OrderStatus.CONFIRMED
            return True

    # -------------------------------------------------------------------------
    # Users & vendors
    # -------------------------------------------------------------------------

    async def find_or_create_user(
        self,
        email: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        key = email.strip().lower()
        async with self._lock:
            user = self._users.get(key)
            if user is None:
                user = User(email=key, name=name, phone=phone)
                self._users[key] = user
            return self._copy(user)

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._lock:
            for user in self._users.values():
                if user.id == user_id:
                    return self._copy(user)
            return None

    async def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        async with self._lock:
            return self._copy(self._vendors.get(vendor_id))

    # -------------------------------------------------------------------------
    # Settlement ledger
    # -------------------------------------------------------------------------

    async def get_payment_split(self, order_id: str) -> Optional[PaymentSplit]:
        async with self._lock:
            return self._copy(self._splits.get(order_id))

    async def create_payment_split(self, split: PaymentSplit) -> PaymentSplit:
        async with self._lock:
            if split.order_id in self._splits:
                raise AlreadyProcessed(f"payment split for order {split.order_id} already exists")
            self._splits[split.order_id] = self._copy(split)
            return self._copy(split)

    # -------------------------------------------------------------------------
    # Payment link terminal states
    # -------------------------------------------------------------------------

    async def record_cancelled_link(self, payment_link_id: str) -> LinkCancellation:
        async with self._lock:
            contributor_id = self._by_link.get(payment_link_id)
            contributor = self._contributors.get(contributor_id) if contributor_id else None
            if contributor is not None and contributor.is_paid:
                return LinkCancellation.CONTRIBUTOR_PAID
            if payment_link_id in self._cancelled_links:
                return LinkCancellation.DUPLICATE
            self._cancelled_links[payment_link_id] = utcnow()
            return LinkCancellation.RECORDED

    async def is_link_cancelled(self, payment_link_id: str) -> bool:
        async with self._lock:
            return payment_link_id in self._cancelled_links
