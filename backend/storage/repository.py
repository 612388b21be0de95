"""
Settlement Repository Interface
===============================
Persistence boundary for co-payments, contributors, orders, payment splits,
users and vendors.

All mutation of shared records goes through the conditional primitives
below; callers never read-modify-write a record themselves:
- mark_contributor_paid      pending -> paid, no-op when already paid
- advance_co_payment_status  never moves a co-payment backwards
- set_order_id_if_null       the one gate that links an order to a co-payment,
                             writing the order row in the same atomic step
- mark_order_paid_if_pending single-payment confirmation, once
- create_payment_split       at most one split per order
- mark_contributor_paid and record_cancelled_link exclude each other per link

Implementations raise TransientError for store failures.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from schemas.domain import (
    Contributor,
    CoPayment,
    CoPaymentStatus,
    LinkCancellation,
    Order,
    PaymentSplit,
    User,
    Vendor,
)


class SettlementRepository(ABC):
    """Abstract store used by every coordinator component."""

    async def initialize(self):
        pass

    async def close(self):
        pass

    # -------------------------------------------------------------------------
    # Seeding (checkout / onboarding write these; tests use them directly)
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_co_payment(self, co_payment: CoPayment, contributors: list[Contributor]) -> CoPayment:
        pass

    @abstractmethod
    async def add_vendor(self, vendor: Vendor) -> Vendor:
        pass

    async def add_order(self, order: Order) -> Order:
        """Single-payment checkout stores its pending order up front."""
        return await self.create_order(order)

    # -------------------------------------------------------------------------
    # Co-payments & contributors
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_co_payment(self, co_payment_id: str) -> Optional[CoPayment]:
        pass

    @abstractmethod
    async def get_co_payment_by_order(self, order_id: str) -> Optional[CoPayment]:
        pass

    @abstractmethod
    async def list_co_payments(self, limit: int = 20) -> list[CoPayment]:
        """Newest first."""
        pass

    @abstractmethod
    async def find_completed_without_order(self, limit: int = 100) -> list[CoPayment]:
        pass

    @abstractmethod
    async def list_contributors(self, co_payment_id: str) -> list[Contributor]:
        pass

    @abstractmethod
    async def get_contributor(self, contributor_id: str) -> Optional[Contributor]:
        pass

    @abstractmethod
    async def get_contributor_by_payment_link(self, payment_link_id: str) -> Optional[Contributor]:
        pass

    @abstractmethod
    async def mark_contributor_paid(self, contributor_id: str, paid_at: datetime) -> Optional[Contributor]:
        """
        Set status=paid if pending and the contributor's payment link is not
        cancelled. Returns the contributor as stored afterwards, so a pending
        result means the link was cancelled first.
        """
        pass

    @abstractmethod
    async def advance_co_payment_status(
        self,
        co_payment_id: str,
        status: CoPaymentStatus,
        completed_at: Optional[datetime] = None,
    ) -> Optional[CoPayment]:
        """Move status forward only; completed_at is stamped once."""
        pass

    @abstractmethod
    async def set_order_id_if_null(self, co_payment_id: str, order: Order) -> bool:
        """
        Atomic compare-and-set of co_payments.order_id, persisting the order
        row in the same step. True only for the caller that linked the order;
        on False or on any error neither record is written.

        Raises OrderNumberConflict if the order number is taken.
        """
        pass

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_order(self, order: Order) -> Order:
        """Raises OrderNumberConflict if the order number is taken."""
        pass

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def mark_order_paid_if_pending(self, order_id: str, gateway_payment_id: Optional[str]) -> bool:
        pass

    # -------------------------------------------------------------------------
    # Users & vendors
    # -------------------------------------------------------------------------

    @abstractmethod
    async def find_or_create_user(
        self,
        email: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        pass

    # -------------------------------------------------------------------------
    # Settlement ledger
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_payment_split(self, order_id: str) -> Optional[PaymentSplit]:
        pass

    @abstractmethod
    async def create_payment_split(self, split: PaymentSplit) -> PaymentSplit:
        """Raises AlreadyProcessed if the order already has a split."""
        pass

    # -------------------------------------------------------------------------
    # Payment link terminal states
    # -------------------------------------------------------------------------

    @abstractmethod
    async def record_cancelled_link(self, payment_link_id: str) -> LinkCancellation:
        """
        Record the link as terminally cancelled unless its contributor already
        paid. Decided in the same atomic step as mark_contributor_paid.
        """
        pass

    @abstractmethod
    async def is_link_cancelled(self, payment_link_id: str) -> bool:
        pass
