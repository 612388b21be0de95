# schemas/domain.py
# ============================================================================
# SPLIT-PAYMENT SETTLEMENT — DOMAIN MODELS
# ============================================================================
# Contributors, co-payments, orders and settlement ledger entries.
#
# Money on contributors, co-payments and orders is Decimal in major units
# (rupees). Settlement amounts are integer minor units (paise).
# ============================================================================

import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to minor units, rounding half-up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def mask_account(account_number: Optional[str]) -> Optional[str]:
    """Keep only the last four digits of a bank account for logging."""
    if not account_number:
        return None
    return f"****{account_number[-4:]}"


# ============================================================================
# ENUMS
# ============================================================================

class ContributorStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class CoPaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _CO_PAYMENT_RANK[self]


_CO_PAYMENT_RANK = {
    CoPaymentStatus.PENDING: 0,
    CoPaymentStatus.PARTIAL: 1,
    CoPaymentStatus.COMPLETED: 2,
}


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    SPLIT = "split"
    SINGLE = "single"
    COD = "cod"


class SplitStatus(str, Enum):
    PROCESSING = "processing"
    FAILED = "failed"


class PayoutLeg(str, Enum):
    PLATFORM = "platform"
    VENDOR = "vendor"


class LinkCancellation(str, Enum):
    """Outcome of recording a cancelled payment link"""
    RECORDED = "cancelled"
    DUPLICATE = "duplicate"
    CONTRIBUTOR_PAID = "ignored_contributor_paid"


LEG_FAILED = "failed"
LEG_NOT_ATTEMPTED = "not_attempted"


# ============================================================================
# ORDER INTENT (checkout snapshot stored on the co-payment)
# ============================================================================

class CustomerInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class LineItem(BaseModel):
    cake_id: Optional[str] = None
    name: str
    quantity: int = Field(default=1, ge=1)
    price: Decimal = Decimal("0")
    customization: Optional[str] = None
    vendor_id: Optional[str] = None


class DeliveryAddress(BaseModel):
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: str
    city: str
    landmark: Optional[str] = None
    pincode: Optional[str] = None


class OrderIntent(BaseModel):
    """Everything checkout captured for the order the co-payment will become."""
    customer: CustomerInfo = Field(default_factory=CustomerInfo)
    items: list[LineItem] = Field(default_factory=list)
    delivery_address: Optional[DeliveryAddress] = None
    vendor_id: Optional[str] = None
    subtotal: Optional[Decimal] = None
    delivery_fee: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    total: Optional[Decimal] = None
    estimated_delivery: Optional[datetime] = None

    def resolve_vendor_id(self) -> Optional[str]:
        if self.vendor_id:
            return self.vendor_id
        for item in self.items:
            if item.vendor_id:
                return item.vendor_id
        return None

    def items_subtotal(self) -> Decimal:
        return sum((item.price * item.quantity for item in self.items), Decimal("0"))


# ============================================================================
# PEOPLE
# ============================================================================

class User(BaseModel):
    id: str = Field(default_factory=new_id)
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class PayoutProfile(BaseModel):
    """Bank destination for a payout leg."""
    account_number: Optional[str] = None
    ifsc_code: Optional[str] = None
    beneficiary_name: Optional[str] = None

    @computed_field
    @property
    def is_complete(self) -> bool:
        return all(
            value and value.strip()
            for value in (self.account_number, self.ifsc_code, self.beneficiary_name)
        )


class Vendor(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    email: Optional[str] = None
    payout_profile: Optional[PayoutProfile] = None


# ============================================================================
# CO-PAYMENT AGGREGATE
# ============================================================================

class Contributor(BaseModel):
    """One payer's share of a split order."""
    id: str = Field(default_factory=new_id)
    co_payment_id: str
    email: str
    name: Optional[str] = None
    amount: Decimal
    status: ContributorStatus = ContributorStatus.PENDING
    payment_link_id: str
    paid_at: Optional[datetime] = None

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("contributor amount must be positive")
        return v

    @property
    def is_paid(self) -> bool:
        return self.status == ContributorStatus.PAID


class CoPayment(BaseModel):
    id: str = Field(default_factory=new_id)
    total_amount: Decimal
    status: CoPaymentStatus = CoPaymentStatus.PENDING
    order_intent: OrderIntent = Field(default_factory=OrderIntent)
    order_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_completed(self) -> bool:
        return self.status == CoPaymentStatus.COMPLETED


class CoPaymentSnapshot(BaseModel):
    """State of a co-payment right after a confirmation was applied."""
    co_payment: CoPayment
    contributors: list[Contributor]
    order: Optional["Order"] = None
    already_materialized: bool = False

    @computed_field
    @property
    def paid_count(self) -> int:
        return sum(1 for c in self.contributors if c.is_paid)

    @computed_field
    @property
    def pending_count(self) -> int:
        return len(self.contributors) - self.paid_count

    @computed_field
    @property
    def all_paid(self) -> bool:
        return bool(self.contributors) and self.pending_count == 0


def derive_co_payment_status(contributors: list[Contributor]) -> CoPaymentStatus:
    """Status implied by a contributor set."""
    paid = sum(1 for c in contributors if c.is_paid)
    if contributors and paid == len(contributors):
        return CoPaymentStatus.COMPLETED
    if paid:
        return CoPaymentStatus.PARTIAL
    return CoPaymentStatus.PENDING


# ============================================================================
# ORDER & SETTLEMENT
# ============================================================================

class Order(BaseModel):
    id: str = Field(default_factory=new_id)
    order_number: str
    user_id: str
    vendor_id: str
    total_amount: Decimal
    delivery_fee: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    final_amount: Decimal
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: str = PaymentMethod.SPLIT.value
    gateway_payment_id: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    delivery_address: Optional[DeliveryAddress] = None
    items: list[LineItem] = Field(default_factory=list)
    estimated_delivery: Optional[datetime] = None
    co_payment_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class PaymentSplit(BaseModel):
    """Settlement ledger entry, amounts in minor units."""
    id: str = Field(default_factory=new_id)
    order_id: str
    total_amount: int
    platform_amount: int
    vendor_amount: int
    platform_payout_id: Optional[str] = None
    vendor_payout_id: Optional[str] = None
    status: SplitStatus
    platform_transfer_status: str = LEG_NOT_ATTEMPTED
    vendor_transfer_status: str = LEG_NOT_ATTEMPTED
    created_at: datetime = Field(default_factory=utcnow)


CoPaymentSnapshot.model_rebuild()
