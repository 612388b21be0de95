# schemas/webhook_events.py
# ============================================================================
# SPLIT-PAYMENT SETTLEMENT — GATEWAY WEBHOOK ENVELOPE
# ============================================================================
# Typed view of the payment gateway's webhook body:
#   { event, payload: { payment_link: { entity: {...} }, payment: { entity: {...} } } }
#
# GatewayEvent is a union discriminated by `event`; kinds this service does not
# act on collapse into IgnoredEvent.
# ============================================================================

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


PAID_EVENT_KINDS = ("payment_link.paid", "payment_link.completed")
CANCELLED_EVENT_KINDS = ("payment_link.cancelled", "payment_link.expired")


class PaymentLinkNotes(BaseModel):
    model_config = ConfigDict(extra="allow")

    order_id: Optional[str] = None
    payment_type: Optional[str] = None


class PaymentLinkEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    amount: Optional[int] = None  # minor units
    status: Optional[str] = None
    notes: PaymentLinkNotes = Field(default_factory=PaymentLinkNotes)


class PaymentEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    amount: Optional[int] = None
    status: Optional[str] = None


class PaymentLinkWrapper(BaseModel):
    entity: PaymentLinkEntity


class PaymentWrapper(BaseModel):
    entity: PaymentEntity = Field(default_factory=PaymentEntity)


class PaymentLinkPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_link: PaymentLinkWrapper
    payment: PaymentWrapper = Field(default_factory=PaymentWrapper)


# ============================================================================
# EVENT VARIANTS
# ============================================================================

class PaymentLinkPaidEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: Literal["payment_link.paid", "payment_link.completed"]
    payload: PaymentLinkPayload

    @property
    def payment_link(self) -> PaymentLinkEntity:
        return self.payload.payment_link.entity

    @property
    def gateway_payment_id(self) -> Optional[str]:
        return self.payload.payment.entity.id


class PaymentLinkCancelledEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: Literal["payment_link.cancelled", "payment_link.expired"]
    payload: PaymentLinkPayload

    @property
    def payment_link(self) -> PaymentLinkEntity:
        return self.payload.payment_link.entity


class IgnoredEvent(BaseModel):
    """Any event kind the coordinator acknowledges without acting on."""
    event: str


GatewayEvent = Annotated[
    Union[PaymentLinkPaidEvent, PaymentLinkCancelledEvent],
    Field(discriminator="event"),
]
