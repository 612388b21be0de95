"""
Gateway event parsing and routing.

parse_event turns an authenticated webhook body into a typed GatewayEvent;
EventRouter maps each event to the action the coordinator should take.
Routing keys only off the payment-link id carried in the event.
"""

import json
from typing import Any, Awaitable, Callable, Literal, Optional, Union

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from pipeline.errors import InvalidPayloadError
from schemas.webhook_events import (
    CANCELLED_EVENT_KINDS,
    PAID_EVENT_KINDS,
    GatewayEvent,
    IgnoredEvent,
    PaymentLinkCancelledEvent,
    PaymentLinkPaidEvent,
)
from storage.repository import SettlementRepository

_GATEWAY_EVENT = TypeAdapter(GatewayEvent)


# =============================================================================
# ACTIONS
# =============================================================================

class ConfirmContributorAction(BaseModel):
    kind: Literal["confirm_contributor"] = "confirm_contributor"
    co_payment_id: str
    contributor_id: str
    payment_link_id: str
    gateway_payment_id: Optional[str] = None


class ConfirmSingleOrderAction(BaseModel):
    kind: Literal["confirm_single_order"] = "confirm_single_order"
    order_id: str
    payment_link_id: str
    gateway_payment_id: Optional[str] = None


class CancelLinkAction(BaseModel):
    kind: Literal["cancel_link"] = "cancel_link"
    payment_link_id: str


class IgnoreAction(BaseModel):
    kind: Literal["ignore"] = "ignore"
    reason: str
    event: Optional[str] = None
    payment_link_id: Optional[str] = None


EventAction = Union[ConfirmContributorAction, ConfirmSingleOrderAction, CancelLinkAction, IgnoreAction]


# =============================================================================
# PARSING
# =============================================================================

def parse_event(raw: Union[bytes, str, dict]) -> Union[PaymentLinkPaidEvent, PaymentLinkCancelledEvent, IgnoredEvent]:
    """Parse a webhook body. Unknown kinds become IgnoredEvent."""
    if isinstance(raw, (bytes, str)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidPayloadError(f"webhook body is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise InvalidPayloadError("webhook body must be a JSON object")

    kind = data.get("event")
    if not isinstance(kind, str) or not kind:
        raise InvalidPayloadError("webhook body has no event kind")

    if kind not in PAID_EVENT_KINDS and kind not in CANCELLED_EVENT_KINDS:
        return IgnoredEvent(event=kind)

    try:
        return _GATEWAY_EVENT.validate_python(data)
    except ValidationError as e:
        raise InvalidPayloadError(f"malformed {kind} payload: {e.error_count()} validation errors") from e


# =============================================================================
# ROUTER
# =============================================================================

EventHandler = Callable[[Any], Awaitable[EventAction]]


class EventRouter:
    """Maps parsed gateway events to coordinator actions."""

    def __init__(self, repository: SettlementRepository):
        self.repository = repository
        self._handlers: dict[str, EventHandler] = {}
        self._logger = structlog.get_logger().bind(component="event_router")
        self._register_handlers()

    def register(self, *event_kinds: str):
        """Decorator to register a handler for one or more event kinds"""
        def decorator(handler: EventHandler):
            for kind in event_kinds:
                self._handlers[kind] = handler
                self._logger.debug("handler_registered", event_kind=kind)
            return handler
        return decorator

    @property
    def supported_events(self) -> list[str]:
        return list(self._handlers.keys())

    async def route(self, event) -> EventAction:
        handler = self._handlers.get(event.event)
        if handler is None:
            self._logger.info("event_ignored", event_kind=event.event, reason="unhandled_event")
            return IgnoreAction(reason="unhandled_event", event=event.event)
        return await handler(event)

    def _register_handlers(self):

        @self.register(*PAID_EVENT_KINDS)
        async def handle_paid(event: PaymentLinkPaidEvent) -> EventAction:
            link = event.payment_link
            log = self._logger.bind(event_kind=event.event, payment_link_id=link.id)

            if link.status is not None and link.status != "paid":
                log.info("paid_event_ignored", reason="link_not_paid", link_status=link.status)
                return IgnoreAction(reason="link_not_paid", event=event.event, payment_link_id=link.id)

            if await self.repository.is_link_cancelled(link.id):
                log.info("paid_event_ignored", reason="link_cancelled")
                return IgnoreAction(reason="link_cancelled", event=event.event, payment_link_id=link.id)

            contributor = await self.repository.get_contributor_by_payment_link(link.id)
            if contributor is not None:
                return ConfirmContributorAction(
                    co_payment_id=contributor.co_payment_id,
                    contributor_id=contributor.id,
                    payment_link_id=link.id,
                    gateway_payment_id=event.gateway_payment_id,
                )

            if link.notes.order_id:
                return ConfirmSingleOrderAction(
                    order_id=link.notes.order_id,
                    payment_link_id=link.id,
                    gateway_payment_id=event.gateway_payment_id,
                )

            log.warning("paid_event_unroutable", reason="unknown_payment_link")
            return IgnoreAction(reason="unknown_payment_link", event=event.event, payment_link_id=link.id)

        @self.register(*CANCELLED_EVENT_KINDS)
        async def handle_cancelled(event: PaymentLinkCancelledEvent) -> EventAction:
            return CancelLinkAction(payment_link_id=event.payment_link.id)
