"""
Payment Coordinator
===================
Entry point for gateway webhooks: verify -> parse -> route -> dispatch.

Actions:
- confirm_contributor   co-payment state machine (may materialize an order)
- confirm_single_order  single-payment order marked paid once
- cancel_link           payment link recorded as terminally cancelled
- ignore                acknowledged, no effect

Duplicate and unroutable deliveries are acknowledged so the gateway stops
redelivering; data problems a retry cannot fix are logged for manual
reconciliation and acknowledged too. TransientError propagates so the
gateway redelivers.

Example:
    coordinator = build_coordinator()
    result = await coordinator.process_webhook(raw_body, signature)
"""

import os
import uuid
from decimal import Decimal
from typing import Any, Optional

import structlog

from pipeline.copayment_state import CoPaymentStateMachine
from pipeline.errors import (
    AlreadyProcessed,
    DataIntegrityError,
    LinkCancelled,
    PreconditionError,
    UnroutableEvent,
)
from pipeline.event_router import (
    CancelLinkAction,
    ConfirmContributorAction,
    ConfirmSingleOrderAction,
    EventRouter,
    IgnoreAction,
    parse_event,
)
from pipeline.order_materializer import OrderMaterializer
from pipeline.settlement import SettlementEngine
from pipeline.side_effects import Defer, PostOrderEffects
from pipeline.webhook_auth import WebhookConfig, verify_signature
from schemas.domain import CoPayment, Contributor, ContributorStatus, CoPaymentStatus, LinkCancellation
from services.notifications import Notifier, build_notifier
from services.payouts import PayoutClient, build_payout_client
from storage.repository import SettlementRepository


class PaymentCoordinator:
    """Wires authentication, routing, the state machine and side effects."""

    def __init__(
        self,
        repository: SettlementRepository,
        notifier: Optional[Notifier] = None,
        payout_client: Optional[PayoutClient] = None,
        settlement: Optional[SettlementEngine] = None,
        webhook_secret: Optional[str] = None,
        signature_bypass: Optional[bool] = None,
    ):
        self.repository = repository
        self.webhook_secret = WebhookConfig.WEBHOOK_SECRET if webhook_secret is None else webhook_secret
        self.signature_bypass = WebhookConfig.SIGNATURE_BYPASS if signature_bypass is None else signature_bypass

        self.notifier = notifier or build_notifier()
        self.payout_client = payout_client or build_payout_client()
        self.settlement = settlement or SettlementEngine(repository, self.payout_client)
        self.post_order_effects = PostOrderEffects(repository, self.settlement, self.notifier)
        self.router = EventRouter(repository)
        self.state_machine = CoPaymentStateMachine(
            repository,
            materializer=OrderMaterializer(repository),
            post_order_effects=self.post_order_effects,
        )
        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: Optional[str] = None):
        return self._base_logger.bind(
            component="payment_coordinator",
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    async def close(self):
        await self.notifier.close()
        await self.payout_client.close()

    # =========================================================================
    # WEBHOOKS
    # =========================================================================

    async def process_webhook(
        self,
        raw_body: bytes,
        signature: Optional[str],
        defer: Optional[Defer] = None,
    ) -> dict[str, Any]:
        """
        Handle one gateway delivery.

        Post-order effects run before returning unless defer is given, in
        which case they are handed to it (the HTTP layer passes
        BackgroundTasks.add_task so the gateway is answered first).

        Raises AuthenticationError / InvalidPayloadError before anything is
        read from the store, and TransientError when a retry may succeed.
        """
        verify_signature(raw_body, signature, self.webhook_secret, bypass=self.signature_bypass)
        event = parse_event(raw_body)

        gateway_payment_id = getattr(event, "gateway_payment_id", None)
        log = self._get_logger(gateway_payment_id).bind(event_kind=event.event)
        log.info("webhook_received")

        action = await self.router.route(event)
        log = log.bind(action=action.kind)

        try:
            if isinstance(action, ConfirmContributorAction):
                return await self._confirm_contributor(action, log, defer)
            if isinstance(action, ConfirmSingleOrderAction):
                return await self._confirm_single_order(action, log, defer)
            if isinstance(action, CancelLinkAction):
                return await self._cancel_link(action, log)
            return self._ignore(action, log)
        except (AlreadyProcessed, UnroutableEvent) as e:
            log.info("webhook_acknowledged", reason=type(e).__name__, detail=str(e))
            return {"status": "ok", "action": action.kind, "result": "duplicate"}
        except LinkCancelled as e:
            log.info("webhook_acknowledged", reason="link_cancelled", detail=str(e))
            return {"status": "ok", "action": action.kind, "reason": "link_cancelled"}
        except DataIntegrityError as e:
            log.error("webhook_data_integrity_error", reconciliation_required=True, error=str(e))
            return {"status": "ok", "action": action.kind, "result": "reconciliation_required"}

    async def _confirm_contributor(self, action: ConfirmContributorAction, log, defer=None) -> dict[str, Any]:
        snapshot = await self.state_machine.confirm_contributor(
            action.co_payment_id,
            action.contributor_id,
            action.gateway_payment_id,
            defer=defer,
        )
        result = {
            "status": "ok",
            "action": action.kind,
            "co_payment_id": snapshot.co_payment.id,
            "co_payment_status": snapshot.co_payment.status.value,
            "paid_count": snapshot.paid_count,
            "pending_count": snapshot.pending_count,
            "already_materialized": snapshot.already_materialized,
            "order_id": snapshot.co_payment.order_id,
        }
        if snapshot.order is not None:
            result["order_number"] = snapshot.order.order_number
        log.info("webhook_processed", **{k: v for k, v in result.items() if k not in ("status", "action")})
        return result

    async def _confirm_single_order(self, action: ConfirmSingleOrderAction, log, defer=None) -> dict[str, Any]:
        log = log.bind(order_id=action.order_id)
        result = {"status": "ok", "action": action.kind, "order_id": action.order_id}

        if not await self.repository.mark_order_paid_if_pending(action.order_id, action.gateway_payment_id):
            order = await self.repository.get_order(action.order_id)
            if order is None:
                log.warning("single_order_not_found")
                return {**result, "result": "order_not_found"}
            log.info("single_order_already_paid")
            return {**result, "result": "duplicate"}

        order = await self.repository.get_order(action.order_id)
        log.info("single_order_confirmed", order_number=order.order_number)
        await self.post_order_effects.dispatch(order, defer=defer)
        return {**result, "result": "confirmed", "order_number": order.order_number}

    async def _cancel_link(self, action: CancelLinkAction, log) -> dict[str, Any]:
        log = log.bind(payment_link_id=action.payment_link_id)
        result = {"status": "ok", "action": action.kind, "payment_link_id": action.payment_link_id}

        outcome = await self.repository.record_cancelled_link(action.payment_link_id)
        if outcome == LinkCancellation.CONTRIBUTOR_PAID:
            log.info("link_cancellation_ignored", reason="contributor_already_paid")
        else:
            log.info("payment_link_cancelled", newly_recorded=outcome == LinkCancellation.RECORDED)
        return {**result, "result": outcome.value}

    def _ignore(self, action: IgnoreAction, log) -> dict[str, Any]:
        log.info("webhook_ignored", reason=action.reason)
        return {"status": "ok", "action": action.kind, "reason": action.reason}

    # =========================================================================
    # STATUS VIEWS
    # =========================================================================

    async def get_split_payment_status(
        self,
        co_payment_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        """Progress of one co-payment, looked up by its id or its order's id."""
        if not co_payment_id and not order_id:
            raise PreconditionError("co_payment_id or order_id required")

        if co_payment_id:
            co_payment = await self.repository.get_co_payment(co_payment_id)
        else:
            co_payment = await self.repository.get_co_payment_by_order(order_id)
        if co_payment is None:
            return None

        contributors = await self.repository.list_contributors(co_payment.id)
        return self._describe(co_payment, contributors)

    async def list_split_payments(self, limit: int = 20) -> dict[str, Any]:
        co_payments = await self.repository.list_co_payments(limit)
        payments = []
        for co_payment in co_payments:
            contributors = await self.repository.list_contributors(co_payment.id)
            payments.append(self._describe(co_payment, contributors))
        return {
            "total": len(payments),
            "pending": sum(1 for p in payments if p["status"] != CoPaymentStatus.COMPLETED.value),
            "completed": sum(1 for p in payments if p["status"] == CoPaymentStatus.COMPLETED.value),
            "needs_reconciliation": sum(1 for p in payments if p["needs_reconciliation"]),
            "payments": payments,
        }

    @staticmethod
    def _describe(co_payment: CoPayment, contributors: list[Contributor]) -> dict[str, Any]:
        paid = [c for c in contributors if c.status == ContributorStatus.PAID]
        collected = sum((c.amount for c in paid), Decimal("0"))
        total = len(contributors)
        return {
            "co_payment_id": co_payment.id,
            "order_id": co_payment.order_id,
            "status": co_payment.status.value,
            "total_amount": co_payment.total_amount,
            "collected_amount": collected,
            "customer_email": co_payment.order_intent.customer.email,
            "needs_reconciliation": co_payment.is_completed and co_payment.order_id is None,
            "contributors": [
                {
                    "id": c.id,
                    "email": c.email,
                    "name": c.name,
                    "amount": c.amount,
                    "status": c.status.value,
                    "payment_link_id": c.payment_link_id,
                    "paid_at": c.paid_at,
                }
                for c in contributors
            ],
            "stats": {
                "total_contributors": total,
                "paid_count": len(paid),
                "pending_count": total - len(paid),
                "all_paid": total > 0 and len(paid) == total,
                "completion_percentage": round(len(paid) * 100 / total) if total else 0,
            },
            "created_at": co_payment.created_at,
            "completed_at": co_payment.completed_at,
        }


# =============================================================================
# FACTORY
# =============================================================================

def build_repository(backend: Optional[str] = None) -> SettlementRepository:
    backend = (backend or os.getenv("STORE_BACKEND", "memory")).lower()
    if backend == "postgres":
        from storage.postgres import PostgresSettlementRepository
        return PostgresSettlementRepository()
    from storage.memory import InMemorySettlementRepository
    return InMemorySettlementRepository()


def build_coordinator(repository: Optional[SettlementRepository] = None) -> PaymentCoordinator:
    return PaymentCoordinator(repository or build_repository())
