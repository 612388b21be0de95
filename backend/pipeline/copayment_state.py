"""
Co-payment state machine.

pending -> partial -> completed, driven by contributor confirmations that
may arrive duplicated, out of order or concurrently. Every step is a
conditional repository update; completeness is always computed from a
contributor list read after the update.
"""

from typing import Optional

import structlog

from pipeline.errors import AlreadyProcessed, DataIntegrityError, LinkCancelled
from pipeline.order_materializer import OrderMaterializer
from pipeline.side_effects import Defer, PostOrderEffects
from schemas.domain import CoPaymentSnapshot, CoPaymentStatus, derive_co_payment_status, utcnow
from storage.repository import SettlementRepository


class CoPaymentStateMachine:

    def __init__(
        self,
        repository: SettlementRepository,
        materializer: Optional[OrderMaterializer] = None,
        post_order_effects: Optional[PostOrderEffects] = None,
    ):
        self.repository = repository
        self.materializer = materializer or OrderMaterializer(repository)
        self.post_order_effects = post_order_effects
        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: Optional[str] = None):
        return self._base_logger.bind(component="copayment_state", correlation_id=correlation_id)

    async def confirm_contributor(
        self,
        co_payment_id: str,
        contributor_id: str,
        gateway_payment_id: Optional[str] = None,
        defer: Optional[Defer] = None,
    ) -> CoPaymentSnapshot:
        """
        Apply one paid confirmation and materialize the order if it completes
        the co-payment. Post-order effects run inline, or through defer.

        Raises LinkCancelled when the contributor's link was cancelled first.
        """
        log = self._get_logger(gateway_payment_id).bind(
            co_payment_id=co_payment_id,
            contributor_id=contributor_id,
        )

        co_payment = await self.repository.get_co_payment(co_payment_id)
        if co_payment is None:
            raise DataIntegrityError(f"co-payment {co_payment_id} not found")

        contributor = await self.repository.get_contributor(contributor_id)
        if contributor is None or contributor.co_payment_id != co_payment_id:
            raise DataIntegrityError(f"contributor {contributor_id} does not belong to co-payment {co_payment_id}")

        was_paid = contributor.is_paid
        contributor = await self.repository.mark_contributor_paid(contributor_id, utcnow())
        if not contributor.is_paid:
            log.info("contributor_confirmation_refused", reason="link_cancelled")
            raise LinkCancelled(f"payment link {contributor.payment_link_id} was cancelled")
        if was_paid:
            log.info("contributor_already_paid")
        else:
            log.info("contributor_confirmed", amount=str(contributor.amount))

        contributors = await self.repository.list_contributors(co_payment_id)
        status = derive_co_payment_status(contributors)
        co_payment = await self.repository.advance_co_payment_status(
            co_payment_id,
            status,
            completed_at=utcnow() if status == CoPaymentStatus.COMPLETED else None,
        )

        snapshot = CoPaymentSnapshot(co_payment=co_payment, contributors=contributors)
        log = log.bind(
            co_payment_status=co_payment.status.value,
            paid_count=snapshot.paid_count,
            pending_count=snapshot.pending_count,
        )

        if co_payment.order_id is not None:
            log.info("co_payment_already_materialized", order_id=co_payment.order_id)
            return snapshot.model_copy(update={"already_materialized": True})

        if co_payment.status != CoPaymentStatus.COMPLETED:
            log.info("co_payment_awaiting_contributors")
            return snapshot

        try:
            order = await self.materializer.materialize_from_co_payment(co_payment, gateway_payment_id)
        except AlreadyProcessed:
            co_payment = await self.repository.get_co_payment(co_payment_id)
            log.info("co_payment_materialized_concurrently", order_id=co_payment.order_id)
            return CoPaymentSnapshot(co_payment=co_payment, contributors=contributors, already_materialized=True)

        co_payment = await self.repository.get_co_payment(co_payment_id)
        log.info("co_payment_completed", order_id=order.id, order_number=order.order_number)

        if self.post_order_effects is not None:
            intent = co_payment.order_intent
            await self.post_order_effects.dispatch(
                order,
                defer=defer,
                customer_email=intent.customer.email,
                customer_name=intent.customer.name,
            )

        return CoPaymentSnapshot(co_payment=co_payment, contributors=contributors, order=order)
