"""
Settlement: split an order's total between platform and vendor and disburse
both legs.

Legs are independent. A leg whose payout profile is incomplete is not
attempted; a leg the provider rejects is recorded as failed; neither stops
the other leg. One PaymentSplit row is written per order.
"""

import os
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import structlog

from pipeline.errors import AlreadyProcessed, PayoutLegError
from schemas.domain import (
    LEG_FAILED,
    LEG_NOT_ATTEMPTED,
    PaymentSplit,
    PayoutLeg,
    PayoutProfile,
    SplitStatus,
    mask_account,
    to_minor_units,
)
from services.payouts import PayoutClient, PayoutRequest, SimulatedPayoutClient
from storage.repository import SettlementRepository


class SettlementConfig:
    PLATFORM_PERCENT: int = int(os.getenv("PLATFORM_COMMISSION_PERCENT", "20"))
    VENDOR_PERCENT: int = int(os.getenv("VENDOR_COMMISSION_PERCENT", "80"))
    PLATFORM_ACCOUNT_NUMBER: str = os.getenv("PLATFORM_BANK_ACCOUNT_NUMBER", "")
    PLATFORM_IFSC: str = os.getenv("PLATFORM_BANK_IFSC", "")
    PLATFORM_ACCOUNT_HOLDER: str = os.getenv("PLATFORM_BANK_ACCOUNT_HOLDER", "")

    @classmethod
    def platform_profile(cls) -> PayoutProfile:
        return PayoutProfile(
            account_number=cls.PLATFORM_ACCOUNT_NUMBER or None,
            ifsc_code=cls.PLATFORM_IFSC or None,
            beneficiary_name=cls.PLATFORM_ACCOUNT_HOLDER or None,
        )


def _percent_of(total_minor: int, percent: int) -> int:
    return int((Decimal(total_minor) * Decimal(percent) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_split(total_minor: int, platform_percent: int, vendor_percent: int) -> tuple[int, int]:
    """
    Each leg is rounded half-up on its own; the two may not sum to the total.

    >>> compute_split(999, 20, 80)
    (200, 799)
    """
    return _percent_of(total_minor, platform_percent), _percent_of(total_minor, vendor_percent)


class SettlementEngine:

    def __init__(
        self,
        repository: SettlementRepository,
        payout_client: Optional[PayoutClient] = None,
        platform_profile: Optional[PayoutProfile] = None,
        platform_percent: Optional[int] = None,
        vendor_percent: Optional[int] = None,
    ):
        self.repository = repository
        self.payouts = payout_client or SimulatedPayoutClient()
        self.platform_profile = platform_profile or SettlementConfig.platform_profile()
        self.platform_percent = SettlementConfig.PLATFORM_PERCENT if platform_percent is None else platform_percent
        self.vendor_percent = SettlementConfig.VENDOR_PERCENT if vendor_percent is None else vendor_percent
        self._logger = structlog.get_logger().bind(component="settlement")

    async def settle(
        self,
        order_id: str,
        total_amount: Decimal,
        vendor_payout_profile: Optional[PayoutProfile],
    ) -> PaymentSplit:
        log = self._logger.bind(order_id=order_id)

        existing = await self.repository.get_payment_split(order_id)
        if existing is not None:
            log.info("settlement_skipped", reason="split_exists", split_id=existing.id)
            return existing

        total_minor = to_minor_units(total_amount)
        platform_amount, vendor_amount = compute_split(total_minor, self.platform_percent, self.vendor_percent)

        platform_payout_id, platform_status = await self._pay_leg(
            PayoutLeg.PLATFORM, order_id, platform_amount, self.platform_profile, log
        )
        vendor_payout_id, vendor_status = await self._pay_leg(
            PayoutLeg.VENDOR, order_id, vendor_amount, vendor_payout_profile, log
        )

        succeeded = platform_payout_id is not None or vendor_payout_id is not None
        split = PaymentSplit(
            order_id=order_id,
            total_amount=total_minor,
            platform_amount=platform_amount,
            vendor_amount=vendor_amount,
            platform_payout_id=platform_payout_id,
            vendor_payout_id=vendor_payout_id,
            status=SplitStatus.PROCESSING if succeeded else SplitStatus.FAILED,
            platform_transfer_status=platform_status,
            vendor_transfer_status=vendor_status,
        )

        try:
            split = await self.repository.create_payment_split(split)
        except AlreadyProcessed:
            log.warning("settlement_split_exists_after_payout")
            return await self.repository.get_payment_split(order_id)

        log.info(
            "settlement_recorded",
            split_id=split.id,
            split_status=split.status.value,
            total_amount=total_minor,
            platform_amount=platform_amount,
            vendor_amount=vendor_amount,
            platform_transfer_status=platform_status,
            vendor_transfer_status=vendor_status,
        )
        return split

    async def _pay_leg(
        self,
        leg: PayoutLeg,
        order_id: str,
        amount: int,
        profile: Optional[PayoutProfile],
        log,
    ) -> tuple[Optional[str], str]:
        """Returns (payout id, transfer status) for one leg."""
        if profile is None or not profile.is_complete:
            log.warning("payout_leg_skipped", leg=leg.value, reason="incomplete_payout_profile")
            return None, LEG_NOT_ATTEMPTED

        if amount <= 0:
            log.warning("payout_leg_skipped", leg=leg.value, reason="zero_amount")
            return None, LEG_NOT_ATTEMPTED

        request = PayoutRequest(
            account_number=profile.account_number,
            ifsc_code=profile.ifsc_code,
            beneficiary_name=profile.beneficiary_name,
            amount=amount,
            reference_id=f"{leg.value}-{order_id}-{int(time.time() * 1000)}",
        )
        try:
            payout = await self.payouts.create_payout(request, leg.value)
        except PayoutLegError as e:
            log.error(
                "payout_leg_failed",
                leg=leg.value,
                amount=amount,
                account=mask_account(profile.account_number),
                error=str(e),
                status_code=e.status_code,
            )
            return None, LEG_FAILED

        log.info("payout_leg_initiated", leg=leg.value, payout_id=payout.id, amount=amount)
        return payout.id, payout.status
