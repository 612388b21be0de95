"""
Payout provider adapters.

HttpPayoutClient talks to a Razorpay-style payouts API (POST /payouts, HTTP
Basic auth). SimulatedPayoutClient returns the same response shape without
any network call, for environments with no gateway credentials.
"""

import os
import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from pipeline.errors import PayoutLegError
from schemas.domain import mask_account, new_id

logger = structlog.get_logger().bind(component="payouts")


class PayoutConfig:
    KEY_ID: str = os.getenv("GATEWAY_KEY_ID", "")
    KEY_SECRET: str = os.getenv("GATEWAY_KEY_SECRET", "")
    API_URL: str = os.getenv("PAYOUT_API_URL", "https://api.razorpay.com/v1")
    SIMULATED: bool = os.getenv("PAYOUT_SIMULATED", "true").lower() == "true"
    TIMEOUT_SECONDS: float = float(os.getenv("PAYOUT_TIMEOUT_SECONDS", "15"))


class PayoutRequest(BaseModel):
    account_number: str
    ifsc_code: str
    beneficiary_name: str
    amount: int = Field(gt=0)  # minor units
    mode: str = "NEFT"
    reference_id: str


class PayoutResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    entity: str = "payout"
    status: str
    utr: Optional[str] = None
    amount: int
    mode: str = "NEFT"
    reference_id: str
    created_at: int


class PayoutClient(ABC):
    """Disburses one payout leg."""

    @abstractmethod
    async def create_payout(self, request: PayoutRequest, leg: str) -> PayoutResponse:
        """Raises PayoutLegError when the provider rejects or cannot be reached."""
        pass

    async def close(self):
        pass


class HttpPayoutClient(PayoutClient):

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id if key_id is not None else PayoutConfig.KEY_ID
        self.key_secret = key_secret if key_secret is not None else PayoutConfig.KEY_SECRET
        self.base_url = (base_url or PayoutConfig.API_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or PayoutConfig.TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                auth=httpx.BasicAuth(self.key_id, self.key_secret),
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def create_payout(self, request: PayoutRequest, leg: str) -> PayoutResponse:
        log = logger.bind(
            leg=leg,
            reference_id=request.reference_id,
            amount=request.amount,
            account=mask_account(request.account_number),
        )
        try:
            response = await self._get_client().post("/payouts", json=request.model_dump())
        except httpx.TimeoutException as e:
            log.warning("payout_request_timeout")
            raise PayoutLegError(leg, "payout request timed out") from e
        except httpx.HTTPError as e:
            log.warning("payout_request_transport_error", error=str(e))
            raise PayoutLegError(leg, f"transport error: {e}") from e

        if response.status_code >= 300:
            log.warning("payout_rejected", status_code=response.status_code, body=response.text[:500])
            raise PayoutLegError(leg, f"provider returned {response.status_code}", status_code=response.status_code)

        try:
            payout = PayoutResponse.model_validate(response.json())
        except ValueError as e:
            raise PayoutLegError(leg, f"unreadable provider response: {e}", status_code=response.status_code) from e

        log.info("payout_created", payout_id=payout.id, payout_status=payout.status)
        return payout


class SimulatedPayoutClient(PayoutClient):
    """Echoes a processing payout; keeps every request for inspection."""

    def __init__(self):
        self.requests: list[PayoutRequest] = []

    async def create_payout(self, request: PayoutRequest, leg: str) -> PayoutResponse:
        self.requests.append(request)
        payout = PayoutResponse(
            id=f"pout_sim_{new_id().replace('-', '')[:14]}",
            status="processing",
            amount=request.amount,
            mode=request.mode,
            reference_id=request.reference_id,
            created_at=int(time.time()),
        )
        logger.info(
            "payout_simulated",
            leg=leg,
            payout_id=payout.id,
            amount=request.amount,
            account=mask_account(request.account_number),
        )
        return payout


def build_payout_client(simulated: Optional[bool] = None) -> PayoutClient:
    simulated = PayoutConfig.SIMULATED if simulated is None else simulated
    if simulated or not (PayoutConfig.KEY_ID and PayoutConfig.KEY_SECRET):
        if not simulated:
            logger.warning("payout_credentials_missing", fallback="simulated")
        return SimulatedPayoutClient()
    return HttpPayoutClient()
