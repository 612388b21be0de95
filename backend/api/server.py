# api/server.py
# ============================================================================
# SPLIT-PAYMENT SETTLEMENT COORDINATOR — FASTAPI SERVER
# ============================================================================
# Gateway webhook intake plus read-only split-payment status views.
# Coordinator errors are mapped to HTTP statuses here and nowhere else.
# ============================================================================

import asyncio
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
import uvicorn
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Query, Request
from pydantic import BaseModel

from pipeline.coordinator import PaymentCoordinator, build_coordinator
from pipeline.errors import (
    AuthenticationError,
    InvalidPayloadError,
    MissingSignatureError,
    SettlementCoordinatorError,
    TransientError,
)
from tasks.reconciliation import ReconciliationConfig, reconciliation_loop

logger = structlog.get_logger().bind(component="server")

VERSION = "1.0.0"


# ============================================================================
# CONFIGURATION
# ============================================================================

class ServerConfig:
    """Server configuration from environment"""

    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))
    ENV = os.getenv("ENV", "development")
    DEBUG = ENV == "development"


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    env: str


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(coordinator: Optional[PaymentCoordinator] = None) -> FastAPI:
    coordinator = coordinator or build_coordinator()
    started_at = datetime.now(timezone.utc)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        logger.info("server_starting", version=VERSION, env=ServerConfig.ENV)
        await coordinator.repository.initialize()

        reconciliation_task = None
        if ReconciliationConfig.ENABLED:
            reconciliation_task = asyncio.create_task(reconciliation_loop(coordinator.repository))

        yield

        if reconciliation_task is not None:
            reconciliation_task.cancel()
            try:
                await reconciliation_task
            except asyncio.CancelledError:
                pass
        await coordinator.close()
        await coordinator.repository.close()
        logger.info("server_stopped")

    app = FastAPI(
        title="Split-Payment Settlement Coordinator",
        description="Payment-link webhooks, co-payment completion, order materialization and payouts",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        return response

    # ------------------------------------------------------------------------
    # ENDPOINTS
    # ------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        uptime = (datetime.now(timezone.utc) - started_at).total_seconds()
        return HealthResponse(status="healthy", version=VERSION, uptime_seconds=uptime, env=ServerConfig.ENV)

    @app.post("/webhooks/payments")
    async def payment_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_signature: Optional[str] = Header(default=None),
    ):
        """
        Gateway webhook. The raw body is read untouched for signature checks.

        400 missing signature / malformed body, 401 bad signature,
        503 retryable failure, 200 for everything acknowledged.
        Settlement and notifications run after the response is sent.
        """
        raw_body = await request.body()
        signature = x_signature or request.headers.get("x-razorpay-signature")

        try:
            return await coordinator.process_webhook(raw_body, signature, defer=background_tasks.add_task)
        except MissingSignatureError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail=str(e))
        except InvalidPayloadError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except TransientError as e:
            logger.warning("webhook_retryable_failure", error=str(e))
            raise HTTPException(status_code=503, detail="temporarily unavailable, retry")
        except SettlementCoordinatorError as e:
            logger.error("webhook_failed", error=str(e), error_type=type(e).__name__)
            raise HTTPException(status_code=500, detail="webhook processing failed")
        except Exception as e:
            logger.exception("webhook_unexpected_error", error=str(e))
            raise HTTPException(status_code=500, detail="webhook processing failed")

    @app.get("/api/split-payment/status")
    async def split_payment_status(
        co_payment_id: Optional[str] = Query(default=None, alias="coPaymentId"),
        order_id: Optional[str] = Query(default=None, alias="orderId"),
    ):
        if not co_payment_id and not order_id:
            raise HTTPException(status_code=400, detail="orderId or coPaymentId required")
        try:
            status = await coordinator.get_split_payment_status(co_payment_id=co_payment_id, order_id=order_id)
        except TransientError:
            raise HTTPException(status_code=503, detail="temporarily unavailable, retry")
        if status is None:
            raise HTTPException(status_code=404, detail="Split payment not found")
        return status

    @app.get("/api/admin/split-payments")
    async def list_split_payments(limit: int = Query(default=20, ge=1, le=100)):
        try:
            result = await coordinator.list_split_payments(limit)
        except TransientError:
            raise HTTPException(status_code=503, detail="temporarily unavailable, retry")
        return {"timestamp": datetime.now(timezone.utc), **result}

    return app


app = create_app()


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=ServerConfig.HOST,
        port=ServerConfig.PORT,
        reload=ServerConfig.DEBUG,
    )
