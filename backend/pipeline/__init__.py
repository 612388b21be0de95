# pipeline/__init__.py
# ============================================================================
# SPLIT-PAYMENT SETTLEMENT — WEBHOOK PIPELINE
# ============================================================================
# webhook_auth -> event_router -> copayment_state -> order_materializer
# -> settlement / notifications, wired together by coordinator.
#
# Logging is configured here so every module that binds a logger at import
# time (all of them import pipeline.errors first) gets the JSON pipeline.
# ============================================================================

import logging
import os

import structlog

# =============================================================================
# STRUCTURED LOGGING SETUP
# =============================================================================

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
