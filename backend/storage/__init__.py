# storage/__init__.py
# ============================================================================
# SPLIT-PAYMENT SETTLEMENT — STORAGE MODULE
# ============================================================================
# Repository interface and the in-memory backend. The PostgreSQL backend
# lives in storage.postgres and is imported only when selected.
# ============================================================================

from storage.repository import SettlementRepository
from storage.memory import InMemorySettlementRepository

__all__ = [
    "SettlementRepository",
    "InMemorySettlementRepository",
]
