"""
Error taxonomy for the settlement coordinator.

The HTTP layer maps these to responses:
- AuthenticationError          -> 401 (MissingSignatureError -> 400)
- InvalidPayloadError          -> 400
- UnroutableEvent, AlreadyProcessed, LinkCancelled,
  DataIntegrityError           -> 200 (acknowledged)
- TransientError               -> 503 (gateway redelivers)
PayoutLegError never leaves the settlement engine.
"""

from typing import Optional


class SettlementCoordinatorError(Exception):
    """Base class for coordinator errors."""


class AuthenticationError(SettlementCoordinatorError):
    """Webhook signature missing or not matching the raw body."""


class MissingSignatureError(AuthenticationError):
    pass


class InvalidPayloadError(SettlementCoordinatorError):
    """Authenticated body that is not a well-formed gateway event."""


class UnroutableEvent(SettlementCoordinatorError):
    """Event kind or payment link this service has nothing to do with."""


class AlreadyProcessed(SettlementCoordinatorError):
    """Duplicate delivery of something that already took effect."""


class DataIntegrityError(SettlementCoordinatorError):
    """Stored data is missing what the flow needs; needs manual reconciliation."""


class LinkCancelled(SettlementCoordinatorError):
    """Payment reported for a link already recorded as cancelled."""


class TransientError(SettlementCoordinatorError):
    """Store or network failure; safe to retry."""


class OrderNumberConflict(TransientError):
    """Generated order number already exists."""


class PreconditionError(SettlementCoordinatorError):
    """A component was called in a state its contract forbids."""


class PayoutLegError(SettlementCoordinatorError):
    """One payout leg was rejected or could not reach the provider."""

    def __init__(self, leg: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{leg} payout failed: {message}")
        self.leg = leg
        self.status_code = status_code
