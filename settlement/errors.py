"""Typed errors raised by the settlement services.

Services raise these uncaught; the API layer renders them into the standard
``{"error": ..., "message": ...}`` envelope using ``code`` and ``status_code``.
"""
from __future__ import annotations


class SettlementError(Exception):
    """Base class for every domain error."""
    code = "settlement_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(SettlementError):
    """Affiliate, order, product, mapping or payout does not exist."""
    code = "not_found"
    status_code = 404


class Conflict(SettlementError):
    """Duplicate registration or a uniqueness violation."""
    code = "conflict"
    status_code = 409


class GenerationFailure(Conflict):
    """Could not produce a unique affiliate code within the attempt budget."""
    code = "code_generation_failed"


class InvalidState(SettlementError):
    """Operation not allowed in the entity's current state."""
    code = "invalid_state"
    status_code = 409


class InsufficientFunds(SettlementError):
    """Payout request exceeds the affiliate's pending earnings."""
    code = "insufficient_funds"
    status_code = 422


class ValidationFailed(SettlementError):
    """Malformed amount, rate or markup."""
    code = "validation_error"
    status_code = 400
