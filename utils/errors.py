# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

"""Error taxonomy shared by the ledger, the payment adapters and the HTTP layer.

Every error carries the HTTP status it maps to, so routes can let them
propagate and a single exception handler renders the JSON envelope.
"""

from __future__ import annotations

from typing import Any, Dict


class ServiceError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error."

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(ServiceError):
    status_code = 400
    default_message = "Invalid request."


class AuthenticationError(ServiceError):
    status_code = 401
    default_message = "Authentication failed."


class ConflictError(ServiceError):
    status_code = 409
    default_message = "Resource already exists."


class UpstreamError(ServiceError):
    status_code = 500
    default_message = "Upstream service failure."


class UnresolvablePrice(ServiceError):
    status_code = 400
    default_message = "Could not determine token amount for this price."


class UserNotFound(ServiceError):
    # A missing balance record means the user was never provisioned.
    status_code = 500
    default_message = "User not found in ledger."


class InvalidCredit(ServiceError):
    status_code = 400
    default_message = "Token credit must be a positive integer."


class VerificationMismatch(ServiceError):
    status_code = 500
    default_message = "Token update verification failed."


class LedgerConflict(ServiceError):
    status_code = 500
    default_message = "Ledger update conflicted with a concurrent writer."


class InvalidSignature(ServiceError):
    status_code = 400
    default_message = "Invalid Stripe webhook signature."


class PaymentIncomplete(ServiceError):
    status_code = 400
    default_message = "Payment not completed."
