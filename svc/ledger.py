# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

"""Token ledger kept in the Firebase Realtime Database.

Layout under ``users/{user_id}``::

    tokens          int balance
    updatedAt       ISO-8601 timestamp of the last credit
    lastPurchase    {amount, timestamp, sessionId, priceId}
    purchases/{transaction_key}
                    {tokens, amount, date, status, priceId,
                     customerEmail, currency, type}

A credit is applied in two conditional writes. The purchase record is
claimed first (``if-match`` on the purchase node), which makes the
idempotency check and the record write a single atomic step per
transaction key. The balance is then moved with a compare-and-swap loop on
the ``tokens`` node. When the balance step fails the claim is rolled back
to the node's previous value, so a retried request can settle the credit.
A process crash between the two steps still leaves a recorded purchase
without its credit, never a double credit.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from svc.firebase_store import StoreConflict, get_store
from utils.errors import (
    InvalidCredit,
    LedgerConflict,
    UpstreamError,
    UserNotFound,
    ValidationError,
    VerificationMismatch,
)
from utils.logger import get_logger

logger = get_logger()

TERMINAL_STATUSES = frozenset({"paid", "completed"})
PURCHASE_STATUSES = frozenset({"pending"}) | TERMINAL_STATUSES


def _load_max_attempts() -> int:
    raw = os.getenv("LEDGER_MAX_WRITE_ATTEMPTS")
    if not raw:
        return 5
    try:
        return max(int(raw), 1)
    except ValueError:
        return 5


LEDGER_MAX_WRITE_ATTEMPTS = _load_max_attempts()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class PurchaseMeta:
    price_id: Optional[str] = None
    amount: float = 0.0
    currency: str = "usd"
    status: str = "completed"
    customer_email: Optional[str] = None
    type: str = "purchase"


@dataclass(frozen=True)
class PurchaseClaim:
    path: str
    previous: Any
    record: Dict[str, Any]


@dataclass(frozen=True)
class CreditResult:
    previous_balance: int
    new_balance: int
    tokens_added: int
    already_processed: bool = False


def _user_path(user_id: str) -> str:
    return f"users/{user_id}"


def _coerce_balance(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise UpstreamError("Stored token balance is not numeric.")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise UpstreamError("Stored token balance is not numeric.") from exc


def _without_nulls(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: item for key, item in value.items() if item is not None}
    return value


def _validate_credit(tokens_to_add: Any) -> int:
    if isinstance(tokens_to_add, bool) or not isinstance(tokens_to_add, int) or tokens_to_add <= 0:
        raise InvalidCredit(tokensToAdd=tokens_to_add)
    return tokens_to_add


class LedgerReconciler:
    def __init__(
        self,
        store: Any,
        *,
        max_attempts: int = LEDGER_MAX_WRITE_ATTEMPTS,
        clock: Callable[[], str] = _utc_now_iso,
    ) -> None:
        self._store = store
        self._max_attempts = max(max_attempts, 1)
        self._clock = clock

    def apply_credit(
        self,
        user_id: str,
        tokens_to_add: int,
        transaction_key: str,
        meta: PurchaseMeta,
    ) -> CreditResult:
        """Credit ``tokens_to_add`` to ``user_id`` at most once per ``transaction_key``.

        Returns the balance before and after. When the transaction already
        settled (``paid``/``completed``) the balance is returned unchanged and
        ``already_processed`` is set.
        """
        if not user_id:
            raise ValidationError("No user ID provided for credit.")
        if not transaction_key:
            raise ValidationError("No transaction key provided for credit.")
        if meta.status not in PURCHASE_STATUSES:
            raise ValidationError(f"Unknown purchase status '{meta.status}'.")

        user_record = self._store.read(_user_path(user_id))
        if not isinstance(user_record, dict):
            logger.error("User not found in Firebase: %s", user_id)
            raise UserNotFound(userId=user_id)

        tokens = _validate_credit(tokens_to_add)
        current_balance = _coerce_balance(user_record.get("tokens"))

        claim = self._claim_purchase(user_id, transaction_key, tokens, meta)
        if claim is None:
            logger.info(
                "Transaction %s already credited for user %s; balance unchanged at %s",
                transaction_key,
                user_id,
                current_balance,
            )
            return CreditResult(
                previous_balance=current_balance,
                new_balance=current_balance,
                tokens_added=0,
                already_processed=True,
            )

        try:
            previous_balance, new_balance = self._credit_balance(user_id, tokens)
        except Exception:
            self._release_claim(user_id, transaction_key, claim)
            raise

        now = self._clock()
        self._store.patch(
            _user_path(user_id),
            {
                "updatedAt": now,
                "lastPurchase": {
                    "amount": tokens,
                    "timestamp": now,
                    "sessionId": transaction_key,
                    "priceId": meta.price_id,
                },
            },
        )

        stored_balance = _coerce_balance(self._store.read(f"{_user_path(user_id)}/tokens"))
        if stored_balance != new_balance:
            logger.error(
                "Token update verification failed for user %s: expected %s, found %s",
                user_id,
                new_balance,
                stored_balance,
            )
            raise VerificationMismatch(expected=new_balance, actual=stored_balance)

        logger.info(
            "Credited %s tokens to user %s for transaction %s (%s -> %s)",
            tokens,
            user_id,
            transaction_key,
            previous_balance,
            new_balance,
        )
        return CreditResult(
            previous_balance=previous_balance,
            new_balance=new_balance,
            tokens_added=tokens,
        )

    def _purchase_record(self, tokens: int, meta: PurchaseMeta) -> Dict[str, Any]:
        return {
            "tokens": tokens,
            "amount": meta.amount,
            "date": self._clock(),
            "status": meta.status,
            "priceId": meta.price_id,
            "customerEmail": meta.customer_email,
            "currency": meta.currency or "usd",
            "type": meta.type or "purchase",
        }

    def _claim_purchase(
        self, user_id: str, transaction_key: str, tokens: int, meta: PurchaseMeta
    ) -> Optional[PurchaseClaim]:
        path = f"{_user_path(user_id)}/purchases/{transaction_key}"
        for attempt in range(1, self._max_attempts + 1):
            existing, etag = self._store.read_versioned(path)
            if isinstance(existing, dict) and existing.get("status") in TERMINAL_STATUSES:
                return None
            if existing:
                logger.info("Found existing purchase with session ID: %s", transaction_key)
            record = self._purchase_record(tokens, meta)
            try:
                self._store.put(path, record, if_match=etag)
            except StoreConflict:
                logger.warning(
                    "Purchase %s for user %s changed concurrently (attempt %s)", transaction_key, user_id, attempt
                )
                continue
            return PurchaseClaim(path=path, previous=existing, record=record)
        raise LedgerConflict(userId=user_id, sessionId=transaction_key)

    def _release_claim(self, user_id: str, transaction_key: str, claim: PurchaseClaim) -> None:
        """Put the purchase node back to its pre-claim value after a failed credit.

        Only our own record is rolled back. Firebase drops null children, so
        the comparison ignores them. A failure here is logged and the caller
        re-raises the original error.
        """
        try:
            current, etag = self._store.read_versioned(claim.path)
            if _without_nulls(current) != _without_nulls(claim.record):
                logger.warning(
                    "Purchase %s for user %s changed after it was claimed; not releasing it", transaction_key, user_id
                )
                return
            if claim.previous is None:
                self._store.delete(claim.path, if_match=etag)
            else:
                self._store.put(claim.path, claim.previous, if_match=etag)
        except (StoreConflict, UpstreamError) as exc:
            logger.error("Could not release purchase %s for user %s: %s", transaction_key, user_id, exc)
            return
        logger.warning("Released purchase %s for user %s after a failed credit", transaction_key, user_id)

    def _credit_balance(self, user_id: str, tokens: int) -> Tuple[int, int]:
        path = f"{_user_path(user_id)}/tokens"
        for attempt in range(1, self._max_attempts + 1):
            current, etag = self._store.read_versioned(path)
            previous_balance = _coerce_balance(current)
            new_balance = previous_balance + tokens
            try:
                self._store.put(path, new_balance, if_match=etag)
            except StoreConflict:
                logger.warning("Balance for user %s changed concurrently (attempt %s)", user_id, attempt)
                continue
            return previous_balance, new_balance
        raise LedgerConflict(userId=user_id)


def get_ledger() -> LedgerReconciler:
    return LedgerReconciler(get_store())
