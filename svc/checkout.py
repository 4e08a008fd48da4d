# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

"""Payment entry points that feed the token ledger.

Three flows end in ``LedgerReconciler.apply_credit``:

* ``verify_session``: the browser returns from Stripe with a session id.
* ``handle_webhook``: Stripe delivers ``checkout.session.completed``.
* ``direct_charge``: a session is created and credited as ``pending``
  before payment is confirmed.

All of them use the checkout session id as the transaction key, so any
combination of the three credits a paid session only once.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from svc.ledger import CreditResult, LedgerReconciler, PurchaseMeta
from svc.stripe_gateway import StripeGateway, stripe_id, stripe_to_dict
from utils.errors import PaymentIncomplete, UpstreamError, ValidationError
from utils.logger import get_logger
from utils.payments import cents_to_units, resolve_tokens

logger = get_logger()

FRONTEND_URL = os.getenv("FRONTEND_URL", "https://decyphers.com")

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class CustomerDetails:
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class CreditOutcome:
    session_id: str
    user_id: str
    tokens: int
    result: CreditResult


@dataclass(frozen=True)
class WebhookOutcome:
    event_type: str
    handled: bool
    credit: Optional[CreditOutcome] = None


@dataclass(frozen=True)
class DirectChargeOutcome:
    session_id: str
    session_url: Optional[str]
    tokens: int
    result: CreditResult


def _success_url() -> str:
    return f"{FRONTEND_URL.rstrip('/')}/profile?session_id={{CHECKOUT_SESSION_ID}}"


def _cancel_url() -> str:
    return f"{FRONTEND_URL.rstrip('/')}/profile"


def _require_active_price(gateway: StripeGateway, price_id: str) -> Dict[str, Any]:
    try:
        price = gateway.retrieve_price(price_id)
    except UpstreamError as exc:
        logger.error("Error retrieving price %s from Stripe: %s", price_id, exc.details.get("provider_error"))
        raise ValidationError("Invalid or inactive price ID") from exc
    if not price.get("active"):
        raise ValidationError("Price is not active")
    return price


def _resolve_customer(
    gateway: StripeGateway,
    customer: CustomerDetails,
    user_id: str,
    *,
    update_name: bool,
) -> Optional[str]:
    if not customer.email:
        return None
    try:
        return gateway.find_or_create_customer(
            customer.email,
            name=customer.name,
            user_id=user_id,
            update_name=update_name,
        ) or None
    except UpstreamError as exc:
        # Checkout still works without a customer object.
        logger.warning("Error creating/finding customer for %s: %s", user_id, exc.details.get("provider_error"))
        return None


def _session_config(
    price_id: str,
    user_id: str,
    customer: CustomerDetails,
    customer_id: Optional[str],
    *,
    extra_metadata: Optional[Dict[str, str]] = None,
    extra_intent_metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    metadata = {"userId": user_id, "customer_name": customer.name or ""}
    metadata.update(extra_metadata or {})
    intent_metadata = {
        "userId": user_id,
        "price_id": price_id,
        "session_id": "{CHECKOUT_SESSION_ID}",
        "customer_name": customer.name or "",
        "customer_email": customer.email or "",
    }
    intent_metadata.update(extra_intent_metadata or {})

    config: Dict[str, Any] = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": _success_url(),
        "cancel_url": _cancel_url(),
        "metadata": metadata,
        "payment_intent_data": {"metadata": intent_metadata},
    }
    if customer_id:
        config["customer"] = customer_id
    elif customer.email:
        config["customer_email"] = customer.email
        config["customer_creation"] = "always"
    return config


def create_checkout(
    gateway: StripeGateway,
    *,
    price_id: str,
    user_id: str,
    customer: CustomerDetails,
) -> Dict[str, Any]:
    _require_active_price(gateway, price_id)
    customer_id = _resolve_customer(gateway, customer, user_id, update_name=True)
    session = gateway.create_checkout_session(_session_config(price_id, user_id, customer, customer_id))
    logger.info("Created checkout session %s for user %s (price %s)", session.get("id"), user_id, price_id)
    return {"id": session.get("id"), "url": session.get("url")}


def _customer_email(session: Dict[str, Any]) -> Optional[str]:
    details = stripe_to_dict(session.get("customer_details"))
    return details.get("email") or session.get("customer_email")


def _credit_paid_session(
    gateway: StripeGateway,
    ledger: LedgerReconciler,
    session: Dict[str, Any],
    user_id: str,
) -> CreditOutcome:
    session_id = stripe_id(session.get("id"))
    if not session_id:
        raise ValidationError("Stripe session is missing an identifier.")

    line_items = gateway.list_line_items(session_id, limit=1)
    if not line_items:
        raise ValidationError("No line items found for this session")

    item = line_items[0]
    price = stripe_to_dict(item.get("price"))
    price_id = stripe_id(price) or ""
    tokens = resolve_tokens(
        price_id,
        stripe_to_dict(price.get("metadata")),
        cents_to_units(price.get("unit_amount")),
    )

    meta = PurchaseMeta(
        price_id=price_id,
        amount=cents_to_units(item.get("amount_total")) or 0.0,
        currency=item.get("currency") or price.get("currency") or "usd",
        status=session.get("payment_status") or "paid",
        customer_email=_customer_email(session),
    )
    result = ledger.apply_credit(user_id, tokens, session_id, meta)
    return CreditOutcome(session_id=session_id, user_id=user_id, tokens=tokens, result=result)


def verify_session(gateway: StripeGateway, ledger: LedgerReconciler, session_id: str) -> CreditOutcome:
    """Credit a checkout session the browser reports as finished."""
    if not session_id:
        raise ValidationError("session_id is required")

    session = gateway.retrieve_session(session_id)
    payment_status = session.get("payment_status")
    if payment_status != "paid":
        raise PaymentIncomplete(status=payment_status)

    user_id = stripe_to_dict(session.get("metadata")).get("userId")
    if not user_id:
        raise ValidationError("No user ID found in session metadata")

    outcome = _credit_paid_session(gateway, ledger, session, user_id)
    logger.info(
        "Verified session %s for user %s (%s tokens, already processed: %s)",
        session_id,
        user_id,
        outcome.tokens,
        outcome.result.already_processed,
    )
    return outcome


def handle_webhook(
    gateway: StripeGateway,
    ledger: LedgerReconciler,
    payload: bytes,
    signature: Optional[str],
    secret: Optional[str],
) -> WebhookOutcome:
    event = gateway.construct_event(payload, signature, secret)
    event_type = event.get("type") or ""
    logger.info("Received Stripe webhook event: %s", event_type)

    if event_type != CHECKOUT_COMPLETED:
        logger.info("Unhandled event type: %s", event_type)
        return WebhookOutcome(event_type=event_type, handled=False)

    session = stripe_to_dict((event.get("data") or {}).get("object"))
    if session.get("payment_status") != "paid":
        logger.info("Checkout session %s not yet paid; ignoring", session.get("id"))
        return WebhookOutcome(event_type=event_type, handled=False)

    user_id = stripe_to_dict(session.get("metadata")).get("userId")
    if not user_id:
        logger.warning("Checkout session %s has no userId metadata; ignoring", session.get("id"))
        return WebhookOutcome(event_type=event_type, handled=False)

    logger.info("Payment successful for user: %s", user_id)
    credit = _credit_paid_session(gateway, ledger, session, user_id)
    return WebhookOutcome(event_type=event_type, handled=True, credit=credit)


def direct_charge(
    gateway: StripeGateway,
    ledger: LedgerReconciler,
    *,
    price_id: str,
    user_id: str,
    customer: CustomerDetails,
) -> DirectChargeOutcome:
    """Create a checkout session and credit its tokens right away as ``pending``.

    The later ``paid`` confirmation (webhook or ``verify_session``) finds the
    pending purchase record under the same session id.
    """
    price = _require_active_price(gateway, price_id)
    unit_price = cents_to_units(price.get("unit_amount"))
    tokens = resolve_tokens(price_id, stripe_to_dict(price.get("metadata")), unit_price)

    customer_id = _resolve_customer(gateway, customer, user_id, update_name=False)
    config = _session_config(
        price_id,
        user_id,
        customer,
        customer_id,
        extra_metadata={"direct_verification": "true"},
        extra_intent_metadata={"tokens": str(tokens)},
    )
    session = gateway.create_checkout_session(config)
    session_id = stripe_id(session.get("id"))
    if not session_id:
        raise UpstreamError("Stripe did not return a checkout session id.")
    logger.info("Created checkout session: %s", session_id)

    meta = PurchaseMeta(
        price_id=price_id,
        amount=unit_price or 0.0,
        currency=price.get("currency") or "usd",
        status="pending",
        customer_email=customer.email,
        type="purchase",
    )
    result = ledger.apply_credit(user_id, tokens, session_id, meta)
    return DirectChargeOutcome(
        session_id=session_id,
        session_url=session.get("url"),
        tokens=tokens,
        result=result,
    )
