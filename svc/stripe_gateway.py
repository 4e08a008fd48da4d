# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import stripe

from utils.errors import InvalidSignature, UpstreamError
from utils.logger import get_logger

logger = get_logger()

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")

if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY


def stripe_to_dict(obj: Any) -> Dict[str, Any]:
    """Convert Stripe objects to plain dicts for safer access."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj

    for method_name in ("to_dict_recursive", "to_dict"):
        converter = getattr(obj, method_name, None)
        if callable(converter):
            try:
                result = converter()
            except Exception:  # pragma: no cover - SDK version differences
                continue
            if isinstance(result, dict):
                return result

    try:
        return dict(obj)
    except (TypeError, ValueError):
        return {}


def stripe_id(value: Any) -> Optional[str]:
    """Return the identifier of an expanded or collapsed Stripe reference."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        candidate = value.get("id")
        return candidate if isinstance(candidate, str) else None
    candidate = getattr(value, "id", None)
    return candidate if isinstance(candidate, str) else None


def _ensure_configured() -> None:
    if not stripe.api_key:
        raise UpstreamError("Stripe API key is not configured.")


class StripeGateway:
    """Narrow wrapper over the Stripe SDK returning plain dicts.

    Every SDK failure is logged with the provider message and re-raised as
    ``UpstreamError`` so callers never see raw Stripe exceptions.
    """

    def _call(self, action: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        _ensure_configured()
        try:
            return func(*args, **kwargs)
        except stripe.StripeError as exc:
            logger.error("Stripe error during %s: %s", action, exc)
            raise UpstreamError(f"Stripe request failed: {action}.", provider_error=str(exc)) from exc

    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        return stripe_to_dict(self._call("price retrieval", stripe.Price.retrieve, price_id))

    def retrieve_session(self, session_id: str) -> Dict[str, Any]:
        session = self._call("session retrieval", stripe.checkout.Session.retrieve, session_id)
        return stripe_to_dict(session)

    def list_line_items(self, session_id: str, limit: int = 1) -> List[Dict[str, Any]]:
        line_items = self._call(
            "line item listing",
            stripe.checkout.Session.list_line_items,
            session_id,
            limit=limit,
        )
        data = stripe_to_dict(line_items).get("data") or []
        return [stripe_to_dict(item) for item in data]

    def create_checkout_session(self, config: Dict[str, Any]) -> Dict[str, Any]:
        session = self._call("checkout session creation", stripe.checkout.Session.create, **config)
        return stripe_to_dict(session)

    def find_or_create_customer(
        self,
        email: str,
        *,
        name: Optional[str],
        user_id: str,
        update_name: bool = False,
    ) -> str:
        customers = self._call("customer lookup", stripe.Customer.list, email=email, limit=1)
        existing = stripe_to_dict(customers).get("data") or []
        if existing:
            customer_id = stripe_id(stripe_to_dict(existing[0]))
            if update_name and customer_id:
                self._call("customer update", stripe.Customer.modify, customer_id, name=name)
            return customer_id or ""

        customer = self._call(
            "customer creation",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={"userId": user_id},
        )
        return stripe_id(stripe_to_dict(customer)) or ""

    def construct_event(self, payload: bytes, signature: Optional[str], secret: Optional[str]) -> Dict[str, Any]:
        if not secret:
            raise UpstreamError("Stripe webhook secret is not configured.")
        if not signature:
            logger.warning("Stripe webhook called without signature header")
            raise InvalidSignature("Missing Stripe signature header.")
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except ValueError as exc:
            logger.error("Invalid payload: %s", exc)
            raise InvalidSignature("Invalid payload.") from exc
        except stripe.SignatureVerificationError as exc:
            logger.error("Invalid signature: %s", exc)
            raise InvalidSignature() from exc
        return stripe_to_dict(event)


def get_gateway() -> StripeGateway:
    return StripeGateway()
