import hashlib
import hmac
import json
import time
import unittest
from types import SimpleNamespace
from unittest.mock import patch

import stripe

from svc.stripe_gateway import StripeGateway, stripe_id, stripe_to_dict
from utils.errors import InvalidSignature, UpstreamError

WEBHOOK_SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


EVENT = {
    "id": "evt_1",
    "object": "event",
    "type": "checkout.session.completed",
    "data": {"object": {"id": "cs_1", "object": "checkout.session", "payment_status": "paid"}},
}


class TestHelpers(unittest.TestCase):
    def test_stripe_to_dict(self):
        self.assertEqual(stripe_to_dict(None), {})
        self.assertEqual(stripe_to_dict({"a": 1}), {"a": 1})
        self.assertEqual(stripe_to_dict(SimpleNamespace(to_dict=lambda: {"b": 2})), {"b": 2})
        self.assertEqual(stripe_to_dict(object()), {})

    def test_stripe_id(self):
        self.assertIsNone(stripe_id(None))
        self.assertEqual(stripe_id("price_1"), "price_1")
        self.assertEqual(stripe_id({"id": "price_2"}), "price_2")
        self.assertEqual(stripe_id(SimpleNamespace(id="price_3")), "price_3")

    def test_stripe_id_rejects_unexpected_shapes(self):
        self.assertIsNone(stripe_id(SimpleNamespace(id=None)))
        self.assertIsNone(stripe_id(SimpleNamespace(name="no id")))
        self.assertIsNone(stripe_id({"id": 42}))


class TestConstructEvent(unittest.TestCase):
    def setUp(self):
        self.gateway = StripeGateway()
        self.payload = json.dumps(EVENT).encode("utf-8")

    def test_valid_signature_returns_event(self):
        event = self.gateway.construct_event(self.payload, sign(self.payload), WEBHOOK_SECRET)
        self.assertEqual(event["type"], "checkout.session.completed")
        self.assertEqual(stripe_to_dict(event["data"]["object"])["id"], "cs_1")

    def test_wrong_secret_is_rejected(self):
        with self.assertRaises(InvalidSignature):
            self.gateway.construct_event(self.payload, sign(self.payload, "whsec_other"), WEBHOOK_SECRET)

    def test_missing_header_is_rejected(self):
        with self.assertRaises(InvalidSignature):
            self.gateway.construct_event(self.payload, None, WEBHOOK_SECRET)

    def test_garbage_payload_is_rejected(self):
        payload = b"not json"
        with self.assertRaises(InvalidSignature):
            self.gateway.construct_event(payload, sign(payload), WEBHOOK_SECRET)

    def test_missing_secret_is_configuration_error(self):
        with self.assertRaises(UpstreamError):
            self.gateway.construct_event(self.payload, sign(self.payload), None)


class TestSdkErrors(unittest.TestCase):
    def test_stripe_errors_become_upstream_errors(self):
        gateway = StripeGateway()
        with patch.object(stripe, "api_key", "sk_test_123"), patch.object(
            stripe.Price, "retrieve", side_effect=stripe.APIConnectionError("network down")
        ):
            with self.assertRaises(UpstreamError) as ctx:
                gateway.retrieve_price("price_1")
        self.assertIn("network down", ctx.exception.details["provider_error"])

    def test_unconfigured_key(self):
        with patch.object(stripe, "api_key", None):
            with self.assertRaises(UpstreamError):
                StripeGateway().retrieve_session("cs_1")

    def test_find_or_create_customer_reuses_existing(self):
        gateway = StripeGateway()
        listing = {"data": [{"id": "cus_existing", "email": "a@example.com"}]}
        with patch.object(stripe, "api_key", "sk_test_123"), patch.object(
            stripe.Customer, "list", return_value=listing
        ), patch.object(stripe.Customer, "modify") as modify, patch.object(stripe.Customer, "create") as create:
            customer_id = gateway.find_or_create_customer("a@example.com", name="Ann", user_id="u1", update_name=True)
        self.assertEqual(customer_id, "cus_existing")
        modify.assert_called_once_with("cus_existing", name="Ann")
        create.assert_not_called()

    def test_find_or_create_customer_creates_when_missing(self):
        gateway = StripeGateway()
        with patch.object(stripe, "api_key", "sk_test_123"), patch.object(
            stripe.Customer, "list", return_value={"data": []}
        ), patch.object(stripe.Customer, "create", return_value={"id": "cus_new"}) as create:
            customer_id = gateway.find_or_create_customer("b@example.com", name=None, user_id="u2")
        self.assertEqual(customer_id, "cus_new")
        create.assert_called_once_with(email="b@example.com", name=None, metadata={"userId": "u2"})


if __name__ == "__main__":
    unittest.main()
