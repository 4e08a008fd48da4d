import os
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

import main
from utils.errors import UpstreamError


class TestHealth(unittest.TestCase):
    def test_health_reports_configuration(self):
        response = TestClient(main.app).get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertIn("stripe_configured", response.json())


class TestRecaptcha(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(main.app)

    def test_site_key(self):
        with patch.dict(os.environ, {"RECAPTCHA_SITE_KEY": "site-key"}):
            response = self.client.get("/config/recaptcha")
        self.assertEqual(response.json(), {"success": True, "siteKey": "site-key"})

    def test_missing_site_key(self):
        with patch.dict(os.environ, {"RECAPTCHA_SITE_KEY": ""}):
            response = self.client.get("/config/recaptcha")
        self.assertEqual(response.status_code, 500)
        self.assertIsNone(response.json()["siteKey"])

    def test_verification_passes(self):
        with patch.dict(os.environ, {"RECAPTCHA_SECRET_KEY": "secret"}), patch.object(
            main, "verify_recaptcha_token", return_value={"success": True}
        ) as verify:
            response = self.client.post("/verify-recaptcha", json={"token": "abc"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(verify.call_args.args[:2], ("secret", "abc"))

    def test_verification_fails(self):
        result = {"success": False, "error-codes": ["invalid-input-response"]}
        with patch.dict(os.environ, {"RECAPTCHA_SECRET_KEY": "secret"}), patch.object(
            main, "verify_recaptcha_token", return_value=result
        ):
            response = self.client.post("/verify-recaptcha", json={"token": "abc"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"], ["invalid-input-response"])

    def test_missing_token(self):
        with patch.dict(os.environ, {"RECAPTCHA_SECRET_KEY": "secret"}):
            response = self.client.post("/verify-recaptcha", json={})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "reCAPTCHA token is required")

    def test_upstream_failure(self):
        with patch.dict(os.environ, {"RECAPTCHA_SECRET_KEY": "secret"}), patch.object(
            main, "verify_recaptcha_token", side_effect=UpstreamError("Error verifying reCAPTCHA: timeout")
        ):
            response = self.client.post("/verify-recaptcha", json={"token": "abc"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["message"], "Error verifying reCAPTCHA: timeout")


class TestTelegram(unittest.TestCase):
    def test_bot_id(self):
        with patch.dict(os.environ, {"TELEGRAM_BOT_ID": "12345"}):
            response = TestClient(main.app).get("/config/telegram")
        self.assertEqual(response.json(), {"success": True, "bot_id": "12345"})

    def test_missing_bot_id(self):
        with patch.dict(os.environ, {"TELEGRAM_BOT_ID": ""}):
            response = TestClient(main.app).get("/config/telegram")
        self.assertEqual(response.status_code, 500)


if __name__ == "__main__":
    unittest.main()
