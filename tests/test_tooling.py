import tempfile
import unittest
from pathlib import Path

from sqlalchemy import create_engine

import check_config
from database.initialize import existing_tables, init_database

GOOD_ENV = {
    "FIREBASE_PROJECT_ID": "decyphers-test",
    "FIREBASE_DATABASE_URL": "https://decyphers-test.firebaseio.com",
    "STRIPE_SECRET_KEY": "sk_test_1234567890",
    "STRIPE_WEBHOOK_SECRET": "whsec_1234567890",
}


class TestCheckConfig(unittest.TestCase):
    def test_complete_environment_has_no_issues(self):
        lines, issues = check_config.audit(GOOD_ENV)
        self.assertEqual(issues, [])
        self.assertIn("✓ STRIPE_SECRET_KEY: sk_test_...", lines)
        self.assertIn("  ℹ Using default: 5", lines)

    def test_missing_required_settings(self):
        _, issues = check_config.audit({})
        self.assertIn("Missing required variable: FIREBASE_PROJECT_ID", issues)
        self.assertIn("Missing required variable: STRIPE_WEBHOOK_SECRET", issues)
        self.assertNotIn("Missing required variable: TELEGRAM_BOT_ID", issues)

    def test_format_problems(self):
        env = dict(
            GOOD_ENV,
            FIREBASE_DATABASE_URL="http://insecure.example.com",
            STRIPE_WEBHOOK_SECRET="secret",
            LEDGER_MAX_WRITE_ATTEMPTS="zero",
        )
        _, issues = check_config.audit(env)
        self.assertEqual(
            issues,
            [
                "FIREBASE_DATABASE_URL should start with 'https://'",
                "STRIPE_WEBHOOK_SECRET should start with 'whsec_'",
                "LEDGER_MAX_WRITE_ATTEMPTS should be a positive integer",
            ],
        )

    def test_describe_masks_secrets(self):
        self.assertEqual(check_config.describe("RECAPTCHA_SECRET_KEY", "abc"), "✓ RECAPTCHA_SECRET_KEY: ***")
        self.assertEqual(check_config.describe("TELEGRAM_BOT_ID", "42"), "✓ TELEGRAM_BOT_ID: 42")
        self.assertEqual(check_config.describe("LOG_LEVEL", None, required=False), "○ LOG_LEVEL: NOT SET")


class TestInitDatabase(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.engine = create_engine(f"sqlite:///{Path(tmp.name) / 'init.db'}")
        self.addCleanup(self.engine.dispose)

    def test_creates_missing_tables_once(self):
        created = init_database(self.engine)
        self.assertEqual(created, ["personal_access_tokens", "users"])
        self.assertEqual(init_database(self.engine), [])
        self.assertEqual(existing_tables(self.engine), ["personal_access_tokens", "users"])

    def test_drop_existing_recreates(self):
        init_database(self.engine)
        self.assertEqual(init_database(self.engine, drop_existing=True), ["personal_access_tokens", "users"])
