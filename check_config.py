#!/usr/bin/env python3
"""
Diagnostic script for the token ledger's Firebase, Stripe and database settings.

Usage:
    python check_config.py
"""

import os
import sys
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from dotenv import load_dotenv

SENSITIVE_MARKERS = ("KEY", "SECRET", "TOKEN")

FormatCheck = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class Setting:
    name: str
    required: bool = True
    check: Optional[FormatCheck] = None
    default_note: Optional[str] = None


def _https_url(value: str) -> Optional[str]:
    return None if value.startswith("https://") else "should start with 'https://'"


def _stripe_secret_key(value: str) -> Optional[str]:
    return None if value.startswith(("sk_", "rk_")) else "should start with 'sk_' or 'rk_'"


def _stripe_webhook_secret(value: str) -> Optional[str]:
    return None if value.startswith("whsec_") else "should start with 'whsec_'"


def _positive_integer(value: str) -> Optional[str]:
    return None if value.isdigit() and int(value) > 0 else "should be a positive integer"


def _log_level(value: str) -> Optional[str]:
    levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    return None if value.upper() in levels else f"should be one of {', '.join(sorted(levels))}"


SECTIONS: Sequence[Tuple[str, Sequence[Setting]]] = (
    (
        "Firebase Configuration",
        (
            Setting("FIREBASE_PROJECT_ID"),
            Setting("FIREBASE_DATABASE_URL", check=_https_url),
            Setting("FIREBASE_DATABASE_SECRET", required=False),
            Setting("FIREBASE_TIMEOUT_SECONDS", required=False, check=_positive_integer, default_note="10"),
        ),
    ),
    (
        "Stripe Configuration",
        (
            Setting("STRIPE_SECRET_KEY", check=_stripe_secret_key),
            Setting("STRIPE_WEBHOOK_SECRET", check=_stripe_webhook_secret),
            Setting("FRONTEND_URL", required=False, check=_https_url, default_note="https://decyphers.com"),
        ),
    ),
    (
        "Ledger and Database",
        (
            Setting("DATABASE_URL", required=False, default_note="SQLite ./token_ledger.db"),
            Setting("LEDGER_MAX_WRITE_ATTEMPTS", required=False, check=_positive_integer, default_note="5"),
            Setting("LOG_LEVEL", required=False, check=_log_level, default_note="INFO"),
        ),
    ),
    (
        "Frontend Integrations (Optional)",
        (
            Setting("RECAPTCHA_SITE_KEY", required=False),
            Setting("RECAPTCHA_SECRET_KEY", required=False),
            Setting("TELEGRAM_BOT_ID", required=False),
            Setting("CORS_ALLOW_ORIGINS", required=False),
        ),
    ),
)


def describe(name: str, value: Optional[str], required: bool = True) -> str:
    """Render one setting as a status line, masking secrets."""
    if not value:
        return f"{'✗' if required else '○'} {name}: NOT SET"
    if any(marker in name for marker in SENSITIVE_MARKERS):
        value = value[:8] + "..." if len(value) > 8 else "***"
    return f"✓ {name}: {value}"


def audit(env: Mapping[str, str]) -> Tuple[List[str], List[str]]:
    """Return (report lines, issues) for the given environment."""
    lines: List[str] = []
    issues: List[str] = []
    for title, settings in SECTIONS:
        lines.append(f"{title}:")
        lines.append("-" * 40)
        for setting in settings:
            value = env.get(setting.name)
            lines.append(describe(setting.name, value, setting.required))
            if not value:
                if setting.required:
                    issues.append(f"Missing required variable: {setting.name}")
                elif setting.default_note:
                    lines.append(f"  ℹ Using default: {setting.default_note}")
                continue
            problem = setting.check(value) if setting.check else None
            if problem:
                lines.append(f"  ⚠ {setting.name} {problem}")
                issues.append(f"{setting.name} {problem}")
        lines.append("")
    return lines, issues


def main() -> None:
    load_dotenv()
    print("=" * 60)
    print("Token Ledger Configuration Check")
    print("=" * 60)
    print()

    lines, issues = audit(os.environ)
    for line in lines:
        print(line)

    print("=" * 60)
    if issues:
        print("⚠ ISSUES FOUND:")
        for issue in issues:
            print(f"  - {issue}")
        print()
        print("Please fix these issues before deploying.")
        sys.exit(1)

    print("✓ Configuration looks good!")
    print()
    print("Next steps:")
    print("  1. Create the local tables: python -m database.initialize")
    print("  2. For local development: uvicorn main:app --reload")
    print("  3. Check health endpoint: /api/health")
    sys.exit(0)


if __name__ == "__main__":
    main()
