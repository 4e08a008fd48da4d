from __future__ import annotations

from typing import Any, Dict

import httpx

from utils.errors import UpstreamError
from utils.logger import get_logger

logger = get_logger()

_SITEVERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"
_SITEVERIFY_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


def verify_recaptcha_token(secret: str, token: str, remote_ip: str | None = None) -> Dict[str, Any]:
    """Ask Google whether a reCAPTCHA response token is valid.

    Returns the decoded siteverify payload; transport and decoding failures
    raise ``UpstreamError``.
    """
    data = {"secret": secret, "response": token}
    if remote_ip:
        data["remoteip"] = remote_ip
    try:
        response = httpx.post(_SITEVERIFY_URL, data=data, timeout=_SITEVERIFY_TIMEOUT)
        response.raise_for_status()
        return response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("reCAPTCHA verification request failed: %s", exc)
        raise UpstreamError(f"Error verifying reCAPTCHA: {exc}") from exc
