# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

"""Thin client for the Firebase Realtime Database REST API.

Paths are slash separated (``users/abc/purchases/cs_123``) and map to
``{FIREBASE_DATABASE_URL}/{path}.json``. Conditional writes rely on the
``X-Firebase-ETag`` / ``if-match`` headers supported by the REST API.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional, Tuple

import httpx

from utils.errors import UpstreamError
from utils.logger import get_logger

logger = get_logger()

FIREBASE_DATABASE_URL = os.getenv("FIREBASE_DATABASE_URL")
FIREBASE_DATABASE_SECRET = os.getenv("FIREBASE_DATABASE_SECRET")


def _load_timeout() -> float:
    raw = os.getenv("FIREBASE_TIMEOUT_SECONDS")
    if not raw:
        return 10.0
    try:
        return max(float(raw), 1.0)
    except ValueError:
        return 10.0


FIREBASE_TIMEOUT_SECONDS = _load_timeout()


class StoreConflict(Exception):
    """Raised when a conditional write loses against a concurrent writer."""


class FirebaseStore:
    def __init__(
        self,
        database_url: str,
        *,
        auth_secret: Optional[str] = None,
        timeout: float = FIREBASE_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base_url = (database_url or "").rstrip("/")
        self._auth_secret = auth_secret
        self._client = client or httpx.Client(timeout=timeout)

    def _url(self, path: str) -> str:
        clean = path.strip("/")
        return f"{self._base_url}/{clean}.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self._auth_secret} if self._auth_secret else {}

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self._base_url:
            raise UpstreamError("Firebase database URL is not configured.")
        try:
            response = self._client.request(method, self._url(path), params=self._params(), **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Firebase %s %s failed: %s", method, path, exc)
            raise UpstreamError("Unable to reach the Firebase database.") from exc

        if response.status_code == 412:
            raise StoreConflict(path)
        if response.status_code >= 400:
            logger.error(
                "Firebase %s %s returned %s: %s", method, path, response.status_code, response.text
            )
            raise UpstreamError("Firebase database request failed.", provider_status=response.status_code)
        return response

    def read(self, path: str) -> Any:
        return self._request("GET", path).json()

    def read_versioned(self, path: str) -> Tuple[Any, str]:
        response = self._request("GET", path, headers={"X-Firebase-ETag": "true"})
        etag = response.headers.get("ETag")
        if not etag:
            raise UpstreamError("Firebase database did not return an ETag.")
        return response.json(), etag

    def patch(self, path: str, update: Dict[str, Any]) -> None:
        self._request("PATCH", path, json=update)

    def put(self, path: str, value: Any, *, if_match: Optional[str] = None) -> None:
        headers = {"if-match": if_match} if if_match is not None else None
        self._request("PUT", path, json=value, headers=headers)

    def delete(self, path: str, *, if_match: Optional[str] = None) -> None:
        headers = {"if-match": if_match} if if_match is not None else None
        self._request("DELETE", path, headers=headers)


_default_store: Optional[FirebaseStore] = None


def get_store() -> FirebaseStore:
    global _default_store
    if _default_store is None:
        _default_store = FirebaseStore(FIREBASE_DATABASE_URL or "", auth_secret=FIREBASE_DATABASE_SECRET)
    return _default_store
