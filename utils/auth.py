from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
import threading
import time
from typing import Any, Dict, Optional, Tuple

import httpx
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from jose.backends.rsa_backend import RSAKey
from sqlalchemy.orm import Session

from database.crud import find_access_token
from database.models import AccessToken, UserAccount
from database.session import get_db
from utils.errors import AuthenticationError, UpstreamError
from utils.logger import get_logger

logger = get_logger()

FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")
FIREBASE_ISSUER = f"https://securetoken.google.com/{FIREBASE_PROJECT_ID}" if FIREBASE_PROJECT_ID else None
FIREBASE_JWKS_URL = "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
ALGORITHMS = ["RS256"]

security = HTTPBearer(auto_error=False)


def _load_jwks_cache_ttl() -> int:
    raw_ttl = os.getenv("FIREBASE_JWKS_CACHE_TTL")
    if not raw_ttl:
        return 3600
    try:
        parsed = int(raw_ttl)
    except ValueError:
        return 3600
    return max(parsed, 60)


JWKS_CACHE_TTL_SECONDS = _load_jwks_cache_ttl()
_MAX_AGE_PATTERN = re.compile(r"max-age=(\d+)")
_jwks_cache: Optional[Dict[str, Any]] = None
_jwks_cache_expires_at: float = 0.0
_jwks_cache_lock = threading.Lock()


@dataclass
class IdentityClaims:
    sub: str
    email: Optional[str]
    claims: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthContext:
    user: UserAccount
    token: AccessToken


def _cache_lifetime(cache_control: Optional[str]) -> int:
    """Seconds to keep the key set: the response max-age, capped by FIREBASE_JWKS_CACHE_TTL."""
    match = _MAX_AGE_PATTERN.search(cache_control or "")
    if match is None:
        return JWKS_CACHE_TTL_SECONDS
    return max(min(int(match.group(1)), JWKS_CACHE_TTL_SECONDS), 60)


def _fetch_jwks() -> Tuple[Dict[str, Any], int]:
    try:
        response = httpx.get(FIREBASE_JWKS_URL, timeout=10.0)
        response.raise_for_status()
        jwks = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Fetching Firebase public keys failed: %s", exc)
        raise UpstreamError("Unable to fetch Firebase public keys.") from exc
    return jwks, _cache_lifetime(response.headers.get("cache-control"))


def _get_jwks(force_refresh: bool = False) -> Dict[str, Any]:
    global _jwks_cache, _jwks_cache_expires_at
    with _jwks_cache_lock:
        now = time.monotonic()
        if force_refresh or _jwks_cache is None or now >= _jwks_cache_expires_at:
            _jwks_cache, lifetime = _fetch_jwks()
            _jwks_cache_expires_at = now + lifetime
        return _jwks_cache


def clear_jwks_cache() -> None:
    global _jwks_cache, _jwks_cache_expires_at
    with _jwks_cache_lock:
        _jwks_cache = None
        _jwks_cache_expires_at = 0.0


def _find_jwk(jwks: Dict[str, Any], kid: Optional[str]) -> Optional[Dict[str, Any]]:
    return next((key for key in jwks.get("keys", []) if key.get("kid") == kid), None)


def verify_firebase_id_token(token: str) -> IdentityClaims:
    """Verify a Firebase ID token and return its subject, email and claims."""
    if not FIREBASE_PROJECT_ID:
        raise UpstreamError("Missing Firebase configuration value: FIREBASE_PROJECT_ID")
    if not token:
        raise AuthenticationError("ID token is missing.")

    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise AuthenticationError("Invalid token header.") from exc

    jwks = _get_jwks()
    jwk_key = _find_jwk(jwks, unverified_header.get("kid"))
    if jwk_key is None:
        jwks = _get_jwks(force_refresh=True)
        jwk_key = _find_jwk(jwks, unverified_header.get("kid"))
    if jwk_key is None:
        raise AuthenticationError("Invalid token header.")
    public_key = RSAKey(jwk_key, ALGORITHMS[0])

    try:
        payload = jwt.decode(
            token,
            public_key,
            algorithms=ALGORITHMS,
            audience=FIREBASE_PROJECT_ID,
            issuer=FIREBASE_ISSUER,
            options={"verify_at_hash": False},
        )
    except JWTError as exc:
        raise AuthenticationError("Invalid or expired token.") from exc

    sub = payload.get("sub")
    if not sub:
        raise AuthenticationError("Token payload is missing subject.")
    return IdentityClaims(sub=sub, email=payload.get("email"), claims=payload)


def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> AuthContext:
    if credentials is None:
        raise AuthenticationError("Authorization header is required.")
    if not credentials.credentials:
        raise AuthenticationError("Bearer token is missing.")

    token = find_access_token(db, credentials.credentials)
    if token is None:
        raise AuthenticationError("Unauthenticated.")
    return AuthContext(user=token.user, token=token)
