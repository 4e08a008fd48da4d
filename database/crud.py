from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from utils.errors import ConflictError
from utils.passwords import hash_password

from .models import AccessToken, UserAccount


def _hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def get_user_by_email(db: Session, email: str) -> Optional[UserAccount]:
    return db.execute(select(UserAccount).where(UserAccount.email == email)).scalar_one_or_none()


def get_user_by_firebase_uid(db: Session, firebase_uid: str) -> Optional[UserAccount]:
    return db.execute(select(UserAccount).where(UserAccount.firebase_uid == firebase_uid)).scalar_one_or_none()


def create_user(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    firebase_uid: Optional[str] = None,
) -> UserAccount:
    user = UserAccount(
        name=name,
        email=email,
        password_hash=hash_password(password),
        firebase_uid=firebase_uid,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            "This email is already registered. Please try signing in with your password.",
            error="email-already-in-use",
        ) from exc
    db.refresh(user)
    return user


def bind_firebase_uid(db: Session, user: UserAccount, firebase_uid: str) -> UserAccount:
    user.firebase_uid = firebase_uid
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("This Firebase account is already linked to another user.") from exc
    db.refresh(user)
    return user


def issue_access_token(db: Session, user: UserAccount, name: str = "auth_token") -> str:
    """Persist a new access token and return its plain-text bearer value."""
    secret = secrets.token_urlsafe(40)
    token = AccessToken(user_id=user.id, name=name, token_hash=_hash_secret(secret))
    db.add(token)
    db.commit()
    db.refresh(token)
    return f"{token.id}|{secret}"


def find_access_token(db: Session, bearer: str) -> Optional[AccessToken]:
    token_id, separator, secret = (bearer or "").partition("|")
    if not separator or not token_id.isdigit() or not secret:
        return None
    token = db.get(AccessToken, int(token_id))
    if token is None or not hmac.compare_digest(token.token_hash, _hash_secret(secret)):
        return None
    token.last_used_at = datetime.utcnow()
    db.commit()
    return token


def revoke_access_token(db: Session, token: AccessToken) -> None:
    db.delete(token)
    db.commit()
