# Copyright © 2025 Phaethon Order LLC. All rights reserved. Provided solely for evaluation. See LICENSE.

import os
import re
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import models  # noqa: F401
from database.crud import (
    bind_firebase_uid,
    create_user,
    get_user_by_email,
    get_user_by_firebase_uid,
    issue_access_token,
    revoke_access_token,
)
from database.session import Base, engine, get_db
from svc.checkout import CustomerDetails, create_checkout, direct_charge, handle_webhook, verify_session
from svc.ledger import LedgerReconciler, get_ledger
from svc.recaptcha import verify_recaptcha_token
from svc.stripe_gateway import StripeGateway, get_gateway
from utils.auth import AuthContext, get_auth_context, verify_firebase_id_token
from utils.errors import AuthenticationError, ConflictError, ServiceError, ValidationError
from utils.logger import setup_logger
from utils.passwords import MAX_PASSWORD_BYTES, random_password, verify_password

logger = setup_logger()

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _validate_email(value: str) -> str:
    value = value.strip()
    if not _EMAIL_PATTERN.match(value):
        raise ValueError("The email must be a valid email address.")
    return value


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(max_length=255)
    password: str = Field(min_length=8)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _password(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"The password may not be greater than {MAX_PASSWORD_BYTES} bytes.")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _validate_email(value)


class FirebaseLoginRequest(BaseModel):
    idToken: str = Field(min_length=1)


class RecaptchaRequest(BaseModel):
    token: Optional[str] = None


class CustomerInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value) if value else None


class CheckoutRequest(BaseModel):
    priceId: str = Field(min_length=1)
    userId: str = Field(min_length=1)
    customerInfo: Optional[CustomerInfo] = None

    def customer(self) -> CustomerDetails:
        info = self.customerInfo or CustomerInfo()
        return CustomerDetails(name=info.name, email=info.email)


STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")


def _cors_origins() -> List[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "https://decyphers.com",
    ]


app = FastAPI(title="token-ledger", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.message, exc.details)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"), "message": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "The given data was invalid.", "errors": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Internal server error."},
    )


@app.get("/api/health")
async def health_check() -> Dict[str, Any]:
    """Health check endpoint that verifies configuration."""
    return {
        "status": "ok",
        "firebase_project_set": bool(os.getenv("FIREBASE_PROJECT_ID")),
        "firebase_database_set": bool(os.getenv("FIREBASE_DATABASE_URL")),
        "stripe_configured": bool(os.getenv("STRIPE_SECRET_KEY")),
        "stripe_webhook_configured": bool(STRIPE_WEBHOOK_SECRET),
    }


# --- authentication ------------------------------------------------


@app.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    if get_user_by_email(db, payload.email) is not None:
        raise ConflictError(
            "This email is already registered. Please try signing in with your password.",
            error="email-already-in-use",
        )

    user = create_user(db, name=payload.name, email=payload.email, password=payload.password)
    token = issue_access_token(db, user)
    logger.info("Registered user %s", user.id)
    return {
        "success": True,
        "access_token": token,
        "token_type": "Bearer",
        "user_id": user.id,
        "email": user.email,
        "name": user.name,
    }


@app.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    user = get_user_by_email(db, payload.email)
    if user is None or not verify_password(payload.password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    token = issue_access_token(db, user)
    return {
        "success": True,
        "access_token": token,
        "token_type": "Bearer",
        "user": user.to_public_dict(),
    }


@app.post("/firebase-login")
def firebase_login(payload: FirebaseLoginRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        identity = verify_firebase_id_token(payload.idToken)
    except AuthenticationError as exc:
        logger.error("Firebase auth error: %s", exc.message)
        raise AuthenticationError("Authentication failed", error=exc.message) from exc

    email = identity.email
    if not email:
        raise AuthenticationError("Authentication failed", error="Firebase account has no email address.")
    logger.info("Firebase login for uid %s (%s)", identity.sub, email)

    existing = get_user_by_email(db, email)
    if existing is not None and not existing.firebase_uid:
        user = bind_firebase_uid(db, existing, identity.sub)
        logger.info("Updated existing user %s with Firebase UID", user.id)
    else:
        user = get_user_by_firebase_uid(db, identity.sub)
        if user is None:
            user = create_user(
                db,
                name=identity.claims.get("name") or email,
                email=email,
                password=random_password(),
                firebase_uid=identity.sub,
            )
            logger.info("Created user %s from Firebase UID", user.id)

    token = issue_access_token(db, user)
    return {
        "success": True,
        "access_token": token,
        "token_type": "Bearer",
        "user": user.to_public_dict(),
    }


@app.get("/user")
def current_user(auth: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    return {"success": True, "user": auth.user.to_public_dict()}


@app.post("/logout")
def logout(auth: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)) -> Dict[str, Any]:
    revoke_access_token(db, auth.token)
    return {"success": True, "message": "Logged out"}


# --- configuration -------------------------------------------------


@app.get("/config/recaptcha")
def recaptcha_config() -> JSONResponse:
    site_key = os.getenv("RECAPTCHA_SITE_KEY", "")
    if not site_key:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "reCAPTCHA site key is not configured", "siteKey": None},
        )
    return JSONResponse(content={"success": True, "siteKey": site_key})


@app.post("/verify-recaptcha")
def verify_recaptcha(payload: RecaptchaRequest, request: Request) -> JSONResponse:
    secret_key = os.getenv("RECAPTCHA_SECRET_KEY", "")
    if not secret_key:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "reCAPTCHA secret key is not configured"},
        )
    if not payload.token:
        raise ValidationError("reCAPTCHA token is required")

    client_host = request.client.host if request.client else None
    result = verify_recaptcha_token(secret_key, payload.token, client_host)
    if result.get("success"):
        return JSONResponse(content={"success": True, "message": "reCAPTCHA verification successful"})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "message": "reCAPTCHA verification failed",
            "errors": result.get("error-codes", []),
        },
    )


@app.get("/config/telegram")
def telegram_config() -> JSONResponse:
    bot_id = os.getenv("TELEGRAM_BOT_ID", "")
    if not bot_id:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Telegram bot ID is not configured", "bot_id": None},
        )
    return JSONResponse(content={"success": True, "bot_id": bot_id})


# --- payments ------------------------------------------------------


@app.post("/stripe/create-checkout")
def create_checkout_session(
    payload: CheckoutRequest,
    gateway: StripeGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    session = create_checkout(
        gateway,
        price_id=payload.priceId,
        user_id=payload.userId,
        customer=payload.customer(),
    )
    return {"success": True, "id": session["id"], "sessionUrl": session["url"]}


@app.get("/stripe/verify-session")
def verify_checkout_session(
    session_id: str = "",
    gateway: StripeGateway = Depends(get_gateway),
    ledger: LedgerReconciler = Depends(get_ledger),
) -> Dict[str, Any]:
    outcome = verify_session(gateway, ledger, session_id)
    return {
        "success": True,
        "tokensAdded": outcome.result.tokens_added,
        "previousTotal": outcome.result.previous_balance,
        "newTotal": outcome.result.new_balance,
        "alreadyProcessed": outcome.result.already_processed,
    }


@app.post("/stripe/verify-session")
def direct_verify_session(
    payload: CheckoutRequest,
    gateway: StripeGateway = Depends(get_gateway),
    ledger: LedgerReconciler = Depends(get_ledger),
) -> Dict[str, Any]:
    outcome = direct_charge(
        gateway,
        ledger,
        price_id=payload.priceId,
        user_id=payload.userId,
        customer=payload.customer(),
    )
    return {
        "success": True,
        "sessionId": outcome.session_id,
        "sessionUrl": outcome.session_url,
        "tokensAdded": outcome.result.tokens_added,
        "previousTotal": outcome.result.previous_balance,
        "newTotal": outcome.result.new_balance,
    }


@app.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_gateway),
    ledger: LedgerReconciler = Depends(get_ledger),
) -> Dict[str, Any]:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    outcome = await run_in_threadpool(handle_webhook, gateway, ledger, payload, signature, STRIPE_WEBHOOK_SECRET)

    response: Dict[str, Any] = {"success": True, "handled": outcome.handled}
    if outcome.credit is not None:
        response["tokensAdded"] = outcome.credit.result.tokens_added
        response["alreadyProcessed"] = outcome.credit.result.already_processed
    return response
