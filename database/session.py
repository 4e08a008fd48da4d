import os
from typing import Any, Dict, Iterator, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///./token_ledger.db"


def _resolve_database_url(raw_url: str | None) -> Tuple[URL, Dict[str, Any]]:
    """Turn DATABASE_URL into an engine URL plus driver connect args.

    Only local accounts and access tokens live here; balances are in Firebase.
    SQLite is shared across FastAPI's worker threads. Hosted Postgres gets the
    psycopg driver and sslmode=require unless the URL already sets it.
    """
    url = make_url(raw_url or DEFAULT_DATABASE_URL)

    if url.drivername.startswith("sqlite"):
        return url, {"check_same_thread": False}

    if url.drivername in {"postgres", "postgresql"}:
        url = url.set(drivername="postgresql+psycopg")

    if url.drivername.startswith("postgresql") and "sslmode" not in url.query:
        url = url.update_query_dict({"sslmode": "require"})

    return url, {}


def _create_engine() -> Engine:
    url, connect_args = _resolve_database_url(os.getenv("DATABASE_URL"))
    echo = os.getenv("DATABASE_ECHO", "").lower() in {"1", "true", "yes"}
    return create_engine(url, pool_pre_ping=True, echo=echo, connect_args=connect_args)


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
Base = declarative_base()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
