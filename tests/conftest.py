from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

_DB_DIR = tempfile.mkdtemp(prefix="token-ledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ.setdefault("FIREBASE_PROJECT_ID", "decyphers-test")

from database import models  # noqa: E402,F401
from database.session import Base, engine  # noqa: E402

Base.metadata.create_all(bind=engine)
