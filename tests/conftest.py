"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
import uuid

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of clubledger.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from clubledger.database.engine import configure_sqlite, create_db_engine  # noqa: E402
from clubledger.database.models import Base, Pitch, RewardItem, User  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all clubledger tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database, and
    ``configure_sqlite`` so SAVEPOINTs behave as on PostgreSQL.

    Only one session may hold a transaction at a time on this engine; open
    assertion sessions *after* the service call under test returns.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for multi-threaded tests.

    Each thread gets its own connection; ``BEGIN IMMEDIATE`` makes writers
    queue on the database lock the way row locks queue them on PostgreSQL.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def plain_engine(tmp_path) -> Engine:
    """File-backed SQLite engine on pysqlite's default transaction handling.

    Reads take no lock here, so another connection can commit between a
    service's first SELECT and its guarded UPDATE.  Tests that interleave
    a second call inside that window use it.  SAVEPOINTs are unreliable in
    this mode; stick to unkeyed awards and plain status changes.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'plain.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------
def make_user(engine: Engine, name: str = "Reader", *, points: int = 0, credits: int = 0) -> str:
    """Insert a user and fund it through the ledger so balances reconcile."""
    from clubledger.database.models import PointEvent
    from clubledger.services import ledger_service

    with Session(engine) as session:
        user = User(name=name)
        session.add(user)
        session.commit()
        user_id = user.id

    if points:
        ledger_service.award(engine, user_id, PointEvent.REVIEW_VERIFIED, amount=points)
    if credits:
        ledger_service.purchase(engine, user_id, credits, f"seed-{uuid.uuid4()}")
    return user_id


def make_reward(
    engine: Engine,
    *,
    cost: int = 100,
    copies: int | None = None,
    badge_code: str | None = None,
    active: bool = True,
    name: str = "Free Ebook",
) -> str:
    with Session(engine) as session:
        item = RewardItem(
            name=name,
            points_cost=cost,
            copies_available=copies,
            copies_redeemed=0,
            badge_code=badge_code,
            is_active=active,
        )
        session.add(item)
        session.commit()
        return item.id


def make_pitch(engine: Engine, author_id: str, title: str = "The Lighthouse Keeper") -> str:
    with Session(engine) as session:
        pitch = Pitch(author_id=author_id, title=title)
        session.add(pitch)
        session.commit()
        return pitch.id


def get_user(engine: Engine, user_id: str) -> User:
    with Session(engine, expire_on_commit=False) as session:
        user = session.get(User, user_id)
        session.expunge(user)
        return user


def get_reward(engine: Engine, reward_item_id: str) -> RewardItem:
    with Session(engine, expire_on_commit=False) as session:
        item = session.get(RewardItem, reward_item_id)
        session.expunge(item)
        return item


# ---------------------------------------------------------------------------
# API helpers
# ---------------------------------------------------------------------------
def make_token(sub: str, *, is_admin: bool = False, username: str = "Reader") -> str:
    import jwt

    from clubledger.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    return make_token(sub, is_admin=True, username=username)


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


@pytest.fixture
def client(db_engine):
    """FastAPI TestClient bound to the in-memory engine.

    The lifespan is not entered, so no dispatcher runs and no
    DATABASE_URL is needed.
    """
    from fastapi.testclient import TestClient

    from clubledger.api.deps import get_config, get_engine
    from clubledger.api.main import app
    from clubledger.config import LedgerConfig

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: LedgerConfig()
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
