"""
clubledger.api.deps — FastAPI dependency injection
===================================================

Two shared secrets guard the API: ``JWT_SECRET`` signs user/admin bearer
tokens and is checked once at import, so a misconfigured deployment never
starts; ``PAYMENT_WEBHOOK_SECRET`` authenticates the payment provider and
is checked per request, so the webhook alone goes dark (503) when unset.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from clubledger.config import LedgerConfig, load_config
from clubledger.database.engine import create_db_engine

_WEAK_SECRETS = frozenset({
    "clubledger-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_JWT_SECRET_LENGTH = 32
_MIN_WEBHOOK_SECRET_LENGTH = 16

JWT_ALGORITHM = "HS256"


def _secret_problem(name: str, value: str, min_length: int) -> str | None:
    """Describe what is wrong with *value*, or ``None`` if it is usable."""
    if not value:
        return f"{name} environment variable is not set."
    if value in _WEAK_SECRETS:
        return f"{name} is set to a known weak default ('{value}')."
    if len(value) < min_length:
        return (
            f"{name} is too short ({len(value)} chars). "
            f"Minimum length is {min_length} characters."
        )
    return None


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError if the secret is missing, blank, too short
    (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    problem = _secret_problem("JWT_SECRET", secret, _MIN_JWT_SECRET_LENGTH)
    if problem:
        raise RuntimeError(
            f"{problem} "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> LedgerConfig:
    return load_config()


def get_webhook_secret() -> str:
    """Shared secret for the payment webhook; 503 when unset or weak."""
    secret = os.getenv("PAYMENT_WEBHOOK_SECRET", "")
    problem = _secret_problem("PAYMENT_WEBHOOK_SECRET", secret, _MIN_WEBHOOK_SECRET_LENGTH)
    if problem:
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Payment webhook not configured",
        )
    return secret


def _claims(authorization: str | None) -> dict:
    """Decode a ``Bearer`` header into its claims; every failure is 401."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    # ``sub`` is the ledger user id every user route acts on
    if not claims.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return claims


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return the caller's claims (``sub`` = user id)."""
    return _claims(authorization)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Like :func:`get_current_user`, plus 403 without the ``is_admin`` claim."""
    claims = _claims(authorization)
    if not claims.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return claims
