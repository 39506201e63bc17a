"""
clubledger.api.routes.points — Points, reputation and badges for the caller
============================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from clubledger.api.deps import get_current_user, get_engine
from clubledger.database.models import Currency
from clubledger.engine.reputation import reputation_label
from clubledger.services import badge_service, ledger_service

router = APIRouter(tags=["points"])


@router.get("/points/me")
def my_points(
    limit: int = Query(50, ge=1, le=200),
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    account = ledger_service.get_account(engine, user["sub"])
    if account is None:
        raise HTTPException(404, "User not found")
    entries = ledger_service.history(engine, account.id, Currency.POINTS, limit=limit)
    return {
        "points": account.points,
        "reputation": account.reputation,
        "reputation_label": reputation_label(account.reputation),
        "history": [ledger_service.entry_to_dict(e) for e in entries],
    }


@router.get("/badges/me")
def my_badges(
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return {
        "badges": badge_service.list_badges(engine, user["sub"]),
        "progress": badge_service.badge_progress(engine, user["sub"]),
    }
