"""
clubledger.api.routes.credits — Credit balance and credit sinks
================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from clubledger.api.deps import get_config, get_current_user, get_engine
from clubledger.api.errors import invalid_request, unwrap
from clubledger.config import LedgerConfig
from clubledger.database.models import Currency
from clubledger.services import ledger_service, promotion_service

router = APIRouter(prefix="/credits", tags=["credits"])


class BoostRequest(BaseModel):
    pitch_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    duration_days: int = Field(7, ge=1)


class SponsorRequest(BaseModel):
    budget: int = Field(gt=0)
    duration_days: int = Field(30, ge=1)
    target_genres: list[str] = Field(default_factory=list)
    min_member_count: int | None = Field(None, ge=1)
    max_member_count: int | None = Field(None, ge=1)
    target_frequency: str | None = None


@router.get("/balance")
def balance(
    limit: int = Query(50, ge=1, le=200),
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    account = ledger_service.get_account(engine, user["sub"])
    if account is None:
        raise HTTPException(404, "User not found")
    entries = ledger_service.history(engine, account.id, Currency.CREDITS, limit=limit)
    return {
        "credit_balance": account.credit_balance,
        "transactions": [ledger_service.entry_to_dict(e) for e in entries],
    }


@router.post("/boost")
def boost(
    body: BoostRequest,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
    cfg: LedgerConfig = Depends(get_config),
):
    try:
        outcome = promotion_service.boost_pitch(
            engine, user["sub"], body.pitch_id, body.amount, body.duration_days, config=cfg,
        )
    except ValueError as exc:
        raise invalid_request(exc)
    outcome = unwrap(outcome)
    return {
        "credits_spent": body.amount,
        "credit_balance": outcome.balance,
        "pitch_id": outcome.pitch.id,
        "boost_ends_at": outcome.pitch.boost_ends_at.isoformat(),
    }


@router.post("/sponsor/{pitch_id}", status_code=201)
def sponsor(
    pitch_id: str,
    body: SponsorRequest,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
    cfg: LedgerConfig = Depends(get_config),
):
    try:
        outcome = promotion_service.sponsor_pitch(
            engine,
            user["sub"],
            pitch_id,
            body.budget,
            body.duration_days,
            target_genres=body.target_genres,
            min_member_count=body.min_member_count,
            max_member_count=body.max_member_count,
            target_frequency=body.target_frequency,
            config=cfg,
        )
    except ValueError as exc:
        raise invalid_request(exc)
    outcome = unwrap(outcome)
    sponsorship = outcome.sponsorship
    return {
        "credits_spent": body.budget,
        "credit_balance": outcome.balance,
        "sponsorship": {
            "id": sponsorship.id,
            "pitch_id": sponsorship.pitch_id,
            "budget": sponsorship.budget,
            "target_genres": sponsorship.target_genres,
            "start_date": sponsorship.start_date.isoformat(),
            "end_date": sponsorship.end_date.isoformat(),
        },
    }


@router.get("/purchases/{payment_id}")
def purchase_status(
    payment_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Re-query a payment after a timed-out checkout confirmation."""
    entry = ledger_service.find_purchase(engine, payment_id)
    if entry is None or entry.user_id != user["sub"]:
        return {"payment_id": payment_id, "credited": False}
    return {
        "payment_id": payment_id,
        "credited": True,
        "entry": ledger_service.entry_to_dict(entry),
    }
