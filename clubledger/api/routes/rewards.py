"""
clubledger.api.routes.rewards — Catalog browsing and user redemptions
======================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from clubledger.api.deps import get_current_user, get_engine
from clubledger.api.errors import unwrap
from clubledger.services import catalog_service, redemption_service

router = APIRouter(tags=["rewards"])


class RedemptionCreate(BaseModel):
    reward_item_id: str = Field(min_length=1)


def _outcome_dict(outcome) -> dict:
    return {
        "redemption": redemption_service.redemption_to_dict(outcome.redemption),
        "balance": outcome.balance,
        "badge_granted": outcome.badge_granted,
    }


@router.get("/rewards")
def list_rewards(engine=Depends(get_engine)):
    """Active catalog with availability."""
    return {"rewards": catalog_service.list_rewards(engine)}


@router.post("/redemptions", status_code=201)
def redeem(
    body: RedemptionCreate,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    outcome = redemption_service.create_redemption(engine, user["sub"], body.reward_item_id)
    return _outcome_dict(unwrap(outcome))


@router.get("/redemptions/me")
def my_redemptions(
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return {"redemptions": redemption_service.list_user_redemptions(engine, user["sub"])}


@router.post("/redemptions/{redemption_id}/cancel")
def cancel_redemption(
    redemption_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    outcome = redemption_service.cancel_redemption(engine, redemption_id, user["sub"])
    return _outcome_dict(unwrap(outcome))
