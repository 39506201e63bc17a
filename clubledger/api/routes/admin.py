"""
clubledger.api.routes.admin — Admin endpoints (JWT-protected)
==============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from clubledger.api.deps import get_current_admin, get_engine
from clubledger.api.errors import invalid_request, unwrap
from clubledger.database.models import Currency, RedemptionStatus, RewardType
from clubledger.services import (
    catalog_service,
    ledger_service,
    reconciliation_service,
    redemption_service,
)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RewardCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    points_cost: int = Field(gt=0)
    reward_type: RewardType = RewardType.PLATFORM
    contributor_id: str | None = None
    copies_available: int | None = Field(None, ge=0)
    badge_code: str | None = None
    image_url: str | None = None
    is_active: bool = True
    sort_order: int = 0


class RewardUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    points_cost: int | None = Field(None, gt=0)
    reward_type: RewardType | None = None
    contributor_id: str | None = None
    copies_available: int | None = Field(None, ge=0)
    badge_code: str | None = None
    image_url: str | None = None
    is_active: bool | None = None
    sort_order: int | None = None


class RedemptionReview(BaseModel):
    status: RedemptionStatus
    reason: str | None = None
    notes: str | None = None


class ManualGrant(BaseModel):
    user_id: str = Field(min_length=1)
    reward_item_id: str = Field(min_length=1)
    reason: str = Field(min_length=1)


class BalanceAdjustmentRequest(BaseModel):
    user_id: str = Field(min_length=1)
    currency: Currency
    delta: int
    reason: str = Field(min_length=1)


def _change_dict(change) -> dict:
    return {
        "user_id": change.user_id,
        "currency": change.currency,
        "balance": change.balance,
        "entry": ledger_service.entry_to_dict(change.entry),
    }


# ---------------------------------------------------------------------------
# Reward catalog
# ---------------------------------------------------------------------------
@router.get("/rewards")
def list_rewards(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"rewards": catalog_service.list_rewards(engine, include_inactive=True)}


@router.post("/rewards", status_code=201)
def create_reward(
    body: RewardCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    fields = body.model_dump()
    fields["reward_type"] = body.reward_type.value
    try:
        item = catalog_service.create_reward(engine, actor_id=admin["sub"], **fields)
    except ValueError as exc:
        raise invalid_request(exc)
    return catalog_service.reward_to_dict(item)


@router.patch("/rewards/{reward_item_id}")
def update_reward(
    reward_item_id: str,
    body: RewardUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(400, "No fields to update")
    if fields.get("reward_type") is not None:
        fields["reward_type"] = RewardType(fields["reward_type"]).value
    try:
        item = catalog_service.update_reward(
            engine, reward_item_id, actor_id=admin["sub"], **fields,
        )
    except ValueError as exc:
        raise invalid_request(exc)
    if item is None:
        raise HTTPException(404, "Reward not found")
    return catalog_service.reward_to_dict(item)


@router.delete("/rewards/{reward_item_id}")
def deactivate_reward(
    reward_item_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if not catalog_service.deactivate_reward(engine, reward_item_id, actor_id=admin["sub"]):
        raise HTTPException(404, "Reward not found")
    return {"deactivated": True}


# ---------------------------------------------------------------------------
# Redemptions
# ---------------------------------------------------------------------------
@router.get("/redemptions")
def list_redemptions(
    status: RedemptionStatus | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"redemptions": redemption_service.list_redemptions(engine, status, limit=limit)}


@router.get("/redemptions/{redemption_id}/audit")
def redemption_audit(
    redemption_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"audit": redemption_service.get_audit_trail(engine, redemption_id)}


@router.patch("/redemptions/{redemption_id}")
def review_redemption(
    redemption_id: str,
    body: RedemptionReview,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    outcome = unwrap(redemption_service.transition_redemption(
        engine,
        redemption_id,
        body.status,
        actor_id=admin["sub"],
        reason=body.reason,
        notes=body.notes,
    ))
    return {
        "redemption": redemption_service.redemption_to_dict(outcome.redemption),
        "balance": outcome.balance,
        "badge_granted": outcome.badge_granted,
    }


@router.post("/redemptions/grant", status_code=201)
def grant_reward(
    body: ManualGrant,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    outcome = unwrap(redemption_service.admin_grant(
        engine, body.user_id, body.reward_item_id,
        admin_id=admin["sub"], reason=body.reason,
    ))
    return {
        "redemption": redemption_service.redemption_to_dict(outcome.redemption),
        "badge_granted": outcome.badge_granted,
    }


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------
@router.post("/adjustments")
def adjust_balance(
    body: BalanceAdjustmentRequest,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    try:
        change = ledger_service.admin_adjust(
            engine, body.user_id, body.currency, body.delta,
            admin_id=admin["sub"], reason=body.reason,
        )
    except ValueError as exc:
        raise invalid_request(exc)
    return _change_dict(unwrap(change))


@router.get("/users/{user_id}/ledger")
def user_ledger(
    user_id: str,
    currency: Currency | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    entries = ledger_service.history(engine, user_id, currency, limit=limit)
    return {"entries": [ledger_service.entry_to_dict(e) for e in entries]}


@router.get("/reconciliation")
def reconciliation(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return reconciliation_service.reconcile_balances(engine)
