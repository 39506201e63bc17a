"""
clubledger.api.routes.webhooks — Payment provider callbacks
============================================================

The provider calls back once per payment event and may redeliver.  Only
``succeeded`` events credit anything, and :func:`ledger_service.purchase`
is idempotent on the payment id, so redelivery is harmless.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from clubledger.api.deps import get_config, get_engine, get_webhook_secret
from clubledger.api.errors import unwrap
from clubledger.config import LedgerConfig
from clubledger.services import ledger_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class PaymentEvent(BaseModel):
    payment_id: str = Field(min_length=1, max_length=150)
    user_id: str = Field(min_length=1)
    credits: int = Field(gt=0)
    status: str
    description: str | None = None


@router.post("/payments")
def payment_webhook(
    body: PaymentEvent,
    x_webhook_secret: Annotated[str | None, Header()] = None,
    secret: str = Depends(get_webhook_secret),
    engine=Depends(get_engine),
    cfg: LedgerConfig = Depends(get_config),
):
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, secret):
        raise HTTPException(401, "Invalid webhook secret")

    if body.status != "succeeded":
        logger.info("Payment %s status %s acknowledged, not credited", body.payment_id, body.status)
        return {"received": True, "credited": False}

    if not cfg.min_credit_purchase <= body.credits <= cfg.max_credit_purchase:
        raise HTTPException(422, detail={
            "code": "INVALID_REQUEST",
            "message": (
                f"credits must be between {cfg.min_credit_purchase} "
                f"and {cfg.max_credit_purchase}"
            ),
        })

    change = unwrap(ledger_service.purchase(
        engine, body.user_id, body.credits, body.payment_id, body.description,
    ))
    return {
        "received": True,
        "credited": not change.replayed,
        "replayed": change.replayed,
        "credit_balance": change.balance,
        "entry_id": change.entry.id,
    }
