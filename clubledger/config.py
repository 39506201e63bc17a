"""
clubledger.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for economy limits and notification delivery
settings.  Secrets and connection strings (``DATABASE_URL``, ``JWT_SECRET``,
``PAYMENT_WEBHOOK_SECRET``, ``NOTIFICATION_WEBHOOK_URL``) stay in the
environment / ``.env``.

Usage::

    from clubledger.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.boost_min_credits)     # 10
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LedgerConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so a missing file section falls back to the
    platform's standard economy.
    """

    # Identity
    platform_name: str = "Book Club"

    # Credits
    credit_price_cents: int = 10
    min_credit_purchase: int = 10
    max_credit_purchase: int = 10_000
    boost_min_credits: int = 10
    boost_max_days: int = 30
    sponsorship_min_credits: int = 100
    sponsorship_max_days: int = 90

    # Points — per-event overrides of engine.reputation.POINT_VALUES
    point_values: dict[str, int] = field(default_factory=dict)

    # Notification outbox
    outbox_poll_seconds: float = 10.0
    outbox_batch_size: int = 50
    outbox_max_attempts: int = 5
    notification_webhook_url: str | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> LedgerConfig:
    """Read *path* and return a :class:`LedgerConfig` instance.

    A missing file yields the defaults.  ``NOTIFICATION_WEBHOOK_URL`` in
    the environment overrides the YAML value.

    Raises
    ------
    ValueError
        If a numeric setting is not a number.
    """
    config_path = Path(path)
    raw: dict = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}

    credits = raw.get("credits", {}) or {}
    outbox = raw.get("outbox", {}) or {}
    defaults = LedgerConfig()

    return LedgerConfig(
        platform_name=raw.get("platform_name", defaults.platform_name),
        credit_price_cents=int(credits.get("price_cents", defaults.credit_price_cents)),
        min_credit_purchase=int(credits.get("min_purchase", defaults.min_credit_purchase)),
        max_credit_purchase=int(credits.get("max_purchase", defaults.max_credit_purchase)),
        boost_min_credits=int(credits.get("boost_min", defaults.boost_min_credits)),
        boost_max_days=int(credits.get("boost_max_days", defaults.boost_max_days)),
        sponsorship_min_credits=int(
            credits.get("sponsorship_min", defaults.sponsorship_min_credits)
        ),
        sponsorship_max_days=int(
            credits.get("sponsorship_max_days", defaults.sponsorship_max_days)
        ),
        point_values={
            str(k): int(v) for k, v in (raw.get("point_values") or {}).items()
        },
        outbox_poll_seconds=float(outbox.get("poll_seconds", defaults.outbox_poll_seconds)),
        outbox_batch_size=int(outbox.get("batch_size", defaults.outbox_batch_size)),
        outbox_max_attempts=int(outbox.get("max_attempts", defaults.outbox_max_attempts)),
        notification_webhook_url=(
            os.getenv("NOTIFICATION_WEBHOOK_URL") or outbox.get("webhook_url") or None
        ),
    )
