"""
Club Ledger — Points, Credits & Reward Redemption for a Book-Club Platform
===========================================================================
Tracks two currencies per member (earned points, purchased credits) on an
append-only ledger, lets members redeem points for catalog rewards through
an audited approval workflow, and lets authors spend credits promoting
their pitches.  Balance changes are atomic, non-negative and idempotent
under retries and concurrent requests.

Package layout::

    clubledger/
    ├── config.py          # YAML → typed Python config
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models (11 tables)
    │   └── seed.py        # Default reward catalog
    ├── engine/
    │   ├── refs.py        # Tagged ledger references
    │   ├── outcomes.py    # Typed success/failure results
    │   ├── transitions.py # Redemption state table
    │   ├── reputation.py  # Point values + reputation tiers
    │   └── badges.py      # Badge catalog + earn rules
    ├── services/
    │   ├── balance_service.py        # Conditional balance updates
    │   ├── ledger_service.py         # Award / spend / purchase / refund
    │   ├── redemption_service.py     # Redemption state machine
    │   ├── catalog_service.py        # Audit-logged catalog admin
    │   ├── badge_service.py          # Idempotent badge grants
    │   ├── promotion_service.py      # Pitch boosts + sponsorships
    │   ├── reconciliation_service.py # Balance vs. ledger drift report
    │   └── notification_outbox.py    # Transactional outbox + dispatcher
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT auth + engine/config injection
        ├── errors.py      # Outcome → HTTP mapping
        └── routes/        # Rewards, points, credits, admin, webhooks
"""

__version__ = "0.1.0"
