"""
tests/test_reconciliation.py — Balance vs. Ledger Drift Report
===============================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from clubledger.database.models import User
from clubledger.services import reconciliation_service
from conftest import get_user, make_user


@pytest.fixture
def engine(db_engine):
    return db_engine


class TestReconcileBalances:
    def test_clean_ledger(self, engine):
        make_user(engine, "A", points=100, credits=50)
        make_user(engine, "B")

        report = reconciliation_service.reconcile_balances(engine)

        assert report["checked"] == 4
        assert report["mismatched"] == 0
        assert report["mismatches"] == []
        assert "timestamp" in report

    def test_reports_drift_without_fixing(self, engine):
        uid = make_user(engine, points=100)
        with Session(engine) as session:
            session.execute(update(User).where(User.id == uid).values(points=130))
            session.commit()

        report = reconciliation_service.reconcile_balances(engine)

        assert report["mismatched"] == 1
        assert report["mismatches"][0] == {
            "user_id": uid,
            "currency": "POINTS",
            "stored": 130,
            "ledger_sum": 100,
            "diff": 30,
        }
        assert get_user(engine, uid).points == 130
