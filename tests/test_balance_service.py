"""
tests/test_balance_service.py — Balance Accessor Tests
=======================================================
Conditional increments/decrements on the materialised balance columns.
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from clubledger.database.models import Currency
from clubledger.engine.outcomes import BalanceAdjustment, InsufficientBalance, NotFound
from clubledger.services import balance_service
from conftest import get_user, make_user


@pytest.fixture
def engine(db_engine):
    return db_engine


class TestGetBalance:
    def test_reads_each_currency(self, engine):
        uid = make_user(engine, points=40, credits=25)
        with Session(engine) as session:
            assert balance_service.get_balance(session, uid, Currency.POINTS) == 40
            assert balance_service.get_balance(session, uid, Currency.CREDITS) == 25

    def test_unknown_user(self, engine):
        with Session(engine) as session:
            result = balance_service.get_balance(session, "missing", Currency.POINTS)
        assert result == NotFound("user", "missing")


class TestAdjustBalance:
    def test_increment_returns_before_and_after(self, engine):
        uid = make_user(engine, points=10)
        with Session(engine) as session:
            result = balance_service.adjust_balance(session, uid, Currency.POINTS, 15)
            session.commit()
        assert result == BalanceAdjustment(before=10, after=25)
        assert get_user(engine, uid).points == 25

    def test_decrement_within_balance(self, engine):
        uid = make_user(engine, credits=50)
        with Session(engine) as session:
            result = balance_service.adjust_balance(session, uid, Currency.CREDITS, -50)
            session.commit()
        assert result == BalanceAdjustment(before=50, after=0)
        assert get_user(engine, uid).credit_balance == 0

    def test_decrement_beyond_balance_writes_nothing(self, engine):
        """An overdraft is reported, never applied."""
        uid = make_user(engine, credits=30)
        with Session(engine) as session:
            result = balance_service.adjust_balance(session, uid, Currency.CREDITS, -31)
            session.commit()
        assert isinstance(result, InsufficientBalance)
        assert result.current == 30
        assert result.required == 31
        assert result.currency == "CREDITS"
        assert get_user(engine, uid).credit_balance == 30

    def test_currencies_are_independent(self, engine):
        uid = make_user(engine, points=100, credits=0)
        with Session(engine) as session:
            result = balance_service.adjust_balance(session, uid, Currency.CREDITS, -1)
        assert isinstance(result, InsufficientBalance)

    def test_unknown_user(self, engine):
        with Session(engine) as session:
            result = balance_service.adjust_balance(session, "missing", Currency.POINTS, 5)
        assert isinstance(result, NotFound)
        assert result.kind == "user"
