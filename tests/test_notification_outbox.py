"""
tests/test_notification_outbox.py — Transactional Outbox + Dispatcher
======================================================================
Outbox rows exist exactly when the financial change committed, and
delivery failures never reach the ledger.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from clubledger.database.models import (
    EntryType,
    Notification,
    NotificationOutbox,
    OutboxStatus,
    PointEvent,
)
from clubledger.services import ledger_service
from clubledger.services.notification_outbox import (
    InAppSink,
    NotificationDispatcher,
    WebhookSink,
)
from conftest import get_user, make_user


@pytest.fixture
def engine(db_engine):
    return db_engine


def _outbox(engine) -> list[NotificationOutbox]:
    with Session(engine) as session:
        return list(session.scalars(select(NotificationOutbox).order_by(NotificationOutbox.id)).all())


class TestEmit:
    def test_failed_spend_emits_nothing(self, engine):
        uid = make_user(engine)
        ledger_service.spend(engine, uid, 10, EntryType.SPENT, None)
        assert _outbox(engine) == []

    def test_payload(self, engine):
        uid = make_user(engine)
        ledger_service.award(engine, uid, PointEvent.HOST_ACTION)
        [row] = _outbox(engine)
        assert row.kind == "points_earned"
        assert row.status == OutboxStatus.PENDING
        assert row.payload == {
            "event_type": "HOST_ACTION",
            "amount": 15,
            "currency": "POINTS",
            "balance": 15,
        }


class TestDispatcher:
    def test_in_app_delivery(self, engine):
        uid = make_user(engine)
        ledger_service.award(engine, uid, PointEvent.JOIN_CLUB)
        dispatcher = NotificationDispatcher(engine, InAppSink(engine))

        assert dispatcher.drain_once() == {"sent": 1, "failed": 0, "dead": 0}
        assert dispatcher.drain_once() == {"sent": 0, "failed": 0, "dead": 0}

        [row] = _outbox(engine)
        assert row.status == OutboxStatus.SENT
        assert row.attempts == 1
        assert row.sent_at is not None
        with Session(engine) as session:
            note = session.scalars(select(Notification)).one()
        assert note.user_id == uid
        assert note.kind == "points_earned"
        assert note.data["amount"] == 5

    def test_failure_is_retried_then_dead(self, engine):
        uid = make_user(engine)
        ledger_service.award(engine, uid, PointEvent.JOIN_CLUB)
        sink = MagicMock()
        sink.deliver.side_effect = RuntimeError("mail server down")
        dispatcher = NotificationDispatcher(engine, sink, max_attempts=2)

        assert dispatcher.drain_once() == {"sent": 0, "failed": 1, "dead": 0}
        [row] = _outbox(engine)
        assert row.status == OutboxStatus.PENDING
        assert row.attempts == 1
        assert "mail server down" in row.last_error

        assert dispatcher.drain_once() == {"sent": 0, "failed": 0, "dead": 1}
        [row] = _outbox(engine)
        assert row.status == OutboxStatus.DEAD
        assert dispatcher.drain_once() == {"sent": 0, "failed": 0, "dead": 0}

        # The financial change is untouched by delivery failures
        assert get_user(engine, uid).points == 5

    def test_batch_size(self, engine):
        uid = make_user(engine)
        for _ in range(3):
            ledger_service.award(engine, uid, PointEvent.MESSAGE_POSTED)
        dispatcher = NotificationDispatcher(engine, InAppSink(engine), batch_size=2)
        assert dispatcher.drain_once()["sent"] == 2
        assert dispatcher.drain_once()["sent"] == 1


class TestWebhookSink:
    def test_posts_json(self, engine):
        uid = make_user(engine)
        ledger_service.purchase(engine, uid, 100, "pi_hook")
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(202)

        sink = WebhookSink(
            "https://notify.example.com/hook",
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        dispatcher = NotificationDispatcher(engine, sink)

        assert dispatcher.drain_once()["sent"] == 1
        assert seen[0]["user_id"] == uid
        assert seen[0]["kind"] == "credits_purchased"
        assert seen[0]["payload"]["payment_id"] == "pi_hook"
        sink.close()

    def test_http_error_counts_as_failure(self, engine):
        uid = make_user(engine)
        ledger_service.award(engine, uid, PointEvent.JOIN_CLUB)
        sink = WebhookSink(
            "https://notify.example.com/hook",
            client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500))),
        )
        dispatcher = NotificationDispatcher(engine, sink)
        assert dispatcher.drain_once()["failed"] == 1
        sink.close()


class TestBackgroundLoop:
    def test_start_drains_until_stopped(self, file_engine):
        uid = make_user(file_engine)
        ledger_service.award(file_engine, uid, PointEvent.JOIN_CLUB)
        dispatcher = NotificationDispatcher(file_engine, InAppSink(file_engine), poll_seconds=0.01)

        async def _run():
            dispatcher.start()
            await asyncio.sleep(0.3)
            dispatcher.stop()

        asyncio.run(_run())

        [row] = _outbox(file_engine)
        assert row.status == OutboxStatus.SENT
