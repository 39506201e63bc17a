"""
clubledger.services.notification_outbox — Transactional outbox + dispatcher
============================================================================

Financial mutations never wait on notification delivery.  Instead:

1. The service calls :func:`emit` inside its own transaction, adding a
   ``notification_outbox`` row.  The row commits iff the mutation commits.
2. :class:`NotificationDispatcher` drains PENDING rows on a background
   task and hands each one to a sink (in-app row, or an HTTP webhook).
3. Delivery failures are logged and recorded on the row; the row is retried
   on later drains and marked DEAD after ``max_attempts``.  Nothing here can
   roll back or fail the ledger change that emitted the event.

Delivery is at-least-once: a crash between a successful send and the SENT
mark re-delivers on the next drain.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from clubledger.database.engine import get_session, run_db
from clubledger.database.models import Notification, NotificationOutbox, OutboxStatus

logger = logging.getLogger(__name__)


class NotificationKind:
    """Outbox ``kind`` string constants."""
    POINTS_EARNED = "points_earned"
    CREDITS_SPENT = "credits_spent"
    CREDITS_PURCHASED = "credits_purchased"
    BALANCE_ADJUSTED = "balance_adjusted"
    REDEMPTION_CREATED = "redemption_created"
    REDEMPTION_STATUS = "redemption_status"
    BADGE_EARNED = "badge_earned"


def emit(session: Session, user_id: str, kind: str, payload: dict[str, Any]) -> NotificationOutbox:
    """Queue a notification inside the caller's transaction."""
    row = NotificationOutbox(
        user_id=user_id,
        kind=kind,
        payload=payload,
        status=OutboxStatus.PENDING.value,
        attempts=0,
    )
    session.add(row)
    return row


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------
class NotificationSink(Protocol):
    def deliver(self, message: NotificationOutbox) -> None:
        """Deliver one message or raise."""


class InAppSink:
    """Write each message as an in-app ``notifications`` row."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def deliver(self, message: NotificationOutbox) -> None:
        with get_session(self.engine) as session:
            session.add(Notification(
                user_id=message.user_id,
                kind=message.kind,
                data=message.payload,
            ))


class WebhookSink:
    """POST each message as JSON to an external notification/email service."""

    def __init__(self, url: str, *, timeout: float = 5.0, client: httpx.Client | None = None) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def deliver(self, message: NotificationOutbox) -> None:
        resp = self._client.post(
            self.url,
            json={
                "id": message.id,
                "user_id": message.user_id,
                "kind": message.kind,
                "payload": message.payload,
            },
        )
        resp.raise_for_status()

    def close(self) -> None:
        self._client.close()


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
class NotificationDispatcher:
    """Drains the outbox into a sink, retrying failed deliveries.

    ``drain_once`` is synchronous and safe to call from tests or a cron job;
    ``start`` runs it every ``poll_seconds`` on the event loop via ``run_db``.
    """

    def __init__(
        self,
        engine: Engine,
        sink: NotificationSink,
        *,
        batch_size: int = 50,
        max_attempts: int = 5,
        poll_seconds: float = 10.0,
    ) -> None:
        self.engine = engine
        self.sink = sink
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.poll_seconds = poll_seconds
        self._task: asyncio.Task | None = None

    def _pending_batch(self) -> list[NotificationOutbox]:
        with Session(self.engine, expire_on_commit=False) as session:
            rows = session.scalars(
                select(NotificationOutbox)
                .where(NotificationOutbox.status == OutboxStatus.PENDING.value)
                .order_by(NotificationOutbox.id)
                .limit(self.batch_size)
            ).all()
            session.expunge_all()
            return list(rows)

    def _record(self, message_id: int, error: str | None) -> str:
        with get_session(self.engine) as session:
            row = session.get(NotificationOutbox, message_id)
            if row is None:
                return OutboxStatus.DEAD.value
            row.attempts += 1
            if error is None:
                row.status = OutboxStatus.SENT.value
                row.sent_at = datetime.now(UTC)
                row.last_error = None
            else:
                row.last_error = error[:1000]
                if row.attempts >= self.max_attempts:
                    row.status = OutboxStatus.DEAD.value
            return row.status

    def drain_once(self) -> dict[str, int]:
        """Deliver one batch.  Returns ``{"sent": N, "failed": M, "dead": K}``."""
        counts = {"sent": 0, "failed": 0, "dead": 0}
        for message in self._pending_batch():
            try:
                self.sink.deliver(message)
            except Exception as exc:
                logger.warning(
                    "Notification %d (%s) delivery failed: %s",
                    message.id, message.kind, exc,
                )
                status = self._record(message.id, repr(exc))
                if status == OutboxStatus.DEAD.value:
                    counts["dead"] += 1
                    logger.error(
                        "Notification %d dropped after %d attempts",
                        message.id, self.max_attempts,
                    )
                else:
                    counts["failed"] += 1
                continue
            self._record(message.id, None)
            counts["sent"] += 1
        return counts

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start the background drain task."""
        if self._task is not None:
            return

        async def _drain_loop() -> None:
            while True:
                try:
                    await run_db(self.drain_once)
                except Exception:
                    logger.exception("Notification outbox drain error")
                await asyncio.sleep(self.poll_seconds)

        loop = loop or asyncio.get_running_loop()
        self._task = loop.create_task(_drain_loop(), name="notification-outbox-drain")

    def stop(self) -> None:
        """Cancel the drain task."""
        if self._task:
            self._task.cancel()
            self._task = None
