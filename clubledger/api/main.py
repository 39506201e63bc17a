"""
clubledger.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn clubledger.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from clubledger import __version__  # noqa: E402
from clubledger.api.deps import get_config, get_engine  # noqa: E402
from clubledger.api.routes.admin import router as admin_router  # noqa: E402
from clubledger.api.routes.credits import router as credits_router  # noqa: E402
from clubledger.api.routes.points import router as points_router  # noqa: E402
from clubledger.api.routes.rewards import router as rewards_router  # noqa: E402
from clubledger.api.routes.webhooks import router as webhooks_router  # noqa: E402
from clubledger.database.engine import init_db  # noqa: E402
from clubledger.services.notification_outbox import (  # noqa: E402
    InAppSink,
    NotificationDispatcher,
    WebhookSink,
)

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def build_dispatcher(engine, cfg) -> NotificationDispatcher:
    """Webhook delivery when a URL is configured, in-app rows otherwise."""
    if cfg.notification_webhook_url:
        sink = WebhookSink(cfg.notification_webhook_url)
    else:
        sink = InAppSink(engine)
    return NotificationDispatcher(
        engine,
        sink,
        batch_size=cfg.outbox_batch_size,
        max_attempts=cfg.outbox_max_attempts,
        poll_seconds=cfg.outbox_poll_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — schema, seed data and outbox drain."""
    engine = get_engine()
    cfg = get_config()
    init_db(engine)

    dispatcher = build_dispatcher(engine, cfg)
    dispatcher.start()
    logger.info("clubledger API started — engine ready (%s)", engine.url.database)
    yield
    dispatcher.stop()
    if isinstance(dispatcher.sink, WebhookSink):
        dispatcher.sink.close()
    logger.info("clubledger API shutting down")


app = FastAPI(
    title="Club Ledger API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(rewards_router, prefix="/api")
app.include_router(points_router, prefix="/api")
app.include_router(credits_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
