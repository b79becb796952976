"""darbna SOS FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from darbna.api import health, sos, users, ws
from darbna.core.config import settings
from darbna.core.errors import register_error_handlers
from darbna.core.pubsub import PubSub
from darbna.db.session import SessionLocal
from darbna.services.expiration_sweeper import ExpirationSweeper
from darbna.services.notifications import NotificationFanout
from darbna.services.push_gateway import ExpoPushGateway

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pubsub = PubSub()
    fanout = NotificationFanout(pubsub, ExpoPushGateway(), SessionLocal)
    sweeper = ExpirationSweeper(SessionLocal, fanout)
    app.state.pubsub = pubsub
    app.state.fanout = fanout
    app.state.sweeper = sweeper
    if settings.sweeper_enabled:
        sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)

register_error_handlers(app)

app.include_router(health.router)
app.include_router(sos.router, prefix=settings.api_prefix)
app.include_router(users.router, prefix=settings.api_prefix)
app.include_router(ws.router)
