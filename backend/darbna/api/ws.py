"""WebSocket endpoint with JWT auth."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from darbna.core.pubsub import GLOBAL_TOPIC, user_topic
from darbna.core.security import decode_access_token
from darbna.db.session import SessionLocal
from darbna.services.user_service import get_user

logger = logging.getLogger(__name__)

router = APIRouter()


def _authenticate_ws(token: str) -> str | None:
    """Validate JWT and return user_id, or None."""
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        return None
    db = SessionLocal()
    try:
        user = get_user(db, payload["sub"])
        return user.id if user else None
    finally:
        db.close()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint. Client connects with ?token=<jwt>.
    Server pushes events: new-sos-alert, sos-alert-resolved (global),
    helper-arrived, helper-left, sos-alert-expired (own alerts only).
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return

    user_id = _authenticate_ws(token)
    if user_id is None:
        await websocket.close(code=4003, reason="Invalid or expired token")
        return

    pubsub = websocket.app.state.pubsub
    await websocket.accept()
    pubsub.subscribe(GLOBAL_TOPIC, websocket, user_id)
    pubsub.subscribe(user_topic(user_id), websocket, user_id)
    logger.info("WS connected: user=%s (global=%s)", user_id, pubsub.subscriber_count(GLOBAL_TOPIC))
    try:
        while True:
            # Keep connection alive; client can send pings
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"event":"pong"}')
    except WebSocketDisconnect:
        pass
    finally:
        pubsub.unsubscribe_all(websocket)
        logger.info("WS disconnected: user=%s", user_id)
