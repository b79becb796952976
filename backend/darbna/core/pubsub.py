"""Topic-addressed pub/sub over WebSocket connections for realtime events."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from darbna.core.config import settings

logger = logging.getLogger(__name__)

# Topic every connected client is subscribed to
GLOBAL_TOPIC = "sos"


def user_topic(user_id: str) -> str:
    """Private topic of a single user."""
    return f"user:{user_id}"


class Connection(Protocol):
    async def send_text(self, data: str) -> None: ...


class PubSub:
    """Routes published events to the connections subscribed to a topic.

    Each subscription remembers the user behind the connection so a publish
    can skip specific users (e.g. the owner of a new alert).
    """

    def __init__(self, send_timeout: float | None = None) -> None:
        # topic -> {connection: user_id}
        self._topics: dict[str, dict[Connection, str]] = {}
        self.send_timeout = send_timeout or settings.notification_timeout_seconds

    def subscribe(self, topic: str, connection: Connection, user_id: str) -> None:
        self._topics.setdefault(topic, {})[connection] = user_id

    def unsubscribe(self, topic: str, connection: Connection) -> None:
        subscribers = self._topics.get(topic)
        if subscribers is None:
            return
        subscribers.pop(connection, None)
        if not subscribers:
            del self._topics[topic]

    def unsubscribe_all(self, connection: Connection) -> None:
        for topic in list(self._topics):
            self.unsubscribe(topic, connection)

    async def publish(
        self,
        topic: str,
        event: str,
        data: Any,
        exclude_users: set[str] | None = None,
    ) -> int:
        """Send ``event`` to every subscriber of ``topic``. Returns the delivered count.

        Delivery is best effort and concurrent across connections. A
        connection that fails to send, or does not accept the event within
        ``send_timeout``, is dropped from all topics; the event is not retried.
        """
        payload = json.dumps({"event": event, "data": data}, default=str)
        targets = [
            connection
            for connection, user_id in self._topics.get(topic, {}).items()
            if not (exclude_users and user_id in exclude_users)
        ]
        results = await asyncio.gather(*(self._send(connection, payload) for connection in targets))

        dead = [connection for connection, ok in zip(targets, results) if not ok]
        for connection in dead:
            self.unsubscribe_all(connection)
        if dead:
            logger.info("Dropped %s dead or stalled connection(s) from topic %s", len(dead), topic)
        return len(targets) - len(dead)

    async def _send(self, connection: Connection, payload: str) -> bool:
        try:
            await asyncio.wait_for(connection.send_text(payload), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            return False
        except Exception:  # noqa: BLE001 - a broken socket must not stop the fan-out
            return False
        return True

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, {}))
