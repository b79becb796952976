"""Notification fan-out for SOS lifecycle events.

Each lifecycle event produces one realtime emission (pub/sub, best effort,
online clients only) and one push batch set (Expo, reaches offline devices).
The two channels run concurrently and independently. Every failure is
logged and swallowed here: by the time a notification is dispatched the
state change it reports has already been committed.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from darbna.core.config import settings
from darbna.core.errors import DeliveryError
from darbna.core.pubsub import GLOBAL_TOPIC, PubSub, user_topic
from darbna.services import user_service
from darbna.services.push_gateway import ExpoPushGateway, PushMessage, PushToken

logger = logging.getLogger(__name__)


class NotificationEvent(str, enum.Enum):
    """Lifecycle events; values are the realtime event names."""

    ALERT_CREATED = "new-sos-alert"
    HELPER_ARRIVED = "helper-arrived"
    HELPER_LEFT = "helper-left"
    ALERT_RESOLVED = "sos-alert-resolved"
    ALERT_EXPIRED = "sos-alert-expired"


class Target(str, enum.Enum):
    """Who receives a notification, relative to the alert owner."""

    ALL_EXCEPT_OWNER = "all_except_owner"
    OWNER_ONLY = "owner_only"
    BROADCAST_ALL = "broadcast_all"


@dataclass(frozen=True)
class Notification:
    event: NotificationEvent
    target: Target
    alert_id: str
    owner_id: str
    # Realtime payload
    data: dict[str, Any] = field(default_factory=dict)
    # Username shown in the push body (alert owner or helper)
    actor_name: str = "Someone"


PUSH_TEMPLATES: dict[NotificationEvent, tuple[str, str]] = {
    NotificationEvent.ALERT_CREATED: ("New SOS Alert", "{actor} has sent an emergency alert!"),
    NotificationEvent.HELPER_ARRIVED: ("Help is on the way!", "{actor} is offering to help you"),
    NotificationEvent.HELPER_LEFT: ("Helper update", "{actor} is no longer able to help"),
    NotificationEvent.ALERT_RESOLVED: ("SOS Alert Resolved", "{actor}'s emergency alert has been resolved"),
    NotificationEvent.ALERT_EXPIRED: ("SOS Alert Expired", "Your SOS alert has expired after {ttl_hours} hours."),
}


def build_push_message(notification: Notification, token: PushToken) -> PushMessage:
    title, body = PUSH_TEMPLATES[notification.event]
    return PushMessage(
        to=token,
        title=title,
        body=body.format(actor=notification.actor_name, ttl_hours=settings.sos_ttl_hours),
        data={"alertId": notification.alert_id, "event": notification.event.value},
    )


@dataclass
class FanoutReport:
    """Outcome of one notification, for logs and tests."""

    event: NotificationEvent
    realtime_delivered: int = 0
    realtime_failed: bool = False
    push_messages: int = 0
    push_skipped_tokens: int = 0
    push_failed_batches: int = 0


class NotificationFanout:
    """Dispatches notifications to the realtime and push channels."""

    def __init__(
        self,
        pubsub: PubSub,
        push_gateway: ExpoPushGateway,
        session_factory: Callable[[], Session],
        timeout_seconds: float | None = None,
    ) -> None:
        self._pubsub = pubsub
        self._push = push_gateway
        self._session_factory = session_factory
        self._timeout = timeout_seconds or settings.notification_timeout_seconds

    async def dispatch(self, notifications: Iterable[Notification]) -> list[FanoutReport]:
        """Notify each entry in turn. Never raises."""
        return [await self.notify(n) for n in notifications]

    async def notify(self, notification: Notification) -> FanoutReport:
        report = FanoutReport(event=notification.event)
        await asyncio.gather(
            self._emit_realtime(notification, report),
            self._send_push(notification, report),
        )
        logger.info(
            "Fan-out %s alert=%s: realtime=%s push=%s skipped=%s failed_batches=%s",
            notification.event.value,
            notification.alert_id,
            report.realtime_delivered,
            report.push_messages,
            report.push_skipped_tokens,
            report.push_failed_batches,
        )
        return report

    async def _emit_realtime(self, notification: Notification, report: FanoutReport) -> None:
        if notification.target is Target.OWNER_ONLY:
            topic, exclude = user_topic(notification.owner_id), None
        elif notification.target is Target.ALL_EXCEPT_OWNER:
            topic, exclude = GLOBAL_TOPIC, {notification.owner_id}
        else:
            topic, exclude = GLOBAL_TOPIC, None

        # Send timeouts are applied per connection by the pub/sub
        try:
            report.realtime_delivered = await self._pubsub.publish(
                topic, notification.event.value, notification.data, exclude
            )
        except Exception:  # noqa: BLE001 - delivery failures never reach the caller
            report.realtime_failed = True
            logger.warning("Realtime emit of %s failed on topic %s", notification.event.value, topic, exc_info=True)

    async def _send_push(self, notification: Notification, report: FanoutReport) -> None:
        try:
            rows = await asyncio.to_thread(self._load_tokens, notification)
        except Exception:  # noqa: BLE001 - delivery failures never reach the caller
            logger.warning("Push token lookup for %s failed", notification.event.value, exc_info=True)
            return

        messages: list[PushMessage] = []
        for user_id, raw_token in rows:
            if not PushToken.validate(raw_token):
                report.push_skipped_tokens += 1
                logger.warning("Push token %r of user %s is not a valid Expo push token", raw_token, user_id)
                continue
            messages.append(build_push_message(notification, PushToken(raw_token)))

        report.push_messages = len(messages)
        if not messages:
            logger.debug("No push recipients for %s alert=%s", notification.event.value, notification.alert_id)
            return

        batches = self._push.chunk(messages)
        results = await asyncio.gather(*(self._send_batch(batch) for batch in batches))
        report.push_failed_batches = sum(1 for ok in results if not ok)

    async def _send_batch(self, batch: list[PushMessage]) -> bool:
        try:
            await asyncio.wait_for(self._push.send_batch(batch), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Push batch of %s timed out", len(batch))
            return False
        except DeliveryError as exc:
            logger.warning("Push batch of %s failed: %s", len(batch), exc.message)
            return False
        except Exception:  # noqa: BLE001 - one bad batch must not affect the others
            logger.warning("Push batch of %s failed", len(batch), exc_info=True)
            return False
        return True

    def _load_tokens(self, notification: Notification) -> list[tuple[str, str]]:
        with self._session_factory() as db:
            if notification.target is Target.OWNER_ONLY:
                return user_service.list_push_tokens(db, only_user_id=notification.owner_id)
            if notification.target is Target.ALL_EXCEPT_OWNER:
                return user_service.list_push_tokens(db, exclude_user_id=notification.owner_id)
            return user_service.list_push_tokens(db)
