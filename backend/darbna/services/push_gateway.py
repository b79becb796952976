"""Expo push notification gateway.

Messages go to the Expo push HTTP API in batches of at most 100 (the
per-request limit of the service). Each batch is one POST; a failing batch
raises DeliveryError and leaves the other batches alone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from darbna.core.config import settings
from darbna.core.errors import DeliveryError
from darbna.core.sos_policies import PUSH_BATCH_LIMIT

logger = logging.getLogger(__name__)

_BRACKETED_TOKEN = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[.+\]$")
_UUID_TOKEN = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


@dataclass(frozen=True)
class PushToken:
    """A device token that passed the Expo token grammar."""

    value: str

    def __post_init__(self) -> None:
        if not self.validate(self.value):
            raise ValueError(f"Not a valid Expo push token: {self.value!r}")

    @staticmethod
    def validate(raw: object) -> bool:
        if not isinstance(raw, str):
            return False
        return bool(_BRACKETED_TOKEN.match(raw) or _UUID_TOKEN.match(raw))

    def __str__(self) -> str:
        return self.value


@dataclass
class PushMessage:
    to: PushToken
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    sound: str = "default"
    badge: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "to": self.to.value,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "sound": self.sound,
            "badge": self.badge,
        }


class ExpoPushGateway:
    """Async client for ``POST /--/api/v2/push/send``."""

    def __init__(
        self,
        url: str | None = None,
        access_token: str | None = None,
        batch_size: int | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url or settings.expo_push_url
        self.access_token = settings.expo_access_token if access_token is None else access_token
        self.batch_size = min(batch_size or settings.push_batch_size, PUSH_BATCH_LIMIT)
        self.timeout_seconds = timeout_seconds or settings.notification_timeout_seconds
        self._transport = transport

    def chunk(self, messages: list[PushMessage]) -> list[list[PushMessage]]:
        """Split messages into request-sized batches, preserving order."""
        return [messages[i : i + self.batch_size] for i in range(0, len(messages), self.batch_size)]

    async def send_batch(self, batch: list[PushMessage]) -> list[dict[str, Any]]:
        """Send one batch and return its push tickets.

        Raises DeliveryError on transport errors, timeouts, non-2xx responses
        and unparseable bodies. Per-message error tickets are only logged.
        """
        headers = {"Accept": "application/json", "Accept-Encoding": "gzip, deflate"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(self.url, json=[m.to_dict() for m in batch], headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as exc:
            raise DeliveryError("push", f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise DeliveryError("push", f"invalid response body: {exc}") from exc

        tickets = body.get("data", []) if isinstance(body, dict) else []
        for message, ticket in zip(batch, tickets):
            if ticket.get("status") == "error":
                logger.warning(
                    "Push ticket error for %s: %s (%s)",
                    message.to,
                    ticket.get("message"),
                    (ticket.get("details") or {}).get("error"),
                )
        logger.debug("Push batch of %s sent, %s ticket(s) received", len(batch), len(tickets))
        return tickets
