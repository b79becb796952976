"""Background sweeper that resolves SOS alerts past their expiry.

Runs every ``sweep_interval_seconds`` inside the API process. Each expired
alert is handled on its own: it is resolved through the lifecycle service
(source SWEEPER) and only the sweep that wins that transition notifies the
owner, so overlapping sweeps never double-notify. A failure on one alert
is logged and the sweep moves on. Notifications are dispatched
concurrently once every expired alert has been resolved.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from darbna.core.clock import utcnow
from darbna.core.config import settings
from darbna.core.errors import ConflictError, NotFoundError
from darbna.services import alert_repository as repo
from darbna.services.notifications import Notification, NotificationFanout
from darbna.services.sos_service import ResolveSource, resolve_alert

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    found: int = 0
    resolved: int = 0
    skipped: int = 0
    failed: int = 0


class ExpirationSweeper:
    """Periodic task started and stopped by the app lifespan."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        fanout: NotificationFanout,
        interval_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._fanout = fanout
        self.interval_seconds = interval_seconds or settings.sweep_interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="sos-expiration-sweeper")
        logger.info("Alert expiration sweeper started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Alert expiration sweeper stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001 - keep the schedule alive
                logger.exception("Alert expiration sweep failed")
            await asyncio.sleep(self.interval_seconds)

    async def sweep_once(self, now: datetime | None = None) -> SweepReport:
        """Resolve every ACTIVE alert with ``expire_at <= now``."""
        now = now or utcnow()
        report = SweepReport()
        expired = await asyncio.to_thread(self._find_expired, now)
        report.found = len(expired)

        pending: list[list[Notification]] = []
        for alert_id, owner_id in expired:
            try:
                notifications = await asyncio.to_thread(self._resolve, alert_id, owner_id, now)
            except (ConflictError, NotFoundError) as exc:
                # Another sweep or the owner got there first
                report.skipped += 1
                logger.info("Skipping expired alert %s: %s", alert_id, exc.message)
                continue
            except Exception:  # noqa: BLE001 - one bad alert must not abort the sweep
                report.failed += 1
                logger.exception("Failed to resolve expired alert %s", alert_id)
                continue

            report.resolved += 1
            pending.append(notifications)

        # Every transition is committed before any notification goes out
        results = await asyncio.gather(
            *(self._fanout.dispatch(notifications) for notifications in pending),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error("Expiry fan-out failed", exc_info=result)

        if report.found:
            logger.info(
                "Sweep done: found=%s resolved=%s skipped=%s failed=%s",
                report.found,
                report.resolved,
                report.skipped,
                report.failed,
            )
        return report

    def _find_expired(self, now: datetime) -> list[tuple[str, str]]:
        with self._session_factory() as db:
            return [(a.id, a.owner_id) for a in repo.list_expired_active(db, now)]

    def _resolve(self, alert_id: str, owner_id: str, now: datetime) -> list[Notification]:
        with self._session_factory() as db:
            outcome = resolve_alert(db, alert_id, owner_id, source=ResolveSource.SWEEPER, now=now)
            return outcome.notifications
