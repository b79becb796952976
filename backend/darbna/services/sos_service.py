"""SOS alert lifecycle: create, list nearby, offer/cancel help, resolve.

An alert is ACTIVE from creation until it is RESOLVED, either by its owner
or by the expiration sweeper. RESOLVED is terminal. Every operation checks
its preconditions for a precise error, then performs a conditional write in
the repository so that concurrent requests cannot break the invariants.

Operations return an ``Outcome`` carrying the notifications to fan out. The
caller dispatches them after the transaction has committed and without
making the client wait.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from darbna.core.clock import as_utc, utcnow
from darbna.core.errors import AuthorizationError, ConflictError, NotFoundError
from darbna.core.sos_policies import ACTIVE_ALERTS_LIMIT
from darbna.models.sos_alert import SosAlert
from darbna.schemas.sos import alert_response
from darbna.services import alert_repository as repo
from darbna.services import user_service
from darbna.services.geo_service import validate_point
from darbna.services.notifications import Notification, NotificationEvent, Target
from darbna.services.rate_limiter import check_and_record

logger = logging.getLogger(__name__)


class ResolveSource(str, enum.Enum):
    USER = "USER"
    SWEEPER = "SWEEPER"


@dataclass
class Outcome:
    alert: SosAlert
    owner_username: str | None = None
    notifications: list[Notification] = field(default_factory=list)
    # Owner's phone, revealed to an accepted helper only
    phone_number: str | None = None


@dataclass
class NearbyAlert:
    alert: SosAlert
    distance: float
    owner_username: str | None


def _get_alert_or_404(db: Session, alert_id: str) -> SosAlert:
    alert = repo.get_alert(db, alert_id)
    if not alert:
        raise NotFoundError("Alert")
    return alert


def _username(db: Session, user_id: str) -> str | None:
    user = user_service.get_user(db, user_id)
    return user.username if user else None


def create_alert(
    db: Session,
    owner_id: str,
    longitude: Any,
    latitude: Any,
    now: datetime | None = None,
) -> Outcome:
    """Raise a new SOS at (longitude, latitude).

    The cooldown claim and the alert insert commit together; if either fails
    neither is persisted.
    """
    now = now or utcnow()
    lng, lat = validate_point(longitude, latitude)
    owner = user_service.get_user(db, owner_id)
    if not owner:
        raise NotFoundError("User")

    try:
        check_and_record(db, owner_id, now)
        alert = repo.insert_alert(db, owner_id, lng, lat, now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("SOS created: alert=%s owner=%s at (%s, %s)", alert.id, owner_id, lng, lat)
    wire = alert_response(alert, owner.username).model_dump(mode="json", by_alias=True)
    notification = Notification(
        event=NotificationEvent.ALERT_CREATED,
        target=Target.ALL_EXCEPT_OWNER,
        alert_id=alert.id,
        owner_id=owner_id,
        data=wire,
        actor_name=owner.username,
    )
    return Outcome(alert=alert, owner_username=owner.username, notifications=[notification])


def list_active_near(
    db: Session,
    longitude: Any,
    latitude: Any,
    exclude_user_id: str | None = None,
    limit: int = ACTIVE_ALERTS_LIMIT,
    radius_km: float | None = None,
) -> list[NearbyAlert]:
    """ACTIVE alerts around a point, newest first then nearest first.

    Alerts owned by ``exclude_user_id`` (the requester) are left out.
    """
    lng, lat = validate_point(longitude, latitude)
    limit = max(1, min(limit, ACTIVE_ALERTS_LIMIT))
    radius_m = radius_km * 1000 if radius_km is not None else None
    found = repo.list_active_near(db, lng, lat, exclude_owner_id=exclude_user_id, limit=limit, radius_m=radius_m)
    usernames = user_service.get_usernames(db, [f.alert.owner_id for f in found])
    return [
        NearbyAlert(alert=f.alert, distance=f.distance, owner_username=usernames.get(f.alert.owner_id))
        for f in found
    ]


def get_alert(db: Session, alert_id: str) -> Outcome:
    alert = _get_alert_or_404(db, alert_id)
    return Outcome(alert=alert, owner_username=_username(db, alert.owner_id))


def _helper_conflict(db: Session, alert_id: str, helper_id: str, absent: bool) -> ConflictError | NotFoundError:
    """Explain why a guarded helper write matched nothing (lost a race)."""
    alert = repo.get_alert(db, alert_id)
    if not alert:
        return NotFoundError("Alert")
    if not alert.is_active:
        return ConflictError("This SOS alert is no longer active")
    if absent:
        return ConflictError("You were not helping")
    return ConflictError("You are already helping")


def offer_help(db: Session, alert_id: str, helper_id: str, now: datetime | None = None) -> Outcome:
    """Add ``helper_id`` to the alert's helpers and reveal the owner's phone to them."""
    now = now or utcnow()
    alert = _get_alert_or_404(db, alert_id)
    if alert.owner_id == helper_id:
        raise ConflictError("Cannot help with your own alert")
    if not alert.is_active:
        raise ConflictError("This SOS alert is no longer active")
    if repo.is_helper(db, alert_id, helper_id):
        raise ConflictError("You are already helping")

    if not repo.add_helper(db, alert_id, helper_id, now):
        db.rollback()
        raise _helper_conflict(db, alert_id, helper_id, absent=False)
    db.commit()
    db.expire(alert)

    owner = user_service.get_user(db, alert.owner_id)
    helper_name = _username(db, helper_id) or "Someone"
    logger.info("Helper %s joined alert %s", helper_id, alert_id)
    notification = Notification(
        event=NotificationEvent.HELPER_ARRIVED,
        target=Target.OWNER_ONLY,
        alert_id=alert_id,
        owner_id=alert.owner_id,
        data={"alertId": alert_id, "helperId": helper_id, "helperUsername": helper_name},
        actor_name=helper_name,
    )
    return Outcome(
        alert=alert,
        owner_username=owner.username if owner else None,
        notifications=[notification],
        phone_number=owner.phone if owner else "",
    )


def cancel_help(db: Session, alert_id: str, helper_id: str) -> Outcome:
    """Remove ``helper_id`` from the alert's helpers."""
    alert = _get_alert_or_404(db, alert_id)
    if not repo.is_helper(db, alert_id, helper_id):
        raise ConflictError("You were not helping")
    if not alert.is_active:
        raise ConflictError("This SOS alert is no longer active")

    if not repo.remove_helper(db, alert_id, helper_id):
        db.rollback()
        raise _helper_conflict(db, alert_id, helper_id, absent=True)
    db.commit()
    db.expire(alert)

    helper_name = _username(db, helper_id) or "Someone"
    logger.info("Helper %s left alert %s", helper_id, alert_id)
    notification = Notification(
        event=NotificationEvent.HELPER_LEFT,
        target=Target.OWNER_ONLY,
        alert_id=alert_id,
        owner_id=alert.owner_id,
        data={"alertId": alert_id, "helperId": helper_id, "helperUsername": helper_name},
        actor_name=helper_name,
    )
    return Outcome(alert=alert, notifications=[notification])


def resolve_alert(
    db: Session,
    alert_id: str,
    requester_id: str,
    source: ResolveSource = ResolveSource.USER,
    now: datetime | None = None,
) -> Outcome:
    """ACTIVE -> RESOLVED.

    Only the owner may resolve manually; the sweeper bypasses the ownership
    check. Resolving an already RESOLVED alert raises ConflictError and
    leaves ``resolved_at`` untouched.
    """
    now = now or utcnow()
    alert = _get_alert_or_404(db, alert_id)
    if source is ResolveSource.USER and alert.owner_id != requester_id:
        raise AuthorizationError("Only the user who raised this SOS can resolve it")
    if not alert.is_active:
        raise ConflictError("SOS alert is already resolved")

    if not repo.mark_resolved(db, alert_id, now):
        db.rollback()
        raise ConflictError("SOS alert is already resolved")
    db.commit()
    db.expire(alert)

    owner_name = _username(db, alert.owner_id)
    resolved_at = as_utc(alert.resolved_at).isoformat() if alert.resolved_at else now.isoformat()
    logger.info("SOS resolved: alert=%s source=%s", alert_id, source.value)
    notifications = [
        Notification(
            event=NotificationEvent.ALERT_RESOLVED,
            target=Target.BROADCAST_ALL,
            alert_id=alert_id,
            owner_id=alert.owner_id,
            data={
                "alertId": alert_id,
                "status": alert.status,
                "resolvedAt": resolved_at,
                "reason": "expired" if source is ResolveSource.SWEEPER else "resolved",
            },
            actor_name=owner_name or "Someone",
        )
    ]
    if source is ResolveSource.SWEEPER:
        notifications.append(
            Notification(
                event=NotificationEvent.ALERT_EXPIRED,
                target=Target.OWNER_ONLY,
                alert_id=alert_id,
                owner_id=alert.owner_id,
                data={"alertId": alert_id},
                actor_name=owner_name or "Someone",
            )
        )
    return Outcome(alert=alert, owner_username=owner_name, notifications=notifications)
