"""Persistence and queries for SOS alerts.

Every mutation of an existing alert is a single conditional statement
guarded by the alert's current state (status, helper membership); the
database serializes concurrent writers on the alert row. Functions here
never commit, the lifecycle service owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import DateTime, String, delete, exists, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from darbna.core.clock import as_utc
from darbna.core.sos_policies import ALERT_TTL
from darbna.models.sos_alert import AlertStatus, SosAlert
from darbna.models.sos_helper import SosHelper
from darbna.services.geo_service import haversine_m

ACTIVE = AlertStatus.ACTIVE.value
RESOLVED = AlertStatus.RESOLVED.value


@dataclass
class AlertWithDistance:
    alert: SosAlert
    distance: float  # meters


def insert_alert(db: Session, owner_id: str, longitude: float, latitude: float, now: datetime) -> SosAlert:
    """Stage a new ACTIVE alert expiring ``ALERT_TTL`` after ``now``."""
    alert = SosAlert(
        owner_id=owner_id,
        longitude=longitude,
        latitude=latitude,
        status=ACTIVE,
        created_at=now,
        expire_at=now + ALERT_TTL,
    )
    db.add(alert)
    db.flush()
    return alert


def get_alert(db: Session, alert_id: str) -> SosAlert | None:
    return db.get(SosAlert, alert_id, populate_existing=True)


def list_active_near(
    db: Session,
    longitude: float,
    latitude: float,
    exclude_owner_id: str | None = None,
    limit: int = 50,
    radius_m: float | None = None,
) -> list[AlertWithDistance]:
    """ACTIVE alerts annotated with their distance from the given point.

    Ordered newest first, then nearest first: a fresh emergency further away
    outranks an older one next door.
    """
    stmt = select(SosAlert).where(SosAlert.status == ACTIVE)
    if exclude_owner_id is not None:
        stmt = stmt.where(SosAlert.owner_id != exclude_owner_id)

    found = []
    for alert in db.execute(stmt).scalars():
        distance = haversine_m(longitude, latitude, alert.longitude, alert.latitude)
        if radius_m is not None and distance > radius_m:
            continue
        found.append(AlertWithDistance(alert=alert, distance=distance))

    # created_at desc, distance asc
    found.sort(key=lambda a: a.distance)
    found.sort(key=lambda a: as_utc(a.alert.created_at), reverse=True)
    return found[:limit]


def list_expired_active(db: Session, now: datetime) -> list[SosAlert]:
    """ACTIVE alerts whose ``expire_at`` is at or before ``now``, oldest first."""
    result = db.execute(
        select(SosAlert)
        .where(SosAlert.status == ACTIVE, SosAlert.expire_at <= now)
        .order_by(SosAlert.expire_at)
    )
    return list(result.scalars().all())


def add_helper(db: Session, alert_id: str, helper_id: str, now: datetime) -> bool:
    """Add ``helper_id`` to the helpers set if absent. Returns False if nothing changed.

    The insert only selects a row when the alert is ACTIVE, not owned by the
    helper and the helper is not already a member. The unique constraint on
    (alert_id, helper_id) backs the membership check under races; losing that
    race rolls back the current transaction.
    """
    already_helping = exists().where(SosHelper.alert_id == alert_id, SosHelper.helper_id == helper_id)
    source = select(
        SosAlert.id,
        literal(helper_id, String(36)),
        literal(now, DateTime(timezone=True)),
    ).where(
        SosAlert.id == alert_id,
        SosAlert.status == ACTIVE,
        SosAlert.owner_id != helper_id,
        ~already_helping,
    )
    try:
        result = db.execute(insert(SosHelper).from_select(["alert_id", "helper_id", "joined_at"], source))
    except IntegrityError:
        db.rollback()
        return False
    return result.rowcount == 1


def remove_helper(db: Session, alert_id: str, helper_id: str) -> bool:
    """Remove ``helper_id`` from the helpers set if present and the alert is ACTIVE."""
    alert_is_active = exists().where(SosAlert.id == alert_id, SosAlert.status == ACTIVE)
    result = db.execute(
        delete(SosHelper)
        .where(SosHelper.alert_id == alert_id, SosHelper.helper_id == helper_id)
        .where(alert_is_active)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_resolved(db: Session, alert_id: str, now: datetime) -> bool:
    """ACTIVE -> RESOLVED. Returns False if the alert was not ACTIVE (or unknown)."""
    result = db.execute(
        update(SosAlert)
        .where(SosAlert.id == alert_id, SosAlert.status == ACTIVE)
        .values(status=RESOLVED, resolved_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def is_helper(db: Session, alert_id: str, helper_id: str) -> bool:
    stmt = select(SosHelper.id).where(SosHelper.alert_id == alert_id, SosHelper.helper_id == helper_id)
    return db.execute(stmt).first() is not None
