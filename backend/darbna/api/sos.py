"""SOS alerts API."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from darbna.core.deps import get_current_user, get_fanout, get_optional_user
from darbna.core.errors import ValidationError
from darbna.core.sos_policies import ACTIVE_ALERTS_LIMIT
from darbna.db.session import get_db
from darbna.models.user import User
from darbna.schemas.sos import (
    HelpOfferResponse,
    MessageResponse,
    NearbySosAlertResponse,
    SosAlertResponse,
    SosCreate,
    alert_response,
)
from darbna.services import sos_service
from darbna.services.notifications import NotificationFanout

router = APIRouter(prefix="/sos", tags=["sos"])


def _schedule(background_tasks: BackgroundTasks, fanout: NotificationFanout, outcome: sos_service.Outcome) -> None:
    """Fan out after the response has been sent."""
    if outcome.notifications:
        background_tasks.add_task(fanout.dispatch, outcome.notifications)


@router.post("/create", response_model=SosAlertResponse, status_code=status.HTTP_201_CREATED)
def create_alert(
    data: SosCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    fanout: NotificationFanout = Depends(get_fanout),
):
    """Raise an SOS at the given location. One alert per user every 30 minutes."""
    outcome = sos_service.create_alert(db, current_user.id, data.longitude, data.latitude)
    _schedule(background_tasks, fanout, outcome)
    return alert_response(outcome.alert, outcome.owner_username)


@router.get("/active", response_model=list[NearbySosAlertResponse])
def list_active(
    # Parsed by the lifecycle service so malformed coordinates are a 400
    latitude: str | None = Query(default=None),
    longitude: str | None = Query(default=None),
    limit: int = Query(default=ACTIVE_ALERTS_LIMIT, ge=1, le=ACTIVE_ALERTS_LIMIT),
    radius_km: float | None = Query(default=None, gt=0),
    db: Session = Depends(get_db),
    current_user: User | None = Depends(get_optional_user),
):
    """Active alerts around the caller, newest first then nearest first.

    Public; when a valid token is sent the caller's own alerts are excluded.
    """
    if latitude is None or longitude is None:
        raise ValidationError("Current location is required")
    nearby = sos_service.list_active_near(
        db,
        longitude,
        latitude,
        exclude_user_id=current_user.id if current_user else None,
        limit=limit,
        radius_km=radius_km,
    )
    return [
        NearbySosAlertResponse(
            **alert_response(n.alert, n.owner_username).model_dump(),
            distance=round(n.distance, 2),
        )
        for n in nearby
    ]


@router.get("/{alert_id}", response_model=SosAlertResponse)
def get_alert(
    alert_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Get one alert with its owner and helpers."""
    outcome = sos_service.get_alert(db, alert_id)
    return alert_response(outcome.alert, outcome.owner_username)


@router.post("/{alert_id}/help", response_model=HelpOfferResponse)
def offer_help(
    alert_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    fanout: NotificationFanout = Depends(get_fanout),
):
    """Join an active alert as helper. Returns the owner's phone number."""
    outcome = sos_service.offer_help(db, alert_id, current_user.id)
    _schedule(background_tasks, fanout, outcome)
    return HelpOfferResponse(message="Help offer successful", phone_number=outcome.phone_number or "")


@router.post("/{alert_id}/cancel-help", response_model=MessageResponse)
def cancel_help(
    alert_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    fanout: NotificationFanout = Depends(get_fanout),
):
    """Stop helping with an alert."""
    outcome = sos_service.cancel_help(db, alert_id, current_user.id)
    _schedule(background_tasks, fanout, outcome)
    return MessageResponse(message="You are no longer helping")


@router.put("/{alert_id}/resolve", response_model=SosAlertResponse)
def resolve_alert(
    alert_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    fanout: NotificationFanout = Depends(get_fanout),
):
    """Resolve an alert. Only its owner can."""
    outcome = sos_service.resolve_alert(db, alert_id, current_user.id)
    _schedule(background_tasks, fanout, outcome)
    return alert_response(outcome.alert, outcome.owner_username)
