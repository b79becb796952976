"""SOS alert schemas.

Responses keep the wire names mobile clients already consume
(``_id``, ``createdAt``, ``phoneNumber``...).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from darbna.core.clock import as_utc
from darbna.models.sos_alert import SosAlert


class SosCreate(BaseModel):
    # Parsed and range-checked by the lifecycle service so bad coordinates are a 400
    latitude: Any = None
    longitude: Any = None


class GeoPoint(BaseModel):
    type: str = "Point"
    coordinates: list[float] = Field(..., description="[longitude, latitude]")


class AlertOwner(BaseModel):
    id: str = Field(..., serialization_alias="_id")
    username: str


class SosAlertResponse(BaseModel):
    id: str = Field(..., serialization_alias="_id")
    user: AlertOwner | str
    location: GeoPoint
    status: str
    helpers: list[str] = []
    resolved_at: datetime | None = Field(default=None, serialization_alias="resolvedAt")
    expire_at: datetime = Field(..., serialization_alias="expireAt")
    created_at: datetime = Field(..., serialization_alias="createdAt")


class NearbySosAlertResponse(SosAlertResponse):
    distance: float = Field(..., description="Meters from the query point")


class HelpOfferResponse(BaseModel):
    message: str
    phone_number: str = Field(..., serialization_alias="phoneNumber")


class MessageResponse(BaseModel):
    message: str


def alert_response(alert: SosAlert, owner_username: str | None = None) -> SosAlertResponse:
    """Serialize an alert; the owner is populated when its username is known."""
    user: AlertOwner | str = alert.owner_id
    if owner_username is not None:
        user = AlertOwner(id=alert.owner_id, username=owner_username)
    return SosAlertResponse(
        id=alert.id,
        user=user,
        location=GeoPoint(coordinates=[alert.longitude, alert.latitude]),
        status=alert.status,
        helpers=alert.helper_ids,
        resolved_at=as_utc(alert.resolved_at) if alert.resolved_at else None,
        expire_at=as_utc(alert.expire_at),
        created_at=as_utc(alert.created_at),
    )
