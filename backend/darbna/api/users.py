"""Device push token registration."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from darbna.core.deps import get_current_user
from darbna.core.errors import ValidationError
from darbna.db.session import get_db
from darbna.models.user import User
from darbna.schemas.user import PushTokenResponse, PushTokenUpdate
from darbna.services.push_gateway import PushToken
from darbna.services.user_service import set_push_token

router = APIRouter(prefix="/users", tags=["users"])


@router.put("/me/push-token", response_model=PushTokenResponse)
def register_push_token(
    data: PushTokenUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Register the device that should receive SOS push notifications."""
    if not PushToken.validate(data.push_token):
        raise ValidationError("Not a valid Expo push token")
    user = set_push_token(db, current_user, str(PushToken(data.push_token)))
    return PushTokenResponse(user_id=user.id, push_token=user.push_token)


@router.delete("/me/push-token", response_model=PushTokenResponse)
def clear_push_token(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Stop push notifications to the current device (e.g. on logout)."""
    user = set_push_token(db, current_user, None)
    return PushTokenResponse(user_id=user.id, push_token=None)
