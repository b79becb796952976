"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from darbna.core.security import decode_access_token
from darbna.db.session import get_db
from darbna.models.user import User
from darbna.services.notifications import NotificationFanout
from darbna.services.user_service import get_user

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> User:
    """Require authenticated user. Raises 401 if not authenticated."""
    if not credentials:
        raise _unauthorized("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise _unauthorized("Invalid or expired token")
    # sub is the user id for our tokens
    user = get_user(db, payload["sub"])
    if not user:
        raise _unauthorized("User not found")
    return user


def get_optional_user(
    db: Annotated[Session, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> User | None:
    """Authenticated user if a valid bearer token was sent, else None."""
    if not credentials:
        return None
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        return None
    return get_user(db, payload["sub"])


def get_fanout(request: Request) -> NotificationFanout:
    return request.app.state.fanout
