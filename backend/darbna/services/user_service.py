"""User lookups for the SOS subsystem (join-on-read for alert owners and helpers)."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from darbna.models.user import User


def get_user(db: Session, user_id: str) -> User | None:
    """Get user by id."""
    return db.get(User, user_id)


def get_usernames(db: Session, user_ids: list[str]) -> dict[str, str]:
    """Map user id -> username for the given ids (unknown ids are omitted)."""
    if not user_ids:
        return {}
    rows = db.execute(select(User.id, User.username).where(User.id.in_(set(user_ids)))).all()
    return {uid: username for uid, username in rows}


def list_push_tokens(
    db: Session,
    only_user_id: str | None = None,
    exclude_user_id: str | None = None,
) -> list[tuple[str, str]]:
    """Return ``(user_id, raw_push_token)`` for users that registered a token.

    Tokens are returned as stored; grammar validation happens at the push
    boundary so that bad rows are logged and skipped there.
    """
    stmt = select(User.id, User.push_token).where(User.push_token.is_not(None), User.push_token != "")
    if only_user_id is not None:
        stmt = stmt.where(User.id == only_user_id)
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    return [(uid, token) for uid, token in db.execute(stmt.order_by(User.id)).all()]


def set_push_token(db: Session, user: User, token: str | None) -> User:
    """Store (or clear, with ``None``) the user's device push token."""
    user.push_token = token
    db.commit()
    db.refresh(user)
    return user
