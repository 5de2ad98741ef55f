from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from flask_jwt_extended import get_jwt, get_jwt_identity
from sqlalchemy import select

from backoffice import get_db
from backoffice.constants.roles import normalize_role
from backoffice.errors import PermissionDeniedError
from backoffice.models.authz import User


@dataclass(frozen=True)
class Actor:
    id: Optional[int]
    name: str = 'Unknown User'


def identity_claims(user: User) -> dict:
    """Claims embedded in the access token. The role here is a display/gating hint only;
    sensitive checks re-read the role from the users table."""
    return {
        'role': normalize_role(user.role),
        'name': user.name,
        'branch': user.home_branch,
    }


def current_user_id() -> Optional[int]:
    ident = get_jwt_identity()
    return int(ident) if ident is not None else None


def current_role() -> str:
    return normalize_role(get_jwt().get('role'))


def current_actor() -> Actor:
    return Actor(id=current_user_id(), name=get_jwt().get('name') or 'Unknown User')


def load_current_user() -> User:
    """Fetch the caller's user row; inactive or deleted accounts are refused."""
    user_id = current_user_id()
    session = get_db()
    user = session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    ).scalar_one_or_none() if user_id is not None else None
    if user is None or not user.is_active:
        raise PermissionDeniedError('account inactive or unknown')
    return user
