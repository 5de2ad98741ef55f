from __future__ import annotations
import logging
from typing import FrozenSet, Union

from sqlalchemy import false, select

from backoffice import get_db
from backoffice.constants.roles import is_admin_tier
from backoffice.errors import NotFoundError
from backoffice.models.authz import Branch, User, UserBranch

log = logging.getLogger(__name__)


class _AllBranches:
    """Scope sentinel: no branch filter applies. Distinct from an empty scope (see nothing)."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __contains__(self, code) -> bool:
        return True

    def __repr__(self):
        return 'ALL_BRANCHES'


ALL_BRANCHES = _AllBranches()
BranchScope = Union[_AllBranches, FrozenSet[str]]


def allowed_branches(user) -> BranchScope:
    """Branch codes ``user`` may see.

    Admin-tier roles get ALL_BRANCHES. Everyone else gets the codes from user_branches
    where the assignment, the branch and the user are all active; an empty frozenset
    means the user sees no branch-scoped data.
    """
    if is_admin_tier(user.role):
        return ALL_BRANCHES
    session = get_db()
    rows = session.execute(
        select(UserBranch.branch_code)
        .join(Branch, Branch.code == UserBranch.branch_code)
        .join(User, User.id == UserBranch.user_id)
        .where(
            UserBranch.user_id == user.id,
            UserBranch.is_active.is_(True),
            Branch.is_active.is_(True),
            User.is_active.is_(True),
        )
    ).scalars().all()
    return frozenset(rows)


def apply_branch_filter(query, column, scope: BranchScope):
    """Restrict ``query`` to ``scope``. Works for ORM Query and 2.0 Select objects."""
    if scope is ALL_BRANCHES:
        return query
    if not scope:
        return query.filter(false())
    return query.filter(column.in_(sorted(scope)))


def has_branch_access(user, branch_code: str) -> bool:
    return branch_code in allowed_branches(user)


def assign_branch(user_id: int, branch_code: str) -> UserBranch:
    """Create or re-activate a user ↔ branch assignment."""
    session = get_db()
    if session.get(User, user_id) is None:
        raise NotFoundError(f'user {user_id} not found')
    branch = session.execute(select(Branch).where(Branch.code == branch_code)).scalar_one_or_none()
    if branch is None:
        raise NotFoundError(f'branch {branch_code} not found')
    link = session.execute(
        select(UserBranch).where(UserBranch.user_id == user_id, UserBranch.branch_code == branch_code)
    ).scalar_one_or_none()
    if link is None:
        link = UserBranch(user_id=user_id, branch_code=branch_code, is_active=True)
        session.add(link)
    else:
        link.is_active = True
    session.commit()
    log.info('user %s assigned to branch %s', user_id, branch_code)
    return link


def revoke_branch(user_id: int, branch_code: str) -> bool:
    """Deactivate an assignment (rows are kept). Returns False when no assignment exists."""
    session = get_db()
    link = session.execute(
        select(UserBranch).where(UserBranch.user_id == user_id, UserBranch.branch_code == branch_code)
    ).scalar_one_or_none()
    if link is None:
        return False
    link.is_active = False
    session.commit()
    log.info('user %s removed from branch %s', user_id, branch_code)
    return True


def list_assignments(user_id: int):
    session = get_db()
    return session.execute(
        select(UserBranch).where(UserBranch.user_id == user_id).order_by(UserBranch.branch_code.asc())
    ).scalars().all()


def scope_json(scope: BranchScope):
    """'*' for the unrestricted sentinel, else the sorted branch codes."""
    return '*' if scope is ALL_BRANCHES else sorted(scope)
