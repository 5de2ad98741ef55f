"""Role → page → column permission lookups with a per-role time-boxed cache.

Two stored sources are consulted:

* ``user_permissions`` (PagePermission): may the role open a page, and which
  columns it may see (``'*'`` = every column).
* ``crud_permissions`` (CrudPermission): may the role create / edit / delete on
  a page; rows carrying a ``user_id`` override the role row for that user.

Absence of a row is a deny, with two universal allows: the dashboard page and
the super admin role. Rows for a role are loaded in one query and cached for
``ttl_seconds`` (keyed by role only); any write clears the whole cache.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import select

from backoffice import get_db
from backoffice.constants.roles import (
    CRUD_ACTIONS, PAGE_DASHBOARD, ROLE_SUPER_ADMIN, normalize_role,
)
from backoffice.errors import ValidationError
from backoffice.models.authz import CrudPermission, PagePermission

log = logging.getLogger(__name__)

WILDCARD = '*'
ALWAYS_ALLOWED_PAGES = frozenset({PAGE_DASHBOARD, '', '/'})


@dataclass(frozen=True)
class PageGrant:
    can_access: bool
    columns: Tuple[str, ...]

    @property
    def all_columns(self) -> bool:
        return WILDCARD in self.columns


@dataclass(frozen=True)
class ActionGrant:
    can_create: bool
    can_edit: bool
    can_delete: bool

    def allows(self, action: str) -> bool:
        return bool(getattr(self, f'can_{action}'))


@dataclass
class _RoleEntry:
    expires_at: float
    pages: Dict[str, PageGrant]
    actions: Dict[Tuple[Optional[int], str], ActionGrant]


def page_key(page: Optional[str]) -> str:
    """'/esb' -> 'esb'; '/purchaseorder/create' -> 'purchaseorder'."""
    if not page:
        return ''
    return str(page).strip().lstrip('/').split('/', 1)[0]


class PermissionStore:
    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic,
                 session_factory: Callable = None):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._session_factory = session_factory
        self._cache: Dict[str, _RoleEntry] = {}
        self._lock = threading.Lock()

    def configure(self, ttl_seconds: int = None, clock: Callable[[], float] = None):
        if ttl_seconds is not None:
            self.ttl_seconds = int(ttl_seconds)
        if clock is not None:
            self._clock = clock

    def _session(self):
        return self._session_factory() if self._session_factory else get_db()

    # ------------------------------------------------------------------ cache
    def clear_cache(self):
        with self._lock:
            self._cache.clear()

    def _load(self, role: str) -> _RoleEntry:
        now = self._clock()
        with self._lock:
            entry = self._cache.get(role)
            if entry is not None and now < entry.expires_at:
                return entry
        session = self._session()
        page_rows = session.execute(select(PagePermission).where(PagePermission.role == role)).scalars().all()
        action_rows = session.execute(select(CrudPermission).where(CrudPermission.role == role)).scalars().all()
        pages = {
            page_key(r.page): PageGrant(bool(r.can_access), tuple(r.columns or ()))
            for r in page_rows
        }
        actions = {
            (r.user_id, page_key(r.page)): ActionGrant(bool(r.can_create), bool(r.can_edit), bool(r.can_delete))
            for r in action_rows
        }
        entry = _RoleEntry(expires_at=now + self.ttl_seconds, pages=pages, actions=actions)
        with self._lock:
            self._cache[role] = entry
        log.debug('loaded %d page / %d action grants for role %s', len(pages), len(actions), role)
        return entry

    # ------------------------------------------------------------------ page level
    def can_access(self, role: Optional[str], page: str) -> bool:
        role = normalize_role(role)
        key = page_key(page)
        if key in ALWAYS_ALLOWED_PAGES or role == ROLE_SUPER_ADMIN:
            return True
        if not role:
            return False
        grant = self._load(role).pages.get(key)
        return bool(grant and grant.can_access)

    def can_view_column(self, role: Optional[str], page: str, column: str) -> bool:
        role = normalize_role(role)
        if role == ROLE_SUPER_ADMIN:
            return True
        if not role:
            return False
        grant = self._load(role).pages.get(page_key(page))
        if not grant or not grant.can_access:
            return False
        return grant.all_columns or column in grant.columns

    def visible_columns(self, role: Optional[str], page: str, all_columns: Sequence[str]) -> List[str]:
        role = normalize_role(role)
        if role == ROLE_SUPER_ADMIN:
            return list(all_columns)
        if not role:
            return []
        grant = self._load(role).pages.get(page_key(page))
        if not grant or not grant.can_access:
            return []
        if grant.all_columns:
            return list(all_columns)
        return [c for c in all_columns if c in grant.columns]

    def accessible_pages(self, role: Optional[str], candidates: Iterable[str] = ()) -> List[str]:
        role = normalize_role(role)
        if role == ROLE_SUPER_ADMIN:
            return sorted(set(candidates) | {PAGE_DASHBOARD})
        pages = {PAGE_DASHBOARD}
        if role:
            pages |= {p for p, g in self._load(role).pages.items() if g.can_access}
        return sorted(pages)

    # ------------------------------------------------------------------ action level
    def can_perform_action(self, role: Optional[str], page: str, action: str, user_id: Optional[int] = None) -> bool:
        if action not in CRUD_ACTIONS:
            raise ValueError(f'unknown action {action!r}')
        role = normalize_role(role)
        if role == ROLE_SUPER_ADMIN:
            return True
        if not role:
            return False
        actions = self._load(role).actions
        key = page_key(page)
        if user_id is not None and (user_id, key) in actions:
            return actions[(user_id, key)].allows(action)
        grant = actions.get((None, key))
        return bool(grant and grant.allows(action))

    def capabilities(self, role: Optional[str], page: str, user_id: Optional[int] = None) -> Set[str]:
        """Unified view over both tables: 'view' plus any of 'create' / 'edit' / 'delete'."""
        caps: Set[str] = set()
        if self.can_access(role, page):
            caps.add('view')
        for action in CRUD_ACTIONS:
            if self.can_perform_action(role, page, action, user_id):
                caps.add(action)
        return caps

    # ------------------------------------------------------------------ writes
    def update_page_permission(self, role: str, page: str, columns: Iterable[str], can_access: bool = True) -> PagePermission:
        role, key = self._validate_target(role, page)
        session = self._session()
        row = session.execute(
            select(PagePermission).where(PagePermission.role == role, PagePermission.page == key)
        ).scalar_one_or_none()
        if row is None:
            row = PagePermission(role=role, page=key)
            session.add(row)
        row.columns = list(dict.fromkeys(str(c) for c in columns))
        row.can_access = bool(can_access)
        session.commit()
        # Full clear rather than a per-role eviction
        self.clear_cache()
        log.info('page permission %s/%s set (access=%s, columns=%s)', role, key, row.can_access, row.columns)
        return row

    def update_crud_permission(self, role: str, page: str, can_create: bool = False, can_edit: bool = False,
                               can_delete: bool = False, user_id: Optional[int] = None) -> CrudPermission:
        role, key = self._validate_target(role, page)
        session = self._session()
        stmt = select(CrudPermission).where(CrudPermission.role == role, CrudPermission.page == key)
        if user_id is None:
            stmt = stmt.where(CrudPermission.user_id.is_(None))
        else:
            stmt = stmt.where(CrudPermission.user_id == user_id)
        row = session.execute(stmt).scalar_one_or_none()
        if row is None:
            row = CrudPermission(role=role, page=key, user_id=user_id)
            session.add(row)
        row.can_create = bool(can_create)
        row.can_edit = bool(can_edit)
        row.can_delete = bool(can_delete)
        session.commit()
        self.clear_cache()
        log.info('crud permission %s/%s user=%s set (c=%s e=%s d=%s)', role, key, user_id,
                 row.can_create, row.can_edit, row.can_delete)
        return row

    @staticmethod
    def _validate_target(role: str, page: str) -> Tuple[str, str]:
        role = normalize_role(role)
        key = page_key(page)
        if not role:
            raise ValidationError('role required')
        if not key:
            raise ValidationError('page required')
        return role, key


permission_store = PermissionStore()


def can_access(role, page) -> bool:
    return permission_store.can_access(role, page)


def can_view_column(role, page, column) -> bool:
    return permission_store.can_view_column(role, page, column)


def visible_columns(role, page, all_columns) -> List[str]:
    return permission_store.visible_columns(role, page, all_columns)


def can_perform_action(role, page, action, user_id=None) -> bool:
    return permission_store.can_perform_action(role, page, action, user_id)
