"""Advisory row locks stored on the business record (is_locked / locked_by / locked_by_name / locked_at).

Locks are cooperative: code that does not consult the manager can still write the row.
A lock older than the timeout (30 minutes by default) is stale: readers treat it as free
and ``check`` clears it lazily. There is no background sweep.

Acquisition is a single conditional UPDATE, so of two racing acquirers only one matches
the row. Force release is limited to admin-tier users, judged from the users table.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, Optional

from sqlalchemy import or_, select, update

from backoffice import get_db
from backoffice.constants.roles import is_admin_tier
from backoffice.errors import NotFoundError, PermissionDeniedError
from backoffice.models.authz import User
from backoffice.models.purchase_order import PettyCashRequest, PurchaseOrder
from backoffice.utils.time import as_utc, utcnow

log = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = timedelta(minutes=30)
_lock_timeout = DEFAULT_LOCK_TIMEOUT


def configure_lock_timeout(minutes: int):
    global _lock_timeout
    _lock_timeout = timedelta(minutes=int(minutes))


@dataclass(frozen=True)
class LockResult:
    granted: bool
    holder_name: Optional[str] = None


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    holder_name: Optional[str] = None
    holder_id: Optional[int] = None


_CLEARED = {'is_locked': False, 'locked_by': None, 'locked_by_name': None, 'locked_at': None}


class RowLockManager:
    def __init__(self, model, label: str, timeout: Optional[timedelta] = None):
        self.model = model
        self.label = label
        self._timeout = timeout

    @property
    def timeout(self) -> timedelta:
        return self._timeout or _lock_timeout

    def _fetch(self, session, record_id: int):
        row = session.execute(
            select(self.model).where(self.model.id == record_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(f'{self.label} {record_id} not found')
        return row

    def get(self, record_id: int):
        return self._fetch(get_db(), record_id)

    def is_stale(self, row, now=None) -> bool:
        if not row.is_locked or row.locked_at is None:
            return False
        return (now or utcnow()) - as_utc(row.locked_at) > self.timeout

    def acquire(self, record_id: int, actor_id: int, actor_name: str) -> LockResult:
        """Take the lock unless a different actor holds a live one.

        Re-acquiring an own lock refreshes locked_at.
        """
        session = get_db()
        now = utcnow()
        m = self.model
        result = session.execute(
            update(m)
            .where(
                m.id == record_id,
                or_(
                    m.is_locked.is_(False),
                    m.locked_by == actor_id,
                    m.locked_at.is_(None),
                    m.locked_at < now - self.timeout,
                ),
            )
            .values(is_locked=True, locked_by=actor_id, locked_by_name=actor_name, locked_at=now)
            .execution_options(synchronize_session='fetch')
        )
        session.commit()
        if result.rowcount == 1:
            return LockResult(granted=True, holder_name=actor_name)
        row = self._fetch(session, record_id)
        return LockResult(granted=False, holder_name=row.locked_by_name)

    def release(self, record_id: int):
        session = get_db()
        result = session.execute(
            update(self.model).where(self.model.id == record_id).values(**_CLEARED)
            .execution_options(synchronize_session='fetch')
        )
        session.commit()
        if result.rowcount == 0:
            raise NotFoundError(f'{self.label} {record_id} not found')

    def release_if_held(self, record_id: int, actor_id: int) -> bool:
        """Release only a lock owned by ``actor_id``; returns whether anything was released."""
        session = get_db()
        result = session.execute(
            update(self.model)
            .where(self.model.id == record_id, self.model.locked_by == actor_id)
            .values(**_CLEARED)
            .execution_options(synchronize_session='fetch')
        )
        session.commit()
        return result.rowcount == 1

    def check(self, record_id: int) -> LockStatus:
        session = get_db()
        row = self._fetch(session, record_id)
        if not row.is_locked:
            return LockStatus(locked=False)
        if self.is_stale(row):
            stale_at = row.locked_at
            # Only clear the stale lock we looked at; a fresh acquire in between wins
            session.execute(
                update(self.model)
                .where(self.model.id == record_id, self.model.locked_at == stale_at)
                .values(**_CLEARED)
                .execution_options(synchronize_session='fetch')
            )
            session.commit()
            log.info('%s %s: stale lock held by %s expired', self.label, record_id, row.locked_by_name)
            return LockStatus(locked=False)
        return LockStatus(locked=True, holder_name=row.locked_by_name, holder_id=row.locked_by)

    def check_many(self, record_ids: Iterable[int]) -> Dict[int, LockStatus]:
        return {rid: self.check(rid) for rid in record_ids}

    def force_release(self, record_id: int, requester_id: int) -> LockResult:
        """Clear any lock on the record. The requester's role is read from the users table."""
        session = get_db()
        requester = session.execute(
            select(User).where(User.id == requester_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if requester is None or not requester.is_active or not is_admin_tier(requester.role):
            raise PermissionDeniedError('only admin users can force unlock')
        row = self._fetch(session, record_id)
        previous_holder = row.locked_by_name
        self.release(record_id)
        log.warning('%s %s: lock of %s force-released by %s', self.label, record_id, previous_holder, requester.name)
        return LockResult(granted=True, holder_name=previous_holder)


po_locks = RowLockManager(PurchaseOrder, 'purchase order')
petty_cash_locks = RowLockManager(PettyCashRequest, 'petty cash request')
