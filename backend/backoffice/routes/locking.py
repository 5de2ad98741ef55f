"""Lock / unlock / force-unlock / status endpoints shared by lockable resources."""
from __future__ import annotations
from flask import abort
from backoffice.decorators.auth import require_page
from backoffice.errors import LockConflictError, PermissionDeniedError
from backoffice.services.branch_access import allowed_branches
from backoffice.services.identity import current_actor, load_current_user
from backoffice.services.locks import LockStatus, RowLockManager


def lock_status_json(record_id: int, status: LockStatus) -> dict:
    return {'id': record_id, 'locked': status.locked, 'locked_by_name': status.holder_name}


def assert_in_scope(manager: RowLockManager, record_id: int):
    """404 for records outside the caller's branch scope, same as a missing record."""
    try:
        user = load_current_user()
    except PermissionDeniedError as e:
        abort(403, description=e.detail)
    row = manager.get(record_id)
    if row.branch_code not in allowed_branches(user):
        abort(404)
    return row


def register_lock_routes(bp, manager: RowLockManager, base: str, page: str):
    name = bp.name

    @require_page(page, 'edit')
    def acquire_lock(record_id: int):
        assert_in_scope(manager, record_id)
        actor = current_actor()
        result = manager.acquire(record_id, actor.id, actor.name)
        if not result.granted:
            raise LockConflictError(f'record is being edited by {result.holder_name}', holder_name=result.holder_name)
        return {'id': record_id, 'locked': True, 'locked_by_name': result.holder_name}

    @require_page(page)
    def release_lock(record_id: int):
        assert_in_scope(manager, record_id)
        if not manager.release_if_held(record_id, current_actor().id):
            status = manager.check(record_id)
            if status.locked:
                raise LockConflictError(f'record is locked by {status.holder_name}', holder_name=status.holder_name)
        return {'id': record_id, 'locked': False, 'locked_by_name': None}

    @require_page(page)
    def force_release_lock(record_id: int):
        assert_in_scope(manager, record_id)
        result = manager.force_release(record_id, current_actor().id)
        return {'id': record_id, 'locked': False, 'released_from': result.holder_name}

    @require_page(page)
    def lock_status(record_id: int):
        assert_in_scope(manager, record_id)
        return lock_status_json(record_id, manager.check(record_id))

    bp.add_url_rule(f'{base}/<int:record_id>/lock', f'{name}_acquire_lock', acquire_lock, methods=['POST'])
    bp.add_url_rule(f'{base}/<int:record_id>/unlock', f'{name}_release_lock', release_lock, methods=['POST'])
    bp.add_url_rule(f'{base}/<int:record_id>/force-unlock', f'{name}_force_release_lock', force_release_lock, methods=['POST'])
    bp.add_url_rule(f'{base}/<int:record_id>/lock', f'{name}_lock_status', lock_status, methods=['GET'])
