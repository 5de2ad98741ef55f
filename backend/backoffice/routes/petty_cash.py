from flask import Blueprint, request, abort
from sqlalchemy import select
from backoffice import get_db
from backoffice.constants.roles import PAGE_PETTY_CASH
from backoffice.decorators.auth import require_page
from backoffice.errors import LockConflictError, PermissionDeniedError
from backoffice.models.purchase_order import PettyCashRequest
from backoffice.routes.locking import register_lock_routes
from backoffice.services.audit import get_or_404, insert_audited, soft_delete_audited, update_audited
from backoffice.services.branch_access import allowed_branches, apply_branch_filter
from backoffice.services.identity import current_actor, current_role, current_user_id, load_current_user
from backoffice.services.locks import petty_cash_locks
from backoffice.services.permissions import visible_columns
from backoffice.utils.filters import apply_filters, contains, equals
from backoffice.utils.fsm import TransitionValidator
from backoffice.utils.listing import apply_pagination, build_list_payload, project_columns
from backoffice.utils.sorting import apply_multi_sort
from backoffice.utils.time import iso, utcnow
from backoffice.utils.validation import parse_amount, require_text, validate_status

pettycash_bp = Blueprint('pettycash', __name__)

REQUEST_FSM = TransitionValidator({
    PettyCashRequest.STATUS_PENDING: {PettyCashRequest.STATUS_APPROVED, PettyCashRequest.STATUS_REJECTED},
    PettyCashRequest.STATUS_APPROVED: {PettyCashRequest.STATUS_SETTLED},
    PettyCashRequest.STATUS_REJECTED: set(),
    PettyCashRequest.STATUS_SETTLED: set(),
})

REQUEST_COLUMNS = [
    'request_number', 'branch_code', 'amount', 'purpose', 'status', 'requested_at',
    'is_locked', 'locked_by_name', 'updated_at',
]


def _request_json(r: PettyCashRequest):
    locked = bool(r.is_locked) and not petty_cash_locks.is_stale(r)
    return {
        'id': r.id,
        'request_number': r.request_number,
        'branch_code': r.branch_code,
        'amount': str(r.amount) if r.amount is not None else None,
        'purpose': r.purpose,
        'status': r.status,
        'requested_at': iso(r.requested_at),
        'is_locked': locked,
        'locked_by_name': r.locked_by_name if locked else None,
        'updated_at': iso(r.updated_at),
    }


def _scope():
    try:
        return allowed_branches(load_current_user())
    except PermissionDeniedError as e:
        abort(403, description=e.detail)


def _scoped_request(request_id: int) -> PettyCashRequest:
    r = get_or_404(PettyCashRequest, request_id)
    if not r.is_active or r.branch_code not in _scope():
        abort(404)
    return r


def _assert_editable(request_id: int):
    status = petty_cash_locks.check(request_id)
    if status.locked and status.holder_id != current_user_id():
        raise LockConflictError(f'request is being edited by {status.holder_name}', holder_name=status.holder_name)


@pettycash_bp.get('/requests')
@require_page(PAGE_PETTY_CASH)
def list_requests():
    session = get_db()
    q = session.query(PettyCashRequest).filter(PettyCashRequest.is_active.is_(True))
    q = apply_branch_filter(q, PettyCashRequest.branch_code, _scope())
    filter_specs = {
        'request_number': {'op': contains(PettyCashRequest.request_number)},
        'purpose': {'op': contains(PettyCashRequest.purpose)},
        'status': {'op': equals(PettyCashRequest.status), 'validate': lambda v: v in PettyCashRequest.ALL_STATUSES},
        'branch_code': {'op': equals(PettyCashRequest.branch_code)},
    }
    q = apply_filters(q, filter_specs, request.args)
    allowed = {
        'request_number': PettyCashRequest.request_number,
        'amount': PettyCashRequest.amount,
        'status': PettyCashRequest.status,
        'requested_at': PettyCashRequest.requested_at,
        'id': PettyCashRequest.id,
    }
    q = apply_multi_sort(q, request.args.get('sort'), allowed, PettyCashRequest.id)
    paged_q, total, limit, offset = apply_pagination(q)
    columns = visible_columns(current_role(), PAGE_PETTY_CASH, REQUEST_COLUMNS)
    rows = [project_columns(_request_json(r), columns) for r in paged_q.all()]
    return build_list_payload(rows, total, limit, offset, columns)


@pettycash_bp.post('/requests')
@require_page(PAGE_PETTY_CASH, 'create')
def create_request():
    data = request.get_json(silent=True) or {}
    request_number = require_text(data, 'request_number', 64)
    branch_code = require_text(data, 'branch_code', 32)
    if branch_code not in _scope():
        abort(403, description=f'No access to branch {branch_code}')
    if get_db().execute(select(PettyCashRequest.id).where(PettyCashRequest.request_number == request_number)).first():
        abort(400, description=f'request_number {request_number} already exists')
    r = insert_audited(PettyCashRequest, {
        'request_number': request_number,
        'branch_code': branch_code,
        'amount': parse_amount(data.get('amount'), 'amount', allow_zero=False),
        'purpose': require_text(data, 'purpose'),
        'status': PettyCashRequest.STATUS_PENDING,
        'requested_at': utcnow(),
    }, current_actor())
    return _request_json(r), 201


@pettycash_bp.get('/requests/<int:request_id>')
@require_page(PAGE_PETTY_CASH)
def get_request(request_id: int):
    columns = visible_columns(current_role(), PAGE_PETTY_CASH, REQUEST_COLUMNS)
    return project_columns(_request_json(_scoped_request(request_id)), columns)


@pettycash_bp.patch('/requests/<int:request_id>')
@require_page(PAGE_PETTY_CASH, 'edit')
def update_request(request_id: int):
    data = request.get_json(silent=True) or {}
    r = _scoped_request(request_id)
    _assert_editable(request_id)
    if r.status != PettyCashRequest.STATUS_PENDING:
        abort(400, description=f'request is {r.status} and can no longer be edited')
    patch = {}
    if 'amount' in data:
        patch['amount'] = parse_amount(data.get('amount'), 'amount', allow_zero=False)
    if 'purpose' in data:
        patch['purpose'] = require_text(data, 'purpose')
    if not patch:
        abort(400, description='no updatable fields supplied')
    update_audited(PettyCashRequest, patch, {'id': request_id}, current_actor())
    return _request_json(get_or_404(PettyCashRequest, request_id))


@pettycash_bp.post('/requests/<int:request_id>/transition')
@require_page(PAGE_PETTY_CASH, 'edit')
def transition_request(request_id: int):
    data = request.get_json(silent=True) or {}
    target = validate_status(data.get('status'), PettyCashRequest.ALL_STATUSES)
    r = _scoped_request(request_id)
    _assert_editable(request_id)
    REQUEST_FSM.assert_can_transition(r.status, target)
    update_audited(PettyCashRequest, {'status': target}, {'id': request_id}, current_actor())
    return _request_json(get_or_404(PettyCashRequest, request_id))


@pettycash_bp.delete('/requests/<int:request_id>')
@require_page(PAGE_PETTY_CASH, 'delete')
def delete_request(request_id: int):
    _scoped_request(request_id)
    _assert_editable(request_id)
    soft_delete_audited(PettyCashRequest, {'id': request_id}, current_actor())
    return {'id': request_id, 'is_active': False}


register_lock_routes(pettycash_bp, petty_cash_locks, '/requests', PAGE_PETTY_CASH)
