from flask import Blueprint, request, abort
from flask_jwt_extended import jwt_required
from sqlalchemy import select
from backoffice import get_db
from backoffice.constants.roles import ADMIN_TIER, PAGE_BRANCHES
from backoffice.decorators.auth import require_page, require_roles
from backoffice.errors import PermissionDeniedError
from backoffice.models.authz import Branch
from backoffice.services.audit import insert_audited, soft_delete_audited
from backoffice.services.branch_access import allowed_branches, apply_branch_filter, scope_json
from backoffice.services.identity import current_actor, load_current_user
from backoffice.utils.time import iso

branches_bp = Blueprint('branches', __name__)


def _branch_json(b: Branch):
    return {
        'id': b.id,
        'code': b.code,
        'name': b.name,
        'address': b.address,
        'city': b.city,
        'is_active': b.is_active,
        'updated_at': iso(b.updated_at),
    }


def _caller():
    try:
        return load_current_user()
    except PermissionDeniedError as e:
        abort(403, description=e.detail)


@branches_bp.get('')
@require_page(PAGE_BRANCHES)
def list_branches():
    session = get_db()
    q = select(Branch).where(Branch.is_active.is_(True))
    q = apply_branch_filter(q, Branch.code, allowed_branches(_caller()))
    rows = session.execute(q.order_by(Branch.code.asc())).scalars().all()
    return {'data': [_branch_json(b) for b in rows]}


@branches_bp.get('/allowed')
@jwt_required()
def my_branches():
    """Branch scope of the caller: '*' for unrestricted roles, else a list of codes."""
    return {'branches': scope_json(allowed_branches(_caller()))}


@branches_bp.post('')
@require_roles(*ADMIN_TIER)
def create_branch():
    data = request.get_json(silent=True) or {}
    code = (data.get('code') or '').strip().upper()
    name = (data.get('name') or '').strip()
    if not code or not name:
        abort(400, description='code and name required')
    session = get_db()
    existing = session.execute(select(Branch).where(Branch.code == code)).scalar_one_or_none()
    if existing is not None:
        abort(400, description=f'branch {code} already exists')
    branch = insert_audited(Branch, {
        'code': code,
        'name': name,
        'address': data.get('address'),
        'city': data.get('city'),
        'is_active': True,
    }, current_actor())
    return _branch_json(branch), 201


@branches_bp.delete('/<code>')
@require_roles(*ADMIN_TIER)
def delete_branch(code: str):
    if not soft_delete_audited(Branch, {'code': code}, current_actor()):
        abort(404, description=f'branch {code} not found')
    return {'code': code, 'is_active': False}
