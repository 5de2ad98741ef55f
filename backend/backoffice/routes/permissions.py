from flask import Blueprint, request, abort
from sqlalchemy import select
from backoffice import get_db
from backoffice.constants.roles import ADMIN_TIER, ALL_PAGES, ALL_ROLES, normalize_role
from backoffice.decorators.auth import require_roles
from backoffice.errors import ValidationError
from backoffice.models.authz import CrudPermission, PagePermission, User
from backoffice.services.permissions import permission_store

perm_bp = Blueprint('permissions', __name__)


def _role_or_400(raw) -> str:
    role = normalize_role(raw)
    if role not in ALL_ROLES:
        abort(400, description=f'unknown role {raw}')
    return role


def _page_row_json(r: PagePermission):
    return {'page': r.page, 'columns': list(r.columns or []), 'can_access': r.can_access}


def _crud_row_json(r: CrudPermission):
    return {
        'page': r.page,
        'user_id': r.user_id,
        'can_create': r.can_create,
        'can_edit': r.can_edit,
        'can_delete': r.can_delete,
    }


@perm_bp.get('/<role>')
@require_roles(*ADMIN_TIER)
def get_role_permissions(role: str):
    role = _role_or_400(role)
    session = get_db()
    pages = session.execute(
        select(PagePermission).where(PagePermission.role == role).order_by(PagePermission.page)
    ).scalars().all()
    crud = session.execute(
        select(CrudPermission).where(CrudPermission.role == role)
        .order_by(CrudPermission.page, CrudPermission.user_id)
    ).scalars().all()
    return {
        'role': role,
        'pages': [_page_row_json(r) for r in pages],
        'crud': [_crud_row_json(r) for r in crud],
        'accessible_pages': permission_store.accessible_pages(role, ALL_PAGES),
    }


@perm_bp.put('/pages')
@require_roles(*ADMIN_TIER)
def put_page_permission():
    data = request.get_json(silent=True) or {}
    role = _role_or_400(data.get('role'))
    columns = data.get('columns', ['*'])
    if not isinstance(columns, list) or not all(isinstance(c, str) for c in columns):
        abort(400, description='columns must be a list of strings')
    try:
        row = permission_store.update_page_permission(role, data.get('page'), columns, bool(data.get('can_access', True)))
    except ValidationError as e:
        abort(400, description=e.detail)
    return {'role': row.role, **_page_row_json(row)}


@perm_bp.put('/crud')
@require_roles(*ADMIN_TIER)
def put_crud_permission():
    data = request.get_json(silent=True) or {}
    role = _role_or_400(data.get('role'))
    user_id = data.get('user_id')
    if user_id is not None:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            abort(400, description='user_id must be int')
        if get_db().get(User, user_id) is None:
            abort(404, description=f'user {user_id} not found')
    try:
        row = permission_store.update_crud_permission(
            role, data.get('page'),
            can_create=bool(data.get('can_create')),
            can_edit=bool(data.get('can_edit')),
            can_delete=bool(data.get('can_delete')),
            user_id=user_id,
        )
    except ValidationError as e:
        abort(400, description=e.detail)
    return {'role': row.role, **_crud_row_json(row)}
