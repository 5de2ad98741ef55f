from flask import Blueprint, request, abort, jsonify
from flask_jwt_extended import create_access_token, jwt_required, set_access_cookies, unset_jwt_cookies
from sqlalchemy import select
from werkzeug.security import generate_password_hash
from backoffice import get_db
from backoffice.constants.roles import ALL_PAGES, ALL_ROLES, ROLE_STAFF, ROLE_SUPER_ADMIN, PAGE_USERS, is_admin_tier, normalize_role
from backoffice.decorators.auth import require_page
from backoffice.errors import NotFoundError, PermissionDeniedError
from backoffice.models.authz import Branch, User
from backoffice.services.audit import get_or_404, insert_audited, soft_delete_audited, update_audited
from backoffice.services.branch_access import allowed_branches, assign_branch, list_assignments, revoke_branch, scope_json
from backoffice.services.identity import current_actor, current_role, current_user_id, identity_claims, load_current_user
from backoffice.services.permissions import permission_store
from backoffice.utils.filters import apply_filters, contains, equals
from backoffice.utils.listing import apply_pagination, build_list_payload
from backoffice.utils.log import sanitize_for_log
from backoffice.utils.sorting import apply_multi_sort
from backoffice.utils.time import iso
import logging

log = logging.getLogger(__name__)

iam_bp = Blueprint('iam', __name__)

USER_FIELDS = ('name', 'phone', 'role', 'home_branch', 'is_active')


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _user_json(u: User):
    return {
        'id': u.id,
        'email': u.email,
        'name': u.name,
        'phone': u.phone,
        'role': normalize_role(u.role),
        'home_branch': u.home_branch,
        'is_active': u.is_active,
        'updated_at': iso(u.updated_at),
    }


def _validate_role(raw) -> str:
    role = normalize_role(raw)
    if role not in ALL_ROLES:
        abort(400, description=f'role must be one of {", ".join(ALL_ROLES)}')
    return role


def _assert_can_grant(role: str):
    """Only admin-tier users (as stored) assign roles; only a super admin assigns super admin."""
    try:
        granter = load_current_user()
    except PermissionDeniedError as e:
        abort(403, description=e.detail)
    if not is_admin_tier(granter.role):
        abort(403, description='Only admins may assign roles')
    if role == ROLE_SUPER_ADMIN and normalize_role(granter.role) != ROLE_SUPER_ADMIN:
        abort(403, description='Only a super admin may assign the super admin role')


def _assert_branch_exists(code):
    if code and not get_db().execute(select(Branch.id).where(Branch.code == code)).first():
        abort(400, description=f'unknown branch {code}')


# --- Authentication ---

@iam_bp.post('/auth/login')
def login():
    data = _body()
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(
        select(User).where(User.email == email).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        log.info('login failed for %s', sanitize_for_log(email))
        abort(401, description='invalid credentials')
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=identity_claims(user))
    resp = {'access_token': token, 'user': _user_json(user)}
    response = jsonify(resp)
    set_access_cookies(response, token)
    return response


@iam_bp.post('/auth/logout')
def logout():
    response = jsonify({'status': 'logged out'})
    unset_jwt_cookies(response)
    return response


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    try:
        user = load_current_user()
    except PermissionDeniedError:
        abort(401, description='account inactive or unknown')
    return {
        **_user_json(user),
        'branches': scope_json(allowed_branches(user)),
        'pages': permission_store.accessible_pages(user.role, ALL_PAGES),
    }


@iam_bp.get('/auth/access')
@jwt_required()
def check_access():
    """The caller's own capabilities on a page (and optionally one column)."""
    page = request.args.get('page')
    if not page:
        abort(400, description='page required')
    role = current_role()
    payload = {
        'role': role,
        'page': page,
        'can_access': permission_store.can_access(role, page),
        'capabilities': sorted(permission_store.capabilities(role, page, current_user_id())),
    }
    column = request.args.get('column')
    if column:
        payload['column'] = column
        payload['can_view_column'] = permission_store.can_view_column(role, page, column)
    action = request.args.get('action')
    if action:
        try:
            payload['can_perform_action'] = permission_store.can_perform_action(role, page, action, current_user_id())
        except ValueError as e:
            abort(400, description=str(e))
    return payload


# --- Users ---

@iam_bp.get('/users')
@require_page(PAGE_USERS)
def list_users():
    session = get_db()
    q = session.query(User)
    if request.args.get('include_inactive') != '1':
        q = q.filter(User.is_active.is_(True))
    filter_specs = {
        'search': {'op': contains(User.name)},
        'email': {'op': contains(User.email)},
        'role': {'coerce': normalize_role, 'op': equals(User.role), 'validate': lambda v: v in ALL_ROLES},
        'home_branch': {'op': equals(User.home_branch)},
    }
    q = apply_filters(q, filter_specs, request.args)
    allowed = {'name': User.name, 'email': User.email, 'role': User.role, 'updated_at': User.updated_at, 'id': User.id}
    q = apply_multi_sort(q, request.args.get('sort'), allowed, User.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = [_user_json(u) for u in paged_q.all()]
    return build_list_payload(rows, total, limit, offset)


@iam_bp.post('/users')
@require_page(PAGE_USERS, 'create')
def create_user():
    data = _body()
    email = (data.get('email') or '').strip().lower()
    name = (data.get('name') or '').strip()
    password = data.get('password')
    if not email or not name or not password:
        abort(400, description='email, name and password required')
    role = _validate_role(data.get('role') or ROLE_STAFF)
    _assert_can_grant(role)
    _assert_branch_exists(data.get('home_branch'))
    session = get_db()
    if session.execute(select(User.id).where(User.email == email)).first():
        abort(400, description='email already registered')
    user = insert_audited(User, {
        'email': email,
        'name': name,
        'phone': data.get('phone'),
        'role': role,
        'home_branch': data.get('home_branch'),
        'password_hash': generate_password_hash(password),
        'is_active': True,
    }, current_actor())
    return _user_json(user), 201


@iam_bp.patch('/users/<int:user_id>')
@require_page(PAGE_USERS, 'edit')
def update_user(user_id: int):
    data = _body()
    get_or_404(User, user_id)
    patch = {k: data[k] for k in USER_FIELDS if k in data}
    if 'role' in patch:
        patch['role'] = _validate_role(patch['role'])
        _assert_can_grant(patch['role'])
    if 'home_branch' in patch:
        _assert_branch_exists(patch['home_branch'])
    if 'name' in patch and not str(patch['name'] or '').strip():
        abort(400, description='name must not be empty')
    if data.get('password'):
        patch['password_hash'] = generate_password_hash(data['password'])
    if not patch:
        abort(400, description='no updatable fields supplied')
    update_audited(User, patch, {'id': user_id}, current_actor())
    return _user_json(get_or_404(User, user_id))


@iam_bp.delete('/users/<int:user_id>')
@require_page(PAGE_USERS, 'delete')
def delete_user(user_id: int):
    if user_id == current_user_id():
        abort(400, description='cannot deactivate your own account')
    get_or_404(User, user_id)
    soft_delete_audited(User, {'id': user_id}, current_actor())
    return {'id': user_id, 'is_active': False}


# --- User ↔ branch assignments ---

@iam_bp.get('/users/<int:user_id>/branches')
@require_page(PAGE_USERS)
def get_user_branches(user_id: int):
    user = get_or_404(User, user_id)
    return {
        'user_id': user.id,
        'assignments': [
            {'branch_code': link.branch_code, 'is_active': link.is_active}
            for link in list_assignments(user.id)
        ],
        'effective': scope_json(allowed_branches(user)),
    }


@iam_bp.put('/users/<int:user_id>/branches/<code>')
@require_page(PAGE_USERS, 'edit')
def put_user_branch(user_id: int, code: str):
    try:
        link = assign_branch(user_id, code)
    except NotFoundError as e:
        abort(404, description=e.detail)
    return {'user_id': link.user_id, 'branch_code': link.branch_code, 'is_active': link.is_active}


@iam_bp.delete('/users/<int:user_id>/branches/<code>')
@require_page(PAGE_USERS, 'edit')
def delete_user_branch(user_id: int, code: str):
    if not revoke_branch(user_id, code):
        abort(404, description='assignment not found')
    return {'user_id': user_id, 'branch_code': code, 'is_active': False}
