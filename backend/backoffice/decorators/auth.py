from functools import wraps
from flask import abort
from flask_jwt_extended import verify_jwt_in_request
from backoffice.constants.roles import normalize_role
from backoffice.errors import PermissionDeniedError
from backoffice.services.identity import current_role, current_user_id, load_current_user
from backoffice.services.permissions import can_access, can_perform_action


def require_page(page: str, action: str = None):
    """Require a valid identity whose role may open ``page`` (and perform ``action`` there)."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            role = current_role()
            if not can_access(role, page):
                abort(403, description='Page not permitted')
            if action and not can_perform_action(role, page, action, current_user_id()):
                abort(403, description=f'Action {action} not permitted on {page}')
            return fn(*args, **kwargs)
        return wrapper
    return outer


def require_roles(*roles: str):
    """Require the caller's stored role (users table, not the token claim) to be one of ``roles``."""
    allowed = {normalize_role(r) for r in roles}

    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            try:
                user = load_current_user()
            except PermissionDeniedError as e:
                abort(403, description=e.detail)
            if normalize_role(user.role) not in allowed:
                abort(403, description='Role not permitted')
            return fn(*args, **kwargs)
        return wrapper
    return outer
