"""Path-prefix route gate evaluated before every request.

No identity on a gated path redirects to ``/login``; an identity whose role is not
listed for the path redirects to ``/dashboard``. The longest matching prefix wins.
Paths outside the table (login, health, static) pass untouched.
"""
from __future__ import annotations

import logging
from typing import FrozenSet, Optional, Sequence, Tuple

from flask import redirect, request
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from backoffice.constants.roles import (
    ADMIN_TIER, ROLE_FINANCE, ROLE_PIC_BRANCH, ROLE_STAFF, normalize_role,
)
from backoffice.services.identity import current_role
from backoffice.utils.log import sanitize_for_log

log = logging.getLogger(__name__)

LOGIN_PATH = '/login'
DASHBOARD_PATH = '/dashboard'

# None = any authenticated role
ANY_ROLE = None
OPERATIONS = ADMIN_TIER | {ROLE_FINANCE, ROLE_PIC_BRANCH, ROLE_STAFF}

ROUTE_GATE: Sequence[Tuple[str, Optional[FrozenSet[str]]]] = (
    ('/dashboard', ANY_ROLE),
    ('/iam/users', ADMIN_TIER | {ROLE_FINANCE}),
    ('/permissions', ADMIN_TIER),
    ('/audit-log', ADMIN_TIER),
    ('/finance', ADMIN_TIER | {ROLE_FINANCE}),
    ('/po', OPERATIONS),
    ('/pettycash', OPERATIONS),
    ('/branches', OPERATIONS),
)


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + '/')


def match_rule(path: str):
    best = None
    for prefix, roles in ROUTE_GATE:
        if _matches(path, prefix) and (best is None or len(prefix) > len(best[0])):
            best = (prefix, roles)
    return best


def resolve_gate(path: str, role: Optional[str]) -> Optional[str]:
    """Redirect target for ``role`` on ``path``, or None when the request may proceed.

    ``role=None`` means no identity was presented.
    """
    rule = match_rule(path)
    if rule is None:
        return None
    if role is None:
        return LOGIN_PATH
    roles = rule[1]
    if roles is ANY_ROLE or normalize_role(role) in roles:
        return None
    return DASHBOARD_PATH


def register_route_gate(app):
    @app.before_request
    def route_gate():
        if match_rule(request.path) is None:
            return None
        try:
            verify_jwt_in_request(optional=True)
        except (JWTExtendedException, PyJWTError) as e:
            log.info('gate: rejected identity on %s (%s)', sanitize_for_log(request.path), e.__class__.__name__)
            return redirect(LOGIN_PATH)
        role = current_role() if get_jwt_identity() is not None else None
        target = resolve_gate(request.path, role)
        if target is not None:
            log.debug('gate: %s -> %s for role %r', sanitize_for_log(request.path), target, role)
            return redirect(target)
        return None
