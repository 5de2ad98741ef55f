from flask import Blueprint, abort
from flask_jwt_extended import jwt_required
from sqlalchemy import func, select
from backoffice import get_db
from backoffice.constants.roles import ALL_PAGES, PAGE_FINANCE, PAGE_PETTY_CASH, PAGE_PURCHASE_ORDERS
from backoffice.errors import PermissionDeniedError
from backoffice.models.purchase_order import PettyCashRequest, PurchaseOrder
from backoffice.services.branch_access import allowed_branches, apply_branch_filter, scope_json
from backoffice.services.identity import load_current_user
from backoffice.services.permissions import permission_store

dashboard_bp = Blueprint('dashboard', __name__)


def _count(model, scope, *criteria):
    q = select(func.count(model.id)).where(model.is_active.is_(True), *criteria)
    return get_db().execute(apply_branch_filter(q, model.branch_code, scope)).scalar_one()


@dashboard_bp.get('/dashboard')
@jwt_required()
def dashboard():
    """Landing data: reachable pages plus open-work counters for pages the role can open."""
    try:
        user = load_current_user()
    except PermissionDeniedError as e:
        abort(403, description=e.detail)
    scope = allowed_branches(user)
    pages = permission_store.accessible_pages(user.role, ALL_PAGES)
    counters = {}
    if PAGE_PURCHASE_ORDERS in pages:
        counters['open_purchase_orders'] = _count(
            PurchaseOrder, scope, PurchaseOrder.status.in_((PurchaseOrder.STATUS_PENDING, PurchaseOrder.STATUS_ORDERED)))
    if PAGE_PETTY_CASH in pages:
        counters['pending_petty_cash'] = _count(
            PettyCashRequest, scope, PettyCashRequest.status == PettyCashRequest.STATUS_PENDING)
    if PAGE_FINANCE in pages:
        counters['received_outside_bulk'] = _count(
            PurchaseOrder, scope, PurchaseOrder.bulk_payment_ref.is_(None),
            PurchaseOrder.status == PurchaseOrder.STATUS_RECEIVED)
    return {
        'user': {'id': user.id, 'name': user.name, 'role': user.role},
        'branches': scope_json(scope),
        'pages': pages,
        'counters': counters,
    }
