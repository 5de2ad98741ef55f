"""Test seeding utilities to reduce duplication.

The test database is shared by the whole session, so callers pass unique
emails, branch codes and document numbers. Permission rows are written through
the permission store so its cache is cleared on every grant.
"""
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from flask_jwt_extended import create_access_token
from sqlalchemy import select
from backoffice import get_db
from backoffice.models.authz import Branch, User
from backoffice.models.payment import PaymentTerm
from backoffice.models.purchase_order import PurchaseOrder
from backoffice.services.branch_access import assign_branch
from backoffice.services.identity import identity_claims
from backoffice.services.permissions import permission_store


def ensure_user(email: str, role: str = 'staff', name: Optional[str] = None, password: str = 'pw',
                home_branch: Optional[str] = None) -> User:
    session = get_db()
    u = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not u:
        u = User(name=name or email.split('@')[0], email=email, password_hash='', role=role, home_branch=home_branch)
        u.set_password(password)
        session.add(u); session.commit(); session.refresh(u)
    return u


def ensure_branch(code: str, name: Optional[str] = None) -> Branch:
    session = get_db()
    b = session.execute(select(Branch).where(Branch.code == code)).scalar_one_or_none()
    if not b:
        b = Branch(code=code, name=name or code)
        session.add(b); session.commit()
    return b


def seed_user_with_branches(email: str, role: str, branch_codes: Iterable[str], name: Optional[str] = None) -> User:
    """High level convenience: user + active branches + assignments."""
    user = ensure_user(email, role=role, name=name)
    for code in branch_codes:
        ensure_branch(code)
        assign_branch(user.id, code)
    return user


def grant_page(role: str, page: str, columns: Iterable[str] = ('*',), can_access: bool = True):
    return permission_store.update_page_permission(role, page, columns, can_access)


def grant_crud(role: str, page: str, create: bool = False, edit: bool = False, delete: bool = False,
               user_id: Optional[int] = None):
    return permission_store.update_crud_permission(role, page, create, edit, delete, user_id)


def jwt_headers(user: User) -> dict:
    """Bearer header for ``user``; call inside an app context."""
    token = create_access_token(identity=str(user.id), additional_claims=identity_claims(user))
    return {'Authorization': f'Bearer {token}'}


def create_term(name: str, calculation_type: str = PaymentTerm.FROM_INVOICE, **fields) -> PaymentTerm:
    session = get_db()
    term = PaymentTerm(term_name=name, calculation_type=calculation_type, **fields)
    session.add(term); session.commit()
    return term


def create_po(po_number: str, branch_code: str, total_amount='100.00', po_date: date = date(2024, 1, 10),
              **fields) -> PurchaseOrder:
    session = get_db()
    po = PurchaseOrder(po_number=po_number, branch_code=branch_code, supplier_name=fields.pop('supplier_name', 'Supplier'),
                       po_date=po_date, total_amount=Decimal(str(total_amount)),
                       status=fields.pop('status', PurchaseOrder.STATUS_PENDING), **fields)
    session.add(po); session.commit()
    return po


def reload(model, record_id):
    """Fresh copy from the database, bypassing the identity map."""
    return get_db().execute(
        select(model).where(model.id == record_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()


__all__ = [
    'ensure_user', 'ensure_branch', 'seed_user_with_branches', 'grant_page', 'grant_crud', 'jwt_headers',
    'create_term', 'create_po', 'reload',
]
