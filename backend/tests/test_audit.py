from datetime import date
from decimal import Decimal
import pytest
from sqlalchemy.exc import SQLAlchemyError
from backoffice import get_db
from backoffice.errors import NotFoundError, ValidationError
from backoffice.models.audit import AuditLog
from backoffice.models.authz import Branch, User
from backoffice.models.payment import POPayment
from backoffice.models.purchase_order import PurchaseOrder
from backoffice.services import audit as audit_service
from backoffice.services.audit import (
    audit_history, delete_audited, get_or_404, insert_audited, soft_delete_audited, update_audited,
)
from backoffice.services.identity import Actor
from tests.test_utils_seed import create_po, ensure_branch, ensure_user, grant_page, jwt_headers, reload

ACTOR = Actor(id=42, name='Auditor')


def test_insert_writes_insert_entry_and_stamps(app_context):
    b = insert_audited(Branch, {'code': 'AU-INS', 'name': 'Insert'}, ACTOR)
    assert b.id is not None
    assert b.created_by == 42 and b.updated_by == 42
    entry = audit_history('branches', b.id)[0]
    assert entry.action == 'INSERT'
    assert entry.old_values is None
    assert entry.new_values['code'] == 'AU-INS'
    assert entry.user_id == 42 and entry.user_name == 'Auditor'


def test_update_keeps_previous_snapshot(app_context):
    b = insert_audited(Branch, {'code': 'AU-UPD', 'name': 'Before', 'city': 'Jakarta'}, ACTOR)
    count = update_audited(Branch, {'name': 'After'}, {'id': b.id}, ACTOR)
    assert count == 1
    entry = audit_history('branches', b.id)[0]
    assert entry.action == 'UPDATE'
    assert entry.old_values['name'] == 'Before'
    assert entry.new_values['name'] == 'After'
    assert entry.new_values['city'] == 'Jakarta'
    assert entry.new_values['code'] == 'AU-UPD'
    assert entry.new_values['updated_by'] == 42
    assert reload(Branch, b.id).name == 'After'


def test_update_without_actor_uses_unknown_user(app_context):
    b = insert_audited(Branch, {'code': 'AU-ANON', 'name': 'Anon'})
    update_audited(Branch, {'city': 'Bandung'}, {'code': 'AU-ANON'})
    entry = audit_history('branches', b.id)[0]
    assert entry.user_id is None
    assert entry.user_name == 'Unknown User'


def test_update_matching_nothing_writes_no_audit(app_context):
    before = get_db().query(AuditLog).count()
    assert update_audited(Branch, {'name': 'x'}, {'code': 'AU-MISSING'}, ACTOR) == 0
    assert get_db().query(AuditLog).count() == before


def test_soft_delete_keeps_row(app_context):
    b = insert_audited(Branch, {'code': 'AU-DEL', 'name': 'Gone'}, ACTOR)
    assert soft_delete_audited(Branch, {'id': b.id}, ACTOR) == 1
    row = reload(Branch, b.id)
    assert row is not None and row.is_active is False
    entry = audit_history('branches', b.id)[0]
    assert entry.action == 'DELETE'
    assert entry.old_values['is_active'] is True


def test_match_criteria_validated(app_context):
    with pytest.raises(ValidationError):
        update_audited(Branch, {'name': 'x'}, {}, ACTOR)
    with pytest.raises(ValidationError):
        update_audited(Branch, {'name': 'x'}, {'no_such_column': 1}, ACTOR)


def test_password_hash_never_audited(app_context):
    u = insert_audited(User, {'email': 'au_pw@example.com', 'name': 'Pw', 'password_hash': 'secret'}, ACTOR)
    entry = audit_history('users', u.id)[0]
    assert 'password_hash' not in entry.new_values
    update_audited(User, {'password_hash': 'other'}, {'id': u.id}, ACTOR)
    entry = audit_history('users', u.id)[0]
    assert 'password_hash' not in entry.old_values
    assert 'password_hash' not in entry.new_values


def _broken_audit_log(error):
    class _BrokenAuditLog:
        ACTION_INSERT = AuditLog.ACTION_INSERT
        ACTION_UPDATE = AuditLog.ACTION_UPDATE
        ACTION_DELETE = AuditLog.ACTION_DELETE

        def __init__(self, **kwargs):
            raise error
    return _BrokenAuditLog


@pytest.mark.parametrize('code,error', [
    ('AU-BEST-DB', SQLAlchemyError('audit table unavailable')),
    ('AU-BEST-BUG', TypeError('unexpected audit payload')),
])
def test_audit_failure_does_not_undo_primary_write(app_context, monkeypatch, code, error):
    monkeypatch.setattr(audit_service, 'AuditLog', _broken_audit_log(error))
    b = insert_audited(Branch, {'code': code, 'name': 'Best effort'}, ACTOR)
    assert reload(Branch, b.id) is not None
    assert update_audited(Branch, {'name': 'Still works'}, {'id': b.id}, ACTOR) == 1
    assert reload(Branch, b.id).name == 'Still works'
    monkeypatch.undo()
    assert audit_history('branches', b.id) == []


def test_hard_delete_for_compensations(app_context):
    ensure_branch('AU-PAY')
    po = create_po('AU-PO-HARD', 'AU-PAY')
    payment = insert_audited(POPayment, {
        'po_id': po.id, 'payment_date': date(2024, 2, 1), 'payment_amount': Decimal('25.00'),
    }, ACTOR)
    assert delete_audited(POPayment, {'id': payment.id}, ACTOR) == 1
    assert reload(POPayment, payment.id) is None
    entry = audit_history('po_payments', payment.id)[0]
    assert entry.action == 'DELETE' and entry.new_values is None
    assert entry.old_values['payment_amount'] == '25.00'
    assert reload(PurchaseOrder, po.id) is not None


def test_get_or_404(app_context):
    with pytest.raises(NotFoundError):
        get_or_404(Branch, 999999)


def test_history_newest_first(app_context):
    b = insert_audited(Branch, {'code': 'AU-HIST', 'name': 'v1'}, ACTOR)
    update_audited(Branch, {'name': 'v2'}, {'id': b.id}, ACTOR)
    update_audited(Branch, {'name': 'v3'}, {'id': b.id}, ACTOR)
    actions = [(e.action, (e.new_values or {}).get('name')) for e in audit_history('branches', b.id)]
    assert actions == [('UPDATE', 'v3'), ('UPDATE', 'v2'), ('INSERT', 'v1')]


def test_audit_log_endpoint_admin_only(app_context):
    client = app_context.test_client()
    admin = ensure_user('au_admin@example.com', role='admin')
    staff = ensure_user('au_staff@example.com', role='staff')
    b = insert_audited(Branch, {'code': 'AU-HTTP', 'name': 'Http'}, ACTOR)
    resp = client.get(f'/audit-log/branches/{b.id}', headers=jwt_headers(admin))
    assert resp.status_code == 200
    assert resp.get_json()['data'][0]['action'] == 'INSERT'
    resp = client.get('/audit-log?table_name=branches', headers=jwt_headers(staff))
    assert resp.status_code == 302
