import pytest
from backoffice.models.payment import PaymentTerm
from backoffice.models.purchase_order import PurchaseOrder
from backoffice.routes.purchase_orders import PO_FSM
from backoffice.errors import ValidationError
from backoffice.services.audit import audit_history
from tests.test_utils_seed import (
    create_po, create_term, ensure_branch, ensure_user, grant_crud, grant_page, jwt_headers, reload,
    seed_user_with_branches,
)


@pytest.fixture()
def pic_headers(app_context):
    grant_page('pic_branch', 'purchaseorder')
    grant_crud('pic_branch', 'purchaseorder', create=True, edit=True)
    user = seed_user_with_branches('po_pic@example.com', 'pic_branch', ['PO-B1'], name='Pic One')
    return jwt_headers(user)


def test_transition_validator_blocks_invalid():
    assert PO_FSM.assert_can_transition('PENDING', 'ORDERED') is True
    with pytest.raises(ValidationError):
        PO_FSM.assert_can_transition('RECEIVED', 'PENDING')
    with pytest.raises(ValidationError):
        PO_FSM.assert_can_transition('PENDING', 'LOST')


def test_purchase_order_lifecycle_with_delivery_term(app_context, pic_headers):
    client = app_context.test_client()
    term = create_term('PO delivery 10', PaymentTerm.FROM_DELIVERY, days=10)
    resp = client.post('/po/purchase-orders', json={
        'po_number': 'PO-LIFE-1', 'branch_code': 'PO-B1', 'supplier_name': 'Sayur Segar',
        'po_date': '2024-03-01', 'payment_term_id': term.id, 'total_amount': '1500000',
    }, headers=pic_headers)
    assert resp.status_code == 201
    body = resp.get_json()
    po_id = body['id']
    assert body['due_date'] is None
    assert body['total_amount'] == '1500000.00'

    assert client.post(f'/po/purchase-orders/{po_id}/transition', json={'status': 'ORDERED'}, headers=pic_headers).status_code == 200
    # Receiving goes through its own endpoint
    assert client.post(f'/po/purchase-orders/{po_id}/transition', json={'status': 'RECEIVED'}, headers=pic_headers).status_code == 400
    resp = client.post(f'/po/purchase-orders/{po_id}/receive', json={'delivered_at': '2024-03-05'}, headers=pic_headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['status'] == 'RECEIVED'
    assert body['due_date'] == '2024-03-15'
    # Receive again invalid
    assert client.post(f'/po/purchase-orders/{po_id}/receive', headers=pic_headers).status_code == 400
    actions = [e.action for e in audit_history('purchase_orders', po_id)]
    assert actions[-1] == 'INSERT' and 'UPDATE' in actions


def test_invoice_term_sets_due_date_on_create_and_edit(app_context, pic_headers):
    client = app_context.test_client()
    term = create_term('PO invoice 14', PaymentTerm.FROM_INVOICE, days=14)
    resp = client.post('/po/purchase-orders', json={
        'po_number': 'PO-INV-1', 'branch_code': 'PO-B1', 'supplier_name': 'S',
        'po_date': '2024-03-01', 'payment_term_id': term.id,
    }, headers=pic_headers)
    po_id = resp.get_json()['id']
    assert resp.get_json()['due_date'] == '2024-03-15'
    resp = client.patch(f'/po/purchase-orders/{po_id}', json={'po_date': '2024-04-01'}, headers=pic_headers)
    assert resp.get_json()['due_date'] == '2024-04-15'


def test_create_validation(app_context, pic_headers):
    client = app_context.test_client()
    base = {'po_number': 'PO-VAL-1', 'branch_code': 'PO-B1', 'supplier_name': 'S', 'po_date': '2024-03-01'}
    assert client.post('/po/purchase-orders', json={**base, 'po_date': 'yesterday'}, headers=pic_headers).status_code == 400
    assert client.post('/po/purchase-orders', json={**base, 'payment_term_id': 987654}, headers=pic_headers).status_code == 400
    assert client.post('/po/purchase-orders', json={**base, 'total_amount': '-5'}, headers=pic_headers).status_code == 400
    assert client.post('/po/purchase-orders', json=base, headers=pic_headers).status_code == 201
    assert client.post('/po/purchase-orders', json=base, headers=pic_headers).status_code == 400


def test_delete_requires_grant_and_is_soft(app_context, pic_headers):
    client = app_context.test_client()
    po = create_po('PO-DEL-1', 'PO-B1')
    # pic_branch has no delete grant
    assert client.delete(f'/po/purchase-orders/{po.id}', headers=pic_headers).status_code == 403
    admin = ensure_user('po_admin@example.com', role='admin')
    grant_page('admin', 'purchaseorder')
    grant_crud('admin', 'purchaseorder', create=True, edit=True, delete=True)
    assert client.delete(f'/po/purchase-orders/{po.id}', headers=jwt_headers(admin)).status_code == 200
    assert reload(PurchaseOrder, po.id).is_active is False
    assert client.get(f'/po/purchase-orders/{po.id}', headers=jwt_headers(admin)).status_code == 404


def test_bulk_tagged_order_amount_is_fixed(app_context, pic_headers):
    client = app_context.test_client()
    ensure_branch('PO-B1')
    po = create_po('PO-BULK-1', 'PO-B1', bulk_payment_ref='BULK-FIXED-1')
    resp = client.patch(f'/po/purchase-orders/{po.id}', json={'total_amount': '1'}, headers=pic_headers)
    assert resp.status_code == 400
    assert 'BULK-FIXED-1' in resp.get_json()['error']['detail']
