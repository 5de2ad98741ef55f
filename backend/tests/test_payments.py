from datetime import date
from decimal import Decimal
from sqlalchemy import select
from backoffice import get_db
from backoffice.errors import PaymentError
from backoffice.models.payment import BulkPayment, POPayment
from backoffice.models.purchase_order import PurchaseOrder
from backoffice.services import payments
from backoffice.services.payments import (
    BulkPaymentRequest, PaymentRequest, amount_paid, bulk_members, execute_bulk_payment,
    execute_single_payment, finance_summary, generate_bulk_reference, outstanding_balance,
    rollback_bulk_payment, rollback_single_payment,
)
from tests.test_utils_seed import create_po, ensure_branch, grant_crud, grant_page, jwt_headers, reload, seed_user_with_branches


def _orders(prefix, count, branch='PAY-1', amount='100.00'):
    ensure_branch(branch)
    return [create_po(f'{prefix}-{i}', branch, total_amount=amount) for i in range(1, count + 1)]


def _refs(pos):
    return [reload(PurchaseOrder, po.id).bulk_payment_ref for po in pos]


def _bulk_exists(reference):
    return get_db().execute(select(BulkPayment.id).where(BulkPayment.bulk_reference == reference)).first() is not None


def test_bulk_payment_tags_every_order(app_context):
    pos = _orders('BP-OK', 3)
    batch = BulkPaymentRequest('BULK-TEST-OK', Decimal('300.00'), date(2024, 2, 1), [p.id for p in pos])
    result = execute_bulk_payment(batch)
    assert result.success is True and result.record_id is not None
    assert _refs(pos) == ['BULK-TEST-OK'] * 3
    assert [p.id for p in bulk_members('BULK-TEST-OK')] == [p.id for p in pos]


def test_failure_midway_leaves_nothing_behind(app_context, monkeypatch):
    pos = _orders('BP-FAIL', 5)
    real_tag = payments._tag_order
    calls = {'n': 0}

    def flaky_tag(session, po_id, reference):
        calls['n'] += 1
        if calls['n'] == 3:
            raise PaymentError(f'purchase order {po_id} could not be tagged with {reference}')
        real_tag(session, po_id, reference)

    monkeypatch.setattr(payments, '_tag_order', flaky_tag)
    batch = BulkPaymentRequest('BULK-TEST-FAIL', Decimal('500.00'), date(2024, 2, 1), [p.id for p in pos])
    result = execute_bulk_payment(batch)
    assert result.success is False
    assert 'could not be tagged' in result.error
    assert _refs(pos) == [None] * 5
    assert not _bulk_exists('BULK-TEST-FAIL')


def test_already_tagged_order_is_named_and_nothing_written(app_context):
    pos = _orders('BP-DUP', 3)
    first = execute_bulk_payment(BulkPaymentRequest('BULK-TEST-FIRST', Decimal('100'), date(2024, 2, 1), [pos[1].id]))
    assert first.success
    result = execute_bulk_payment(BulkPaymentRequest('BULK-TEST-SECOND', Decimal('300'), date(2024, 2, 1), [p.id for p in pos]))
    assert result.success is False
    assert 'BP-DUP-2' in result.error
    assert 'BP-DUP-1' not in result.error
    assert not _bulk_exists('BULK-TEST-SECOND')
    assert _refs(pos) == [None, 'BULK-TEST-FIRST', None]


def test_batch_validation_errors(app_context):
    pos = _orders('BP-VAL', 1)
    assert execute_bulk_payment(BulkPaymentRequest('BULK-TEST-EMPTY', Decimal('1'), date(2024, 2, 1), [])).error == \
        'no purchase orders selected'
    assert execute_bulk_payment(BulkPaymentRequest('', Decimal('1'), date(2024, 2, 1), [pos[0].id])).error == \
        'bulk reference required'
    missing = execute_bulk_payment(BulkPaymentRequest('BULK-TEST-MISS', Decimal('1'), date(2024, 2, 1), [pos[0].id, 999999]))
    assert missing.error == 'some purchase orders were not found or are inactive'
    assert execute_bulk_payment(BulkPaymentRequest('BULK-TEST-REUSE', Decimal('1'), date(2024, 2, 1), [pos[0].id])).success
    more = _orders('BP-VAL2', 1)
    reused = execute_bulk_payment(BulkPaymentRequest('BULK-TEST-REUSE', Decimal('1'), date(2024, 2, 1), [more[0].id]))
    assert 'already exists' in reused.error
    assert _refs(more) == [None]


def test_rollback_bulk_payment_releases_orders(app_context):
    pos = _orders('BP-RB', 2)
    assert execute_bulk_payment(BulkPaymentRequest('BULK-TEST-RB', Decimal('200'), date(2024, 2, 1), [p.id for p in pos])).success
    result = rollback_bulk_payment('BULK-TEST-RB')
    assert result.success is True
    assert _refs(pos) == [None, None]
    assert not _bulk_exists('BULK-TEST-RB')
    assert rollback_bulk_payment('BULK-TEST-RB').success is False


def test_generate_bulk_reference_sequence(app_context):
    today = date(2031, 5, 6)
    assert generate_bulk_reference(today) == 'BULK-20310506-001'
    pos = _orders('BP-SEQ', 1)
    execute_bulk_payment(BulkPaymentRequest('BULK-20310506-001', Decimal('1'), today, [pos[0].id]))
    assert generate_bulk_reference(today) == 'BULK-20310506-002'


def test_single_payment_and_outstanding(app_context):
    (po,) = _orders('SP-OK', 1, amount='250.00')
    result = execute_single_payment(PaymentRequest(po.id, date(2024, 2, 1), Decimal('100.00')))
    assert result.success is True
    assert amount_paid(po.id) == Decimal('100')
    assert outstanding_balance(reload(PurchaseOrder, po.id)) == Decimal('150')
    over = execute_single_payment(PaymentRequest(po.id, date(2024, 2, 2), Decimal('150.01')))
    assert over.success is False
    assert over.error == 'payment amount exceeds outstanding balance: 150.00'
    assert execute_single_payment(PaymentRequest(po.id, date(2024, 2, 2), Decimal('150.00'))).success
    assert outstanding_balance(reload(PurchaseOrder, po.id)) == Decimal('0')


def test_single_payment_rejections(app_context):
    (po,) = _orders('SP-REJ', 1)
    assert execute_single_payment(PaymentRequest(po.id, date(2024, 2, 1), Decimal('0'))).error == 'payment amount must be positive'
    assert execute_single_payment(PaymentRequest(999999, date(2024, 2, 1), Decimal('1'))).success is False
    execute_bulk_payment(BulkPaymentRequest('BULK-TEST-SP', Decimal('100'), date(2024, 2, 1), [po.id]))
    tagged = execute_single_payment(PaymentRequest(po.id, date(2024, 2, 1), Decimal('1')))
    assert tagged.success is False and 'BULK-TEST-SP' in tagged.error


def test_rollback_single_payment(app_context):
    (po,) = _orders('SP-RB', 1)
    result = execute_single_payment(PaymentRequest(po.id, date(2024, 2, 1), Decimal('40')))
    assert rollback_single_payment(result.record_id).success is True
    assert get_db().get(POPayment, result.record_id) is None
    assert amount_paid(po.id) == Decimal('0')
    assert rollback_single_payment(result.record_id).error == f'payment {result.record_id} not found'


def test_finance_summary_respects_scope(app_context):
    (po,) = _orders('FS-A', 1, branch='FS-1', amount='80.00')
    _orders('FS-B', 1, branch='FS-2', amount='90.00')
    rows = finance_summary(frozenset({'FS-1'}))
    assert {r['po_number'] for r in rows} == {'FS-A-1'}
    execute_single_payment(PaymentRequest(po.id, date(2024, 2, 1), Decimal('80.00')))
    assert finance_summary(frozenset({'FS-1'}), only_outstanding=True) == []


def test_bulk_payment_endpoint_conflict(app_context):
    client = app_context.test_client()
    grant_page('finance', 'finance')
    grant_crud('finance', 'finance', create=True, edit=True, delete=True)
    pos = _orders('BP-HTTP', 2)
    user = seed_user_with_branches('pay_finance@example.com', 'finance', ['PAY-1'])
    headers = jwt_headers(user)
    resp = client.post('/finance/bulk-payments', json={
        'po_ids': [pos[0].id], 'total_amount': '100.00', 'payment_date': '2024-02-01',
    }, headers=headers)
    assert resp.status_code == 201
    reference = resp.get_json()['bulk_reference']
    assert reference.startswith('BULK-')
    resp = client.post('/finance/bulk-payments', json={
        'po_ids': [p.id for p in pos], 'total_amount': '200.00', 'payment_date': '2024-02-01',
    }, headers=headers)
    assert resp.status_code == 409
    assert 'BP-HTTP-1' in resp.get_json()['error']['detail']
    assert client.post(f'/finance/bulk-payments/{reference}/rollback', headers=headers).status_code == 200
    assert _refs(pos) == [None, None]


def test_bulk_payment_outside_scope_is_hidden(app_context):
    client = app_context.test_client()
    grant_page('finance', 'finance')
    grant_crud('finance', 'finance', create=True, edit=True, delete=True)
    pos = _orders('BP-OTHER', 1, branch='PAY-SCOPE-B')
    result = execute_bulk_payment(BulkPaymentRequest('BULK-OTHER-B', Decimal('100.00'), date(2024, 2, 1), [pos[0].id]))
    assert result.success is True
    user = seed_user_with_branches('pay_scoped@example.com', 'finance', ['PAY-SCOPE-A'])
    headers = jwt_headers(user)
    assert client.get('/finance/bulk-payments/BULK-OTHER-B', headers=headers).status_code == 404
    assert client.post('/finance/bulk-payments/BULK-OTHER-B/rollback', headers=headers).status_code == 404
    assert _refs(pos) == ['BULK-OTHER-B']
    assert _bulk_exists('BULK-OTHER-B')
