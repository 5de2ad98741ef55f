import pytest
from backoffice import get_db
from backoffice.errors import ValidationError
from backoffice.models.authz import CrudPermission, PagePermission
from backoffice.services.permissions import PermissionStore, page_key, permission_store
from tests.test_utils_seed import ensure_user, grant_crud, grant_page, jwt_headers


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_page_key_strips_slashes_and_subpaths():
    assert page_key('/esb') == 'esb'
    assert page_key('/purchaseorder/create') == 'purchaseorder'
    assert page_key('') == ''
    assert page_key(None) == ''


def test_missing_row_denies_access(app_context):
    assert permission_store.can_access('perm_nobody', 'users') is False
    assert permission_store.visible_columns('perm_nobody', 'users', ['a', 'b']) == []


def test_dashboard_and_super_admin_always_allowed(app_context):
    assert permission_store.can_access('perm_nobody', 'dashboard') is True
    assert permission_store.can_access('perm_nobody', '/dashboard') is True
    assert permission_store.can_access('super admin', 'anything-at-all') is True
    assert permission_store.can_access('superadmin', 'users') is True
    assert permission_store.can_perform_action('super admin', 'finance', 'delete') is True


def test_empty_role_denied(app_context):
    assert permission_store.can_access(None, 'users') is False
    assert permission_store.can_access('', 'esb') is False


def test_column_restrictions(app_context):
    grant_page('perm_admin_cols', 'esb', ['branch', 'qty', 'sales'])
    assert permission_store.can_access('perm_admin_cols', '/esb') is True
    assert permission_store.can_view_column('perm_admin_cols', 'esb', 'qty') is True
    assert permission_store.can_view_column('perm_admin_cols', 'esb', 'price_hash') is False
    cols = permission_store.visible_columns('perm_admin_cols', 'esb', ['price_hash', 'sales', 'branch'])
    assert cols == ['sales', 'branch']


def test_wildcard_columns(app_context):
    grant_page('perm_wild', 'gudang', ['*'])
    assert permission_store.can_view_column('perm_wild', 'gudang', 'anything') is True


def test_access_flag_false_denies(app_context):
    grant_page('perm_off', 'esb', ['*'], can_access=False)
    assert permission_store.can_access('perm_off', 'esb') is False
    assert permission_store.can_view_column('perm_off', 'esb', 'qty') is False


def test_write_clears_cache_immediately(app_context):
    assert permission_store.can_access('perm_flip', 'gudang') is False
    grant_page('perm_flip', 'gudang')
    assert permission_store.can_access('perm_flip', 'gudang') is True
    grant_page('perm_flip', 'gudang', can_access=False)
    assert permission_store.can_access('perm_flip', 'gudang') is False


def test_cache_honours_ttl(app_context):
    clock = FakeClock()
    store = PermissionStore(ttl_seconds=300, clock=clock)
    assert store.can_access('perm_ttl', 'produksi') is False
    # Written behind the store's back: cached deny survives until expiry
    session = get_db()
    session.add(PagePermission(role='perm_ttl', page='produksi', columns=['*'], can_access=True))
    session.commit()
    clock.now += 299
    assert store.can_access('perm_ttl', 'produksi') is False
    clock.now += 2
    assert store.can_access('perm_ttl', 'produksi') is True


def test_crud_role_row_and_user_override(app_context):
    grant_crud('perm_crud', 'purchaseorder', create=True, edit=False, delete=False)
    assert permission_store.can_perform_action('perm_crud', 'purchaseorder', 'create') is True
    assert permission_store.can_perform_action('perm_crud', 'purchaseorder', 'edit') is False
    user = ensure_user('perm_override@example.com', role='perm_crud')
    grant_crud('perm_crud', 'purchaseorder', create=False, edit=True, delete=False, user_id=user.id)
    assert permission_store.can_perform_action('perm_crud', 'purchaseorder', 'edit', user.id) is True
    assert permission_store.can_perform_action('perm_crud', 'purchaseorder', 'create', user.id) is False
    # Other users of the role keep the role row
    assert permission_store.can_perform_action('perm_crud', 'purchaseorder', 'create', user.id + 1000) is True


def test_unknown_action_rejected(app_context):
    with pytest.raises(ValueError):
        permission_store.can_perform_action('perm_crud', 'purchaseorder', 'approve')


def test_capabilities_combine_both_tables(app_context):
    grant_page('perm_caps', 'pettycash')
    grant_crud('perm_caps', 'pettycash', create=True)
    assert permission_store.capabilities('perm_caps', 'pettycash') == {'view', 'create'}


def test_update_requires_role_and_page(app_context):
    with pytest.raises(ValidationError):
        permission_store.update_page_permission('', 'esb', ['*'])
    with pytest.raises(ValidationError):
        permission_store.update_crud_permission('staff', '/')


def test_upsert_keeps_single_row(app_context):
    grant_page('perm_upsert', 'esb', ['a'])
    grant_page('perm_upsert', 'esb', ['b', 'b'])
    rows = get_db().query(PagePermission).filter_by(role='perm_upsert', page='esb').all()
    assert len(rows) == 1 and rows[0].columns == ['b']
    grant_crud('perm_upsert', 'esb', create=True)
    grant_crud('perm_upsert', 'esb', delete=True)
    crud = get_db().query(CrudPermission).filter_by(role='perm_upsert', page='esb').all()
    assert len(crud) == 1 and crud[0].can_delete and not crud[0].can_create


def test_access_endpoint_reports_checks(app_context):
    client = app_context.test_client()
    grant_page('perm_http', 'esb', ['qty'])
    grant_crud('perm_http', 'esb', edit=True)
    user = ensure_user('perm_http@example.com', role='perm_http')
    headers = jwt_headers(user)
    body = client.get('/iam/auth/access?page=esb&column=price_hash&action=edit', headers=headers).get_json()
    assert body['can_access'] is True
    assert body['can_view_column'] is False
    assert body['can_perform_action'] is True


def test_permission_admin_requires_admin_role(app_context):
    client = app_context.test_client()
    staff = ensure_user('perm_staff_http@example.com', role='staff')
    resp = client.put('/permissions/pages', json={'role': 'staff', 'page': 'users'}, headers=jwt_headers(staff))
    # The gate sends non-admins away before the handler runs
    assert resp.status_code == 302
    assert resp.headers['Location'].endswith('/dashboard')


def test_permission_admin_writes_and_reads(app_context):
    client = app_context.test_client()
    admin = ensure_user('perm_admin_http@example.com', role='admin')
    headers = jwt_headers(admin)
    resp = client.put('/permissions/pages', json={'role': 'guest', 'page': 'gudang', 'columns': ['qty']}, headers=headers)
    assert resp.status_code == 200
    resp = client.put('/permissions/crud', json={'role': 'guest', 'page': 'gudang', 'can_edit': True}, headers=headers)
    assert resp.status_code == 200
    body = client.get('/permissions/guest', headers=headers).get_json()
    assert 'gudang' in body['accessible_pages']
    assert permission_store.can_perform_action('guest', 'gudang', 'edit') is True
