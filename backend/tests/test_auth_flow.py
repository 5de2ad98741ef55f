from backoffice import get_db
from backoffice.models.authz import User
from tests.test_utils_seed import ensure_user, grant_crud, grant_page, jwt_headers, seed_user_with_branches


def _login(client, email, password='pw'):
    return client.post('/iam/auth/login', json={'email': email, 'password': password})


def test_login_and_me(client, app_instance):
    with app_instance.app_context():
        seed_user_with_branches('auth_pic@example.com', 'pic_branch', ['AU-B1'], name='Pic')
    resp = _login(client, 'auth_pic@example.com')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['user']['role'] == 'pic_branch'
    headers = {'Authorization': f"Bearer {body['access_token']}"}
    me = client.get('/iam/auth/me', headers=headers).get_json()
    assert me['email'] == 'auth_pic@example.com'
    assert me['branches'] == ['AU-B1']
    assert 'dashboard' in me['pages']


def test_login_sets_cookie_and_logout_clears_it(client, app_instance):
    with app_instance.app_context():
        ensure_user('auth_cookie@example.com', role='staff')
    resp = _login(client, 'auth_cookie@example.com')
    assert any('access_token_cookie=' in c for c in resp.headers.getlist('Set-Cookie'))
    resp = client.post('/iam/auth/logout')
    assert resp.status_code == 200
    assert any('access_token_cookie=;' in c for c in resp.headers.getlist('Set-Cookie'))


def test_bad_credentials(client, app_instance):
    with app_instance.app_context():
        ensure_user('auth_bad@example.com', role='staff')
    assert _login(client, 'auth_bad@example.com', 'wrong').status_code == 401
    assert client.post('/iam/auth/login', json={}).status_code == 400


def test_inactive_user_cannot_login_or_act(client, app_instance):
    with app_instance.app_context():
        user = ensure_user('auth_inactive@example.com', role='admin')
        headers = jwt_headers(user)
        get_db().query(User).filter_by(id=user.id).update({'is_active': False})
        get_db().commit()
    assert _login(client, 'auth_inactive@example.com').status_code == 401
    # An already issued token is refused where the users table is consulted
    assert client.get('/audit-log', headers=headers).status_code == 403


def test_role_assignment_rules(app_context):
    client = app_context.test_client()
    grant_page('admin', 'users')
    grant_crud('admin', 'users', create=True, edit=True, delete=True)
    grant_page('finance', 'users')
    grant_crud('finance', 'users', create=True, edit=True)
    admin = ensure_user('auth_admin@example.com', role='admin')
    finance = ensure_user('auth_fin@example.com', role='finance')
    resp = client.post('/iam/users', json={
        'email': 'auth_new_staff@example.com', 'name': 'New', 'password': 'pw', 'role': 'staff',
    }, headers=jwt_headers(admin))
    assert resp.status_code == 201
    new_id = resp.get_json()['id']
    # Admin may not mint a super admin
    resp = client.patch(f'/iam/users/{new_id}', json={'role': 'super admin'}, headers=jwt_headers(admin))
    assert resp.status_code == 403
    # Finance may edit users but not assign roles
    resp = client.patch(f'/iam/users/{new_id}', json={'role': 'admin'}, headers=jwt_headers(finance))
    assert resp.status_code == 403
    resp = client.patch(f'/iam/users/{new_id}', json={'phone': '0812'}, headers=jwt_headers(finance))
    assert resp.status_code == 200 and resp.get_json()['phone'] == '0812'


def test_delete_user_is_soft_and_not_self(app_context):
    client = app_context.test_client()
    grant_page('admin', 'users')
    grant_crud('admin', 'users', create=True, edit=True, delete=True)
    admin = ensure_user('auth_admin2@example.com', role='admin')
    victim = ensure_user('auth_victim@example.com', role='staff')
    headers = jwt_headers(admin)
    assert client.delete(f'/iam/users/{admin.id}', headers=headers).status_code == 400
    assert client.delete(f'/iam/users/{victim.id}', headers=headers).status_code == 200
    row = get_db().query(User).filter_by(id=victim.id).populate_existing().one()
    assert row.is_active is False


def test_users_page_denied_without_grant(app_context):
    client = app_context.test_client()
    grant_page('finance', 'users', can_access=False)
    finance = ensure_user('auth_fin_denied@example.com', role='finance')
    resp = client.get('/iam/users', headers=jwt_headers(finance))
    assert resp.status_code == 403
    grant_page('finance', 'users')
