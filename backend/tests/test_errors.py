from backoffice.errors import LockConflictError, PaymentError


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    assert resp.status_code == 404
    body = resp.get_json()
    assert body['error']['status'] == 404
    assert 'detail' in body['error']


def test_domain_error_shapes():
    body = LockConflictError('record is being edited by Alice', holder_name='Alice').to_dict()
    assert body == {'error': {'status': 409, 'title': 'Lock Conflict',
                              'detail': 'record is being edited by Alice', 'holder_name': 'Alice'}}
    assert PaymentError('nope').to_dict()['error']['status'] == 409


def test_internal_error_shape(app_instance, monkeypatch):
    import backoffice.routes.dashboard as dashboard_mod
    from tests.test_utils_seed import ensure_user, jwt_headers

    def boom(*a, **k):
        raise RuntimeError('explode')

    with app_instance.app_context():
        user = ensure_user('err_user@example.com', role='staff')
        headers = jwt_headers(user)
    monkeypatch.setattr(dashboard_mod, 'allowed_branches', boom)
    resp = app_instance.test_client().get('/dashboard', headers=headers)
    assert resp.status_code == 500
    assert resp.get_json() == {'error': {'status': 500, 'title': 'Internal Server Error', 'detail': 'Unexpected error'}}
