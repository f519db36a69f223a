from app.core.security import hash_password, verify_password
from app.models import User, UserSession

from conftest import PASSWORD, auth_headers, make_user


def test_password_hash_round_trip():
    encoded = hash_password('s3cret-pass')

    assert encoded.startswith('pbkdf2_sha256$')
    assert verify_password('s3cret-pass', encoded)
    assert not verify_password('wrong-pass', encoded)
    assert not verify_password('s3cret-pass', 'garbage')


def test_register_grants_default_role_and_issues_tokens(client, db):
    response = client.post(
        '/api/v1/auth/register',
        json={'email': ' New.User@Example.com ', 'password': 'longenough1', 'first_name': 'New'},
    )

    assert response.status_code == 201
    body = response.json()
    assert body['user']['email'] == 'new.user@example.com'
    assert [role['name'] for role in body['user']['roles']] == ['FREE_USER']
    assert 'subscriptions:read' in body['user']['permissions']
    assert body['access_token'] and body['refresh_token']
    assert body['token_type'] == 'bearer'


def test_register_rejects_duplicate_email(client, db):
    make_user(db, 'taken@example.com')

    response = client.post('/api/v1/auth/register', json={'email': 'taken@example.com', 'password': 'longenough1'})

    assert response.status_code == 400


def test_register_rejects_short_password(client):
    response = client.post('/api/v1/auth/register', json={'email': 'short@example.com', 'password': 'abc'})

    assert response.status_code == 422


def test_login_with_wrong_password_is_rejected(client, db):
    make_user(db, 'login@example.com')

    response = client.post('/api/v1/auth/login', json={'email': 'login@example.com', 'password': 'nope-nope'})

    assert response.status_code == 400
    assert response.json() == {'detail': 'Invalid credentials'}


def test_login_for_inactive_account_is_401(client, db):
    make_user(db, 'dormant@example.com', status='inactive')

    response = client.post('/api/v1/auth/login', json={'email': 'dormant@example.com', 'password': PASSWORD})

    assert response.status_code == 401


def test_login_then_me(client, db):
    make_user(db, 'me@example.com', roles=['Analyst'])

    login = client.post('/api/v1/auth/login', json={'email': 'ME@example.com', 'password': PASSWORD})
    assert login.status_code == 200
    token = login.json()['access_token']

    me = client.get('/api/v1/auth/me', headers={'Authorization': f'Bearer {token}'})

    assert me.status_code == 200
    assert me.json()['user']['email'] == 'me@example.com'
    assert 'analytics:export' in me.json()['user']['permissions']


def test_refresh_rotates_the_session(client, db):
    make_user(db, 'rotate@example.com')
    login = client.post('/api/v1/auth/login', json={'email': 'rotate@example.com', 'password': PASSWORD}).json()

    refreshed = client.post('/api/v1/auth/refresh', json={'refresh_token': login['refresh_token']})
    assert refreshed.status_code == 200
    assert refreshed.json()['refresh_token'] != login['refresh_token']

    replay = client.post('/api/v1/auth/refresh', json={'refresh_token': login['refresh_token']})
    assert replay.status_code == 401


def test_access_token_is_not_accepted_as_refresh_token(client, db):
    user = make_user(db, 'mixup@example.com')
    token = auth_headers(user)['Authorization'].split(' ', 1)[1]

    response = client.post('/api/v1/auth/refresh', json={'refresh_token': token})

    assert response.status_code == 401


def test_logout_drops_the_refresh_session(client, db):
    make_user(db, 'bye@example.com')
    login = client.post('/api/v1/auth/login', json={'email': 'bye@example.com', 'password': PASSWORD}).json()

    response = client.post('/api/v1/auth/logout', json={'refresh_token': login['refresh_token']})

    assert response.status_code == 200
    assert db.query(UserSession).filter(UserSession.refresh_token == login['refresh_token']).count() == 0


def test_password_reset_does_not_reveal_unknown_email(client, db):
    make_user(db, 'known@example.com')

    known = client.post('/api/v1/auth/password/reset', json={'email': 'known@example.com'})
    unknown = client.post('/api/v1/auth/password/reset', json={'email': 'ghost@example.com'})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()


def test_password_reset_completes_with_issued_token(client, db):
    user = make_user(db, 'forgot@example.com')
    client.post('/api/v1/auth/password/reset', json={'email': 'forgot@example.com'})
    db.expire_all()
    token = db.get(User, user.id).password_reset_token

    response = client.put('/api/v1/auth/password/reset', json={'token': token, 'new_password': 'brand-new-pass'})

    assert response.status_code == 200
    login = client.post('/api/v1/auth/login', json={'email': 'forgot@example.com', 'password': 'brand-new-pass'})
    assert login.status_code == 200

    reuse = client.put('/api/v1/auth/password/reset', json={'token': token, 'new_password': 'another-pass'})
    assert reuse.status_code == 400


def test_non_admin_cannot_change_own_roles(client, db):
    user = make_user(db, 'sneaky@example.com', roles=['FREE_USER'])

    response = client.put(f'/api/v1/users/{user.id}', json={'role_ids': []}, headers=auth_headers(user))

    assert response.status_code == 403


def test_admin_cannot_delete_self(client, db):
    admin = make_user(db, 'root@example.com', roles=['Admin'])

    response = client.delete(f'/api/v1/users/{admin.id}', headers=auth_headers(admin))

    assert response.status_code == 400


def test_admin_deletes_user(client, db):
    admin = make_user(db, 'root2@example.com', roles=['Admin'])
    target = make_user(db, 'leaving@example.com', roles=['FREE_USER'])

    response = client.delete(f'/api/v1/users/{target.id}', headers=auth_headers(admin))

    assert response.status_code == 200
    db.expire_all()
    assert db.get(User, target.id) is None
