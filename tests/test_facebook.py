from app.models import AdAccount, FacebookAccount

from conftest import auth_headers, make_ad_account, make_user


def _connect_routes(graph_routes, accounts):
    graph_routes.add('GET', 'oauth/access_token', {'access_token': 'long-token', 'expires_in': 5184000})
    graph_routes.add(
        'GET',
        'me',
        {'id': 'fb-42', 'name': 'Dana Ads', 'email': 'dana@example.com', 'picture': {'data': {'url': 'https://pic'}}},
    )
    graph_routes.add('GET', 'me/adaccounts', {'data': accounts, 'paging': {}})


def test_callback_connects_account_and_stores_ad_accounts(client, db, graph_routes):
    user = make_user(db, 'connect@example.com', roles=['PAID_USER'])
    _connect_routes(
        graph_routes,
        [
            {'id': 'act_1', 'name': 'Brand A', 'currency': 'USD', 'timezone_name': 'America/New_York', 'account_status': 1},
            {'id': 'act_2', 'name': 'Brand B', 'currency': 'EUR'},
        ],
    )

    response = client.post('/api/v1/facebook/callback', json={'code': 'abc'}, headers=auth_headers(user))

    assert response.status_code == 200
    connected = response.json()['facebook_account']
    assert connected['facebook_user_id'] == 'fb-42'
    assert connected['has_valid_token'] is True
    assert sorted(a['facebook_ad_account_id'] for a in connected['ad_accounts']) == ['act_1', 'act_2']
    stored = db.query(FacebookAccount).filter(FacebookAccount.user_id == user.id).one()
    assert stored.access_token == 'long-token'
    assert stored.profile_picture_url == 'https://pic'


def test_reconnecting_updates_instead_of_duplicating(client, db, graph_routes):
    user = make_user(db, 'reconnect@example.com', roles=['PAID_USER'])
    _connect_routes(graph_routes, [{'id': 'act_1', 'name': 'Old name'}])
    client.post('/api/v1/facebook/callback', json={'code': 'first'}, headers=auth_headers(user))

    _connect_routes(graph_routes, [{'id': 'act_1', 'name': 'New name'}])
    client.post('/api/v1/facebook/callback', json={'code': 'second'}, headers=auth_headers(user))

    db.expire_all()
    assert db.query(FacebookAccount).count() == 1
    accounts = db.query(AdAccount).all()
    assert [a.name for a in accounts] == ['New name']


def test_token_exchange_failure_surfaces_as_502(client, db, graph_routes):
    user = make_user(db, 'badcode@example.com', roles=['PAID_USER'])
    graph_routes.add(
        'GET',
        'oauth/access_token',
        {'error': {'message': 'This authorization code has expired.', 'type': 'OAuthException', 'code': 100}},
        status_code=400,
    )

    response = client.post('/api/v1/facebook/callback', json={'code': 'stale'}, headers=auth_headers(user))

    assert response.status_code == 502
    assert db.query(FacebookAccount).count() == 0


def test_sync_refreshes_ad_accounts(client, db, graph_routes):
    user = make_user(db, 'syncer@example.com', roles=['PAID_USER'])
    account = make_ad_account(db, user, graph_id='act_555')
    graph_routes.add(
        'GET',
        'me/adaccounts',
        {'data': [{'id': 'act_555', 'name': 'Renamed upstream'}, {'id': 'act_777', 'name': 'Fresh'}], 'paging': {}},
    )

    response = client.post(
        f'/api/v1/facebook/accounts/{account.facebook_account_id}/sync', headers=auth_headers(user)
    )

    assert response.status_code == 200
    names = sorted(a['name'] for a in response.json()['ad_accounts'])
    assert names == ['Fresh', 'Renamed upstream']
    assert db.query(AdAccount).count() == 2


def test_sync_of_someone_elses_account_is_404(client, db):
    owner = make_user(db, 'fbowner@example.com', roles=['PAID_USER'])
    intruder = make_user(db, 'intruder@example.com', roles=['PAID_USER'])
    account = make_ad_account(db, owner)

    response = client.post(
        f'/api/v1/facebook/accounts/{account.facebook_account_id}/sync', headers=auth_headers(intruder)
    )

    assert response.status_code == 404


def test_ad_accounts_are_listed_and_renamed_by_owner(client, db):
    user = make_user(db, 'lister@example.com', roles=['PAID_USER'])
    account = make_ad_account(db, user)

    listing = client.get('/api/v1/ad-accounts/', headers=auth_headers(user))
    renamed = client.put(f'/api/v1/ad-accounts/{account.id}', json={'name': 'Renamed'}, headers=auth_headers(user))

    assert [a['id'] for a in listing.json()['ad_accounts']] == [account.id]
    assert renamed.json()['ad_account']['name'] == 'Renamed'
