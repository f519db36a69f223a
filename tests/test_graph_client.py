import json
from urllib.parse import parse_qs

import httpx
import pytest

from app.integrations.facebook import GraphAPIClient, GraphAPIError, GraphTransportError


def _client(handler):
    return GraphAPIClient(base_url='https://graph.test/v18.0', transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_error_envelope_becomes_graph_api_error():
    def handler(request):
        return httpx.Response(
            400,
            json={
                'error': {
                    'message': 'Invalid OAuth access token.',
                    'type': 'OAuthException',
                    'code': 190,
                    'fbtrace_id': 'AbC123',
                }
            },
        )

    with pytest.raises(GraphAPIError) as excinfo:
        await _client(handler).get_user_profile('bad-token')

    err = excinfo.value
    assert err.code == 190
    assert err.http_status == 400
    assert err.fbtrace_id == 'AbC123'
    assert err.is_token_error
    assert err.status_code == 502


@pytest.mark.asyncio
async def test_error_envelope_with_200_status_still_raises():
    def handler(request):
        return httpx.Response(200, json={'error': {'message': 'Unsupported get request', 'code': 100}})

    with pytest.raises(GraphAPIError) as excinfo:
        await _client(handler).get_campaigns('555', 'token')

    assert excinfo.value.code == 100
    assert not excinfo.value.is_token_error


@pytest.mark.asyncio
async def test_non_json_failure_is_reported_with_status():
    def handler(request):
        return httpx.Response(503, text='<html>down</html>')

    with pytest.raises(GraphAPIError) as excinfo:
        await _client(handler).get_ad_accounts('token')

    assert excinfo.value.http_status == 503


@pytest.mark.asyncio
async def test_transport_failure_is_distinct_from_api_error():
    def handler(request):
        raise httpx.ConnectError('connection refused', request=request)

    with pytest.raises(GraphTransportError):
        await _client(handler).get_ad_accounts('token')


@pytest.mark.asyncio
async def test_iter_pages_follows_next_links():
    def handler(request):
        if request.url.params.get('after') == 'c2':
            return httpx.Response(200, json={'data': [{'id': '3'}], 'paging': {}})
        return httpx.Response(
            200,
            json={
                'data': [{'id': '1'}, {'id': '2'}],
                'paging': {'next': 'https://graph.test/v18.0/act_555/campaigns?after=c2&access_token=token'},
            },
        )

    client = _client(handler)
    first = await client.get_campaigns('555', 'token')
    ids = [row['id'] async for row in client.iter_pages(first)]

    assert ids == ['1', '2', '3']


@pytest.mark.asyncio
async def test_iter_pages_respects_max_pages():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(
            200,
            json={'data': [{'id': str(len(calls))}], 'paging': {'next': 'https://graph.test/v18.0/next'}},
        )

    client = _client(handler)
    first = await client.get_campaigns('555', 'token')
    ids = [row['id'] async for row in client.iter_pages(first, max_pages=2)]

    assert ids == ['1', '2']
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_create_campaign_sends_form_body_with_token():
    seen = {}

    def handler(request):
        seen['path'] = request.url.path
        seen['token'] = request.url.params.get('access_token')
        seen['form'] = parse_qs(request.content.decode())
        return httpx.Response(200, json={'id': '120099'})

    created = await _client(handler).create_campaign(
        '555',
        {'name': 'Launch', 'objective': 'OUTCOME_SALES', 'special_ad_categories': [], 'daily_budget': 2500},
        'token',
    )

    assert created == {'id': '120099'}
    assert seen['path'] == '/v18.0/act_555/campaigns'
    assert seen['token'] == 'token'
    assert seen['form']['name'] == ['Launch']
    assert json.loads(seen['form']['special_ad_categories'][0]) == []
    assert seen['form']['daily_budget'] == ['2500']


@pytest.mark.asyncio
async def test_ad_library_search_defaults():
    seen = {}

    def handler(request):
        seen['path'] = request.url.path
        seen['params'] = dict(request.url.params)
        return httpx.Response(200, json={'data': [{'id': 'lib1'}], 'paging': {'cursors': {'after': 'x'}}})

    page = await _client(handler).search_ad_library('token', search_terms='shoes')

    assert seen['path'] == '/v18.0/ads_archive'
    assert seen['params']['ad_type'] == 'POLITICAL_AND_ISSUE_ADS'
    assert json.loads(seen['params']['ad_reached_countries']) == ['US']
    assert seen['params']['search_terms'] == 'shoes'
    assert 'ad_delivery_date_min' not in seen['params']
    assert page.data == [{'id': 'lib1'}]
    assert page.next_url is None


def test_authorization_url_carries_state_and_scope():
    client = GraphAPIClient()

    result = client.authorization_url(state='fixed-state')

    assert result['state'] == 'fixed-state'
    assert 'client_id=1234' in result['auth_url']
    assert 'state=fixed-state' in result['auth_url']
    assert 'ads_read' in result['auth_url']
