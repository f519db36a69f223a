import hashlib
import hmac
import json
import os
import sys
import time
from datetime import timedelta
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

WEBHOOK_SECRET = 'whsec_test_secret'

# In-memory SQLite and test credentials must be in place before app imports.
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['APP_ENV'] = 'test'
os.environ.setdefault('SECRET_KEY', 'test-secret-key')
os.environ.setdefault('STRIPE_SECRET_KEY', 'sk_test_x')
os.environ['STRIPE_WEBHOOK_SECRET'] = WEBHOOK_SECRET
os.environ.setdefault('FACEBOOK_APP_ID', '1234')
os.environ.setdefault('FACEBOOK_APP_SECRET', 'fb-secret')
os.environ.setdefault('FACEBOOK_REDIRECT_URI', 'http://localhost:3000/facebook/callback')

from fastapi.testclient import TestClient  # noqa: E402

from app.core.security import create_access_token, hash_password  # noqa: E402
from app.database import SessionLocal, engine, get_db  # noqa: E402
from app.integrations.billing import BillingClient, get_billing_client  # noqa: E402
from app.integrations.facebook import GraphAPIClient, get_graph_client  # noqa: E402
from app.main import app  # noqa: E402
from app.models import AdAccount, Base, FacebookAccount, User  # noqa: E402
from app.models.base import utcnow  # noqa: E402
from app.seeds import seed_all  # noqa: E402
from app.services.roles import grant_role  # noqa: E402

PASSWORD = 'correct-horse-battery'


class FakeBillingClient(BillingClient):
    """Records SDK-bound calls; webhook verification stays real."""

    def __init__(self):
        super().__init__(api_key='sk_test_x', webhook_secret=WEBHOOK_SECRET)
        self.calls = []
        self.invoices = []

    def create_checkout_session(self, **kwargs):
        self.calls.append(('checkout', kwargs))
        return {'session_id': 'cs_test_1', 'url': 'https://checkout.stripe.test/cs_test_1'}

    def cancel_subscription(self, stripe_subscription_id):
        self.calls.append(('cancel', stripe_subscription_id))

    def list_invoices(self, customer_id, limit=100):
        self.calls.append(('invoices', customer_id))
        return list(self.invoices)

    def create_setup_intent(self, customer_id):
        self.calls.append(('setup_intent', customer_id))
        return 'seti_secret_123'


class GraphRoutes:
    """httpx.MockTransport handler keyed by (method, path)."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, payload, status_code=200):
        self.routes[(method, path)] = (status_code, payload)

    def __call__(self, request):
        self.requests.append(request)
        key = (request.method, request.url.path.split('/', 2)[-1])
        if key not in self.routes:
            return httpx.Response(404, json={'error': {'message': f'no route for {key}', 'code': 803}})
        status_code, payload = self.routes[key]
        return httpx.Response(status_code, json=payload)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    seed_all(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def billing():
    return FakeBillingClient()


@pytest.fixture
def graph_routes():
    return GraphRoutes()


@pytest.fixture
def client(db, billing, graph_routes):
    def override_get_db():
        yield db

    graph = GraphAPIClient(transport=httpx.MockTransport(graph_routes))
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_client] = lambda: billing
    app.dependency_overrides[get_graph_client] = lambda: graph
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_user(db, email, roles=(), status='active'):
    user = User(email=email, password_hash=hash_password(PASSWORD), status=status)
    db.add(user)
    db.flush()
    for role in roles:
        grant_role(db, user.id, role)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {'Authorization': f'Bearer {create_access_token(user.id)}'}


def make_ad_account(db, user, token='fb-token', graph_id='act_555'):
    fb = FacebookAccount(
        user_id=user.id,
        facebook_user_id=f'fb-{user.id[:8]}',
        access_token=token,
        token_expires_at=utcnow() + timedelta(days=60),
        name='FB User',
    )
    db.add(fb)
    db.flush()
    account = AdAccount(facebook_account_id=fb.id, facebook_ad_account_id=graph_id, name='Main account')
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def stripe_event(event_type, obj, event_id=None, created=None):
    return {
        'id': event_id or f'evt_{event_type.replace(".", "_")}_{time.time_ns()}',
        'object': 'event',
        'type': event_type,
        'created': created if created is not None else int(time.time()),
        'data': {'object': obj},
    }


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f'{timestamp}.{payload}'.encode('utf-8')
    signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={signature}'


def signed_webhook(client, event, secret=WEBHOOK_SECRET):
    payload = json.dumps(event)
    return client.post(
        '/api/v1/payments/webhook',
        content=payload,
        headers={'Stripe-Signature': sign_payload(payload, secret), 'Content-Type': 'application/json'},
    )
