import threading
import time
from datetime import datetime, timezone

import pytest

from app.core.permissions import resolve_permissions
from app.models import BillingEvent, Subscription, SubscriptionPlan
from app.models.base import as_utc
from app.services.roles import grant_role
from app.services.subscription_lifecycle import (
    DUPLICATE,
    FAILED,
    IGNORED,
    PROCESSED,
    SubscriptionLifecycle,
    _subscription_lock,
    get_current_subscription,
)

from conftest import make_user, stripe_event

T0 = 1_760_000_000


@pytest.fixture
def plan(db):
    return db.query(SubscriptionPlan).filter(SubscriptionPlan.name == 'Pro').one()


@pytest.fixture
def account(db):
    return make_user(db, 'buyer@example.com', roles=['FREE_USER'])


def _checkout(user_id, plan_id, session_id='cs_1', sub_id='sub_1', **kwargs):
    return stripe_event(
        'checkout.session.completed',
        {
            'id': session_id,
            'object': 'checkout.session',
            'subscription': sub_id,
            'customer': 'cus_1',
            'client_reference_id': user_id,
            'metadata': {'accountId': user_id, 'planId': plan_id},
        },
        **kwargs,
    )


def _rows(db, user_id):
    db.expire_all()
    return db.query(Subscription).filter(Subscription.user_id == user_id).all()


def _role_names(db, user):
    db.expire_all()
    return {ur.role.name for ur in user.user_roles}


def test_checkout_completed_activates_subscription_and_grants_paid_role(db, account, plan):
    event = _checkout(account.id, plan.id, event_id='evt_checkout', created=T0)

    outcome = SubscriptionLifecycle(db).handle_event(event)

    assert outcome == PROCESSED
    rows = _rows(db, account.id)
    assert len(rows) == 1
    sub = rows[0]
    assert sub.status == 'active'
    assert sub.end_date is None
    assert sub.plan_id == plan.id
    assert sub.stripe_subscription_id == 'sub_1'
    assert as_utc(sub.start_date) == datetime.fromtimestamp(T0, tz=timezone.utc)
    assert 'PAID_USER' in _role_names(db, account)
    assert 'campaigns:delete' in resolve_permissions(db, account.id)


def test_replayed_checkout_event_is_a_duplicate(db, account, plan):
    event = _checkout(account.id, plan.id, event_id='evt_replay', created=T0)
    lifecycle = SubscriptionLifecycle(db)

    first = lifecycle.handle_event(event)
    second = lifecycle.handle_event(event)

    assert (first, second) == (PROCESSED, DUPLICATE)
    assert len(_rows(db, account.id)) == 1
    assert db.query(BillingEvent).count() == 1


def test_same_checkout_session_under_new_event_id_is_not_recorded_twice(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)

    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_a', created=T0))
    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_b', created=T0 + 5))

    assert len(_rows(db, account.id)) == 1


def test_checkout_falls_back_to_user_id_metadata(db, account, plan):
    event = stripe_event(
        'checkout.session.completed',
        {'id': 'cs_legacy', 'subscription': 'sub_legacy', 'metadata': {'userId': account.id, 'planId': plan.id}},
    )

    assert SubscriptionLifecycle(db).handle_event(event) == PROCESSED
    assert len(_rows(db, account.id)) == 1


def test_checkout_without_metadata_changes_nothing(db, account):
    event = stripe_event('checkout.session.completed', {'id': 'cs_bare', 'subscription': 'sub_bare'})

    assert SubscriptionLifecycle(db).handle_event(event) == PROCESSED
    assert _rows(db, account.id) == []


def test_new_checkout_supersedes_current_subscription(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_1', created=T0))
    lifecycle.handle_event(
        _checkout(account.id, plan.id, session_id='cs_2', sub_id='sub_2', event_id='evt_2', created=T0 + 60)
    )

    rows = {row.stripe_subscription_id: row for row in _rows(db, account.id)}
    assert rows['sub_1'].status == 'inactive'
    assert as_utc(rows['sub_1'].end_date) == datetime.fromtimestamp(T0 + 60, tz=timezone.utc)
    assert rows['sub_2'].status == 'active'
    assert rows['sub_2'].end_date is None
    assert get_current_subscription(db, account.id).stripe_subscription_id == 'sub_2'


def test_subscription_deleted_cancels_and_downgrades(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_c', created=T0))

    outcome = lifecycle.handle_event(
        stripe_event('customer.subscription.deleted', {'id': 'sub_1'}, event_id='evt_d', created=T0 + 100)
    )

    assert outcome == PROCESSED
    sub = _rows(db, account.id)[0]
    assert sub.status == 'canceled'
    assert as_utc(sub.end_date) == datetime.fromtimestamp(T0 + 100, tz=timezone.utc)
    roles = _role_names(db, account)
    assert 'PAID_USER' not in roles
    assert 'FREE_USER' in roles
    assert 'campaigns:delete' not in resolve_permissions(db, account.id)


def test_update_after_delete_does_not_resurrect(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_c', created=T0))
    lifecycle.handle_event(
        stripe_event('customer.subscription.deleted', {'id': 'sub_1'}, event_id='evt_d', created=T0 + 100)
    )

    lifecycle.handle_event(
        stripe_event(
            'customer.subscription.updated',
            {'id': 'sub_1', 'status': 'active'},
            event_id='evt_u',
            created=T0 + 200,
        )
    )

    sub = _rows(db, account.id)[0]
    assert sub.status == 'canceled'
    assert sub.end_date is not None
    assert 'PAID_USER' not in _role_names(db, account)


def test_stale_update_is_ignored(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_c', created=T0 + 500))

    lifecycle.handle_event(
        stripe_event(
            'customer.subscription.updated',
            {'id': 'sub_1', 'status': 'past_due'},
            event_id='evt_old',
            created=T0,
        )
    )

    assert _rows(db, account.id)[0].status == 'active'


def test_update_to_non_active_status_marks_inactive(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_c', created=T0))

    lifecycle.handle_event(
        stripe_event(
            'customer.subscription.updated',
            {'id': 'sub_1', 'status': 'past_due'},
            event_id='evt_u',
            created=T0 + 10,
        )
    )

    assert _rows(db, account.id)[0].status == 'inactive'


def test_payment_failed_then_succeeded(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_c', created=T0))

    lifecycle.handle_event(
        stripe_event('invoice.payment_failed', {'id': 'in_1', 'subscription': 'sub_1'}, created=T0 + 10)
    )
    assert _rows(db, account.id)[0].status == 'payment_failed'

    lifecycle.handle_event(
        stripe_event(
            'invoice.payment_succeeded',
            {'id': 'in_2', 'parent': {'subscription_details': {'subscription': 'sub_1'}}},
            created=T0 + 20,
        )
    )
    assert _rows(db, account.id)[0].status == 'active'


def test_deleting_one_subscription_keeps_paid_role_while_another_is_active(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_1', created=T0))
    other = Subscription(
        user_id=account.id,
        plan_id=plan.id,
        stripe_subscription_id='sub_other',
        status='active',
        start_date=datetime.fromtimestamp(T0 - 10, tz=timezone.utc),
    )
    db.add(other)
    db.commit()

    lifecycle.handle_event(stripe_event('customer.subscription.deleted', {'id': 'sub_1'}, created=T0 + 50))

    assert 'PAID_USER' in _role_names(db, account)


def test_delete_for_unknown_subscription_is_a_no_op(db, account):
    grant_role(db, account.id, 'PAID_USER')
    db.commit()

    outcome = SubscriptionLifecycle(db).handle_event(
        stripe_event('customer.subscription.deleted', {'id': 'sub_unknown'})
    )

    assert outcome == PROCESSED
    assert db.query(Subscription).count() == 0
    assert 'PAID_USER' in _role_names(db, account)


def test_unhandled_event_type_is_ignored(db):
    outcome = SubscriptionLifecycle(db).handle_event(stripe_event('customer.created', {'id': 'cus_1'}))

    assert outcome == IGNORED
    assert db.query(BillingEvent).count() == 0


def test_processing_error_is_logged_and_rolled_back(db, account, plan, caplog):
    lifecycle = SubscriptionLifecycle(db)

    def boom(obj, occurred_at):
        grant_role(db, account.id, 'PAID_USER')
        raise RuntimeError('database went away')

    lifecycle._handlers['checkout.session.completed'] = boom

    outcome = lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_boom'))

    assert outcome == FAILED
    assert 'Failed to process billing event evt_boom' in caplog.text
    assert db.query(BillingEvent).count() == 0
    assert 'PAID_USER' not in _role_names(db, account)


def test_user_cancel_closes_subscription_and_downgrades(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, event_id='evt_c', created=T0))
    sub = get_current_subscription(db, account.id)

    canceled = lifecycle.cancel(sub)

    assert canceled.status == 'canceled'
    assert canceled.end_date is not None
    assert get_current_subscription(db, account.id) is None
    assert 'PAID_USER' not in _role_names(db, account)


def test_update_for_superseded_subscription_does_not_keep_paid_role(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, sub_id='sub_a', event_id='evt_a', created=T0))
    lifecycle.handle_event(
        _checkout(account.id, plan.id, session_id='cs_2', sub_id='sub_b', event_id='evt_b', created=T0 + 10)
    )

    lifecycle.handle_event(
        stripe_event(
            'customer.subscription.updated',
            {'id': 'sub_a', 'status': 'active'},
            event_id='evt_a_update',
            created=T0 + 20,
        )
    )
    lifecycle.handle_event(
        stripe_event('customer.subscription.deleted', {'id': 'sub_b'}, event_id='evt_b_delete', created=T0 + 30)
    )

    rows = {row.stripe_subscription_id: row for row in _rows(db, account.id)}
    assert rows['sub_a'].status == 'inactive'
    assert rows['sub_b'].status == 'canceled'
    assert get_current_subscription(db, account.id) is None
    roles = _role_names(db, account)
    assert 'PAID_USER' not in roles
    assert 'FREE_USER' in roles


def test_invoices_for_superseded_subscription_leave_it_closed(db, account, plan):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.handle_event(_checkout(account.id, plan.id, sub_id='sub_a', event_id='evt_a', created=T0))
    lifecycle.handle_event(
        stripe_event('invoice.payment_failed', {'id': 'in_1', 'subscription': 'sub_a'}, created=T0 + 5)
    )
    lifecycle.handle_event(
        _checkout(account.id, plan.id, session_id='cs_2', sub_id='sub_b', event_id='evt_b', created=T0 + 10)
    )

    lifecycle.handle_event(
        stripe_event('invoice.payment_succeeded', {'id': 'in_2', 'subscription': 'sub_a'}, created=T0 + 20)
    )
    lifecycle.handle_event(
        stripe_event('invoice.payment_failed', {'id': 'in_3', 'subscription': 'sub_a'}, created=T0 + 30)
    )

    rows = {row.stripe_subscription_id: row for row in _rows(db, account.id)}
    assert rows['sub_a'].status == 'inactive'
    assert as_utc(rows['sub_a'].end_date) == datetime.fromtimestamp(T0 + 10, tz=timezone.utc)
    assert rows['sub_b'].status == 'active'


def test_signals_for_one_subscription_share_a_lock_key():
    keys = {
        SubscriptionLifecycle._lock_key('customer.subscription.updated', {'id': 'sub_1'}),
        SubscriptionLifecycle._lock_key('customer.subscription.deleted', {'id': 'sub_1'}),
        SubscriptionLifecycle._lock_key('invoice.payment_failed', {'id': 'in_1', 'subscription': 'sub_1'}),
        SubscriptionLifecycle._lock_key('checkout.session.completed', {'id': 'cs_1', 'subscription': 'sub_1'}),
    }

    assert keys == {'sub_1'}


def test_concurrent_signals_for_one_subscription_are_serialized():
    order = []
    entered = threading.Event()
    release = threading.Event()

    def updated():
        with _subscription_lock('sub_1'):
            order.append('updated:start')
            entered.set()
            release.wait(5)
            order.append('updated:end')

    def deleted():
        entered.wait(5)
        with _subscription_lock('sub_1'):
            order.append('deleted')

    threads = [threading.Thread(target=updated), threading.Thread(target=deleted)]
    for thread in threads:
        thread.start()
    entered.wait(5)
    time.sleep(0.05)

    assert order == ['updated:start']

    release.set()
    for thread in threads:
        thread.join(5)

    assert order == ['updated:start', 'updated:end', 'deleted']
