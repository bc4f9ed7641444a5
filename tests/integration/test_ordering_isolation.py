"""Ordering robustness, exactly-once application and provider isolation."""

import asyncio

import pytest

from billsync import crud, schemas
from billsync.core.datetime_utils import from_unix
from billsync.core.shared_models import DispatchOutcome, LedgerOutcome, PaymentProvider
from billsync.db.unit_of_work import UnitOfWork
from billsync.webhooks.decoders import decode_event
from billsync.webhooks.dispatcher import WebhookDispatcher
from billsync.webhooks.signature import SignatureVerifier
from billsync.webhooks.state_machine import TransitionResult, TransitionTracker
from tests.fixtures.payloads import (
    LEMONSQUEEZY_SECRET,
    STRIPE_SECRET,
    lemonsqueezy_event,
    lemonsqueezy_headers,
    stripe_event,
    stripe_headers,
    stripe_invoice,
    stripe_subscription,
)

SIGNUP = stripe_event("evt_1", "customer.subscription.created", stripe_subscription(), created=100)
FAILED_T1 = stripe_event("evt_t1", "invoice.payment_failed", stripe_invoice(), created=200)
CANCELLED_T2 = stripe_event(
    "evt_t2",
    "customer.subscription.deleted",
    stripe_subscription(status="canceled"),
    created=300,
)


async def deliver(dispatcher, provider: PaymentProvider, body: bytes):
    if provider == PaymentProvider.STRIPE:
        headers = stripe_headers(body)
    else:
        headers = lemonsqueezy_headers(body)
    return await dispatcher.dispatch(provider, body, headers)


async def state_of(session_factory, account_id: str):
    async with session_factory() as db:
        record = await crud.account_subscription.get_by_account(db, account_id)
    return schemas.AccountSubscription.model_validate(record).state


@pytest.mark.integration
class TestOrdering:
    async def test_in_order_delivery(self, dispatcher, session_factory, accounts):
        for body in (SIGNUP, FAILED_T1, CANCELLED_T2):
            result = await deliver(dispatcher, PaymentProvider.STRIPE, body)
            assert result.outcome == DispatchOutcome.APPLIED

        state = await state_of(session_factory, "acct_42")
        assert state.status.value == "cancelled"

    async def test_reversed_delivery_reaches_the_same_state(
        self, dispatcher, session_factory, accounts
    ):
        for body in (SIGNUP, CANCELLED_T2):
            await deliver(dispatcher, PaymentProvider.STRIPE, body)
        late = await deliver(dispatcher, PaymentProvider.STRIPE, FAILED_T1)
        reversed_state = await state_of(session_factory, "acct_42")

        assert late.outcome == DispatchOutcome.REJECTED_STALE

        # Same events in order, for a second account
        in_order = [
            stripe_event(
                f"{event_id}_b",
                event_type,
                obj,
                created=created,
            )
            for event_id, event_type, obj, created in (
                (
                    "evt_1",
                    "customer.subscription.created",
                    stripe_subscription("sub_b", "cus_b", account_id="acct_99"),
                    100,
                ),
                ("evt_t1", "invoice.payment_failed", stripe_invoice("sub_b", "cus_b"), 200),
                (
                    "evt_t2",
                    "customer.subscription.deleted",
                    stripe_subscription("sub_b", "cus_b", status="canceled", account_id=None),
                    300,
                ),
            )
        ]
        for body in in_order:
            await deliver(dispatcher, PaymentProvider.STRIPE, body)
        in_order_state = await state_of(session_factory, "acct_99")

        refs = {"provider_customer_ref", "provider_subscription_ref"}
        assert reversed_state.model_dump(exclude=refs) == in_order_state.model_dump(exclude=refs)


@pytest.mark.integration
class TestProviderIsolation:
    async def test_other_provider_events_cause_no_mutation(
        self, dispatcher, session_factory, accounts
    ):
        await deliver(dispatcher, PaymentProvider.STRIPE, SIGNUP)
        before = await state_of(session_factory, "acct_42")

        for event_name in ("subscription_updated", "subscription_cancelled", "order_created"):
            body = lemonsqueezy_event(event_name, account_id="acct_42", updated_at=500)
            result = await deliver(dispatcher, PaymentProvider.LEMONSQUEEZY, body)
            assert result.outcome == DispatchOutcome.ERROR

        assert await state_of(session_factory, "acct_42") == before

    async def test_other_provider_takes_over_after_expiry(
        self, dispatcher, session_factory, accounts
    ):
        await deliver(dispatcher, PaymentProvider.STRIPE, SIGNUP)
        expired = stripe_event(
            "evt_exp",
            "customer.subscription.updated",
            stripe_subscription(status="incomplete_expired"),
            created=400,
        )
        await deliver(dispatcher, PaymentProvider.STRIPE, expired)

        body = lemonsqueezy_event(
            "subscription_created", account_id="acct_42", updated_at=50, variant_id=43
        )
        result = await deliver(dispatcher, PaymentProvider.LEMONSQUEEZY, body)

        assert result.outcome == DispatchOutcome.APPLIED
        state = await state_of(session_factory, "acct_42")
        assert state.active_provider == PaymentProvider.LEMONSQUEEZY
        assert state.tier.value == "enterprise"
        assert state.provider_subscription_ref == "9001"

    async def test_each_provider_resolves_only_its_own_references(
        self, dispatcher, session_factory, accounts
    ):
        await deliver(dispatcher, PaymentProvider.STRIPE, SIGNUP)
        await deliver(
            dispatcher,
            PaymentProvider.LEMONSQUEEZY,
            lemonsqueezy_event("subscription_created", account_id="acct_7"),
        )

        # LemonSqueezy payment for a subscription ID that only Stripe knows
        body = lemonsqueezy_event(
            "subscription_payment_failed",
            resource_id="sub_123",
            account_id=None,
            customer_id=999,
            resource_type="subscriptions",
            updated_at=600,
        )
        result = await deliver(dispatcher, PaymentProvider.LEMONSQUEEZY, body)

        assert result.outcome == DispatchOutcome.ERROR
        assert (await state_of(session_factory, "acct_42")).status.value == "active"


def updated_at(
    event_id: str, status: str, created: int, sub: str = "sub_123", cus: str = "cus_123"
):
    return stripe_event(
        event_id,
        "customer.subscription.updated",
        stripe_subscription(sub, cus, status=status, account_id=None),
        created=created,
    )


@pytest.mark.integration
class TestNoopWatermark:
    async def test_newer_noop_makes_older_event_stale(self, dispatcher, session_factory, accounts):
        await deliver(dispatcher, PaymentProvider.STRIPE, SIGNUP)
        noop_body = updated_at("evt_t3", "active", 300)
        noop = await deliver(dispatcher, PaymentProvider.STRIPE, noop_body)
        late = await deliver(dispatcher, PaymentProvider.STRIPE, FAILED_T1)

        assert noop.outcome == DispatchOutcome.APPLIED
        assert late.outcome == DispatchOutcome.REJECTED_STALE
        async with session_factory() as db:
            record = await crud.account_subscription.get_by_account(db, "acct_42")
        assert record.version == 1
        assert record.last_event_at == from_unix(300)
        assert record.last_event_id == "evt_t3"

    async def test_reversed_noop_reaches_the_same_state(
        self, dispatcher, session_factory, accounts
    ):
        # acct_42 gets T3 (no-op) before T1, acct_99 gets them in order
        for body in (SIGNUP, updated_at("evt_t3", "active", 300), FAILED_T1):
            await deliver(dispatcher, PaymentProvider.STRIPE, body)

        in_order = (
            stripe_event(
                "evt_1_b",
                "customer.subscription.created",
                stripe_subscription("sub_b", "cus_b", account_id="acct_99"),
                created=100,
            ),
            stripe_event(
                "evt_t1_b", "invoice.payment_failed", stripe_invoice("sub_b", "cus_b"), created=200
            ),
            updated_at("evt_t3_b", "active", 300, sub="sub_b", cus="cus_b"),
        )
        for body in in_order:
            result = await deliver(dispatcher, PaymentProvider.STRIPE, body)
            assert result.outcome == DispatchOutcome.APPLIED

        refs = {"provider_customer_ref", "provider_subscription_ref"}
        reversed_state = await state_of(session_factory, "acct_42")
        in_order_state = await state_of(session_factory, "acct_99")
        assert reversed_state.status.value == "active"
        assert reversed_state.model_dump(exclude=refs) == in_order_state.model_dump(exclude=refs)

    async def test_redelivered_noop_keeps_version(self, state_machine, session_factory, accounts):
        await state_machine.apply_event(decode_event(PaymentProvider.STRIPE, SIGNUP))
        noop = decode_event(PaymentProvider.STRIPE, updated_at("evt_t3", "active", 300))

        first = await state_machine.apply_event(noop)
        second = await state_machine.apply_event(noop)

        assert (first.version, first.changed) == (1, False)
        assert (second.version, second.changed) == (1, False)


@pytest.mark.integration
class TestEqualTimestamps:
    async def test_distinct_events_at_the_same_time_apply_once_each(
        self, dispatcher, session_factory, accounts
    ):
        await deliver(dispatcher, PaymentProvider.STRIPE, SIGNUP)
        past_due = updated_at("evt_c", "past_due", 150)
        recovered = updated_at("evt_d", "active", 150)

        for body in (past_due, recovered):
            result = await deliver(dispatcher, PaymentProvider.STRIPE, body)
            assert result.outcome == DispatchOutcome.APPLIED
        for body in (past_due, recovered):
            result = await deliver(dispatcher, PaymentProvider.STRIPE, body)
            assert result.outcome == DispatchOutcome.DUPLICATE_SKIPPED

        async with session_factory() as db:
            record = await crud.account_subscription.get_by_account(db, "acct_42")
            history = await crud.audit_entry.get_multi_by_account(db, "acct_42")
        assert record.status == "active"
        assert record.version == 3
        assert [entry.event_id for entry in history] == ["evt_1", "evt_c", "evt_d"]


@pytest.mark.integration
class TestCommitRacingDeadline:
    @pytest.fixture
    def short_deadline_dispatcher(self, session_factory, state_machine):
        verifier = SignatureVerifier(
            stripe_secret=STRIPE_SECRET, lemonsqueezy_secret=LEMONSQUEEZY_SECRET, tolerance=300
        )
        return WebhookDispatcher(
            session_factory, verifier=verifier, state_machine=state_machine, timeout_seconds=0.5
        )

    async def test_commit_landing_after_deadline_is_applied_once(
        self, short_deadline_dispatcher, session_factory, accounts, monkeypatch
    ):
        dispatcher = short_deadline_dispatcher
        await deliver(dispatcher, PaymentProvider.STRIPE, SIGNUP)

        original_commit = UnitOfWork.commit

        async def commit_then_stall(self):
            await original_commit(self)
            await asyncio.sleep(2)

        past_due = updated_at("evt_c", "past_due", 150)
        monkeypatch.setattr(UnitOfWork, "commit", commit_then_stall)
        stalled = await deliver(dispatcher, PaymentProvider.STRIPE, past_due)
        monkeypatch.setattr(UnitOfWork, "commit", original_commit)

        recovered = await deliver(
            dispatcher, PaymentProvider.STRIPE, updated_at("evt_d", "active", 150)
        )
        redelivered = await deliver(dispatcher, PaymentProvider.STRIPE, past_due)

        assert stalled.outcome == DispatchOutcome.APPLIED
        assert stalled.status_code == 200
        assert recovered.outcome == DispatchOutcome.APPLIED
        assert redelivered.outcome == DispatchOutcome.DUPLICATE_SKIPPED

        async with session_factory() as db:
            record = await crud.account_subscription.get_by_account(db, "acct_42")
            history = await crud.audit_entry.get_multi_by_account(db, "acct_42")
            row = await crud.processed_event.get_by_event(db, provider="stripe", event_id="evt_c")
        assert [entry.event_id for entry in history] == ["evt_1", "evt_c", "evt_d"]
        assert record.status == "active"
        assert record.version == 3
        assert row.outcome == LedgerOutcome.APPLIED.value
        assert row.account_id == "acct_42"

    async def test_reapplying_a_committed_event_writes_nothing(
        self, state_machine, session_factory, accounts
    ):
        await state_machine.apply_event(decode_event(PaymentProvider.STRIPE, SIGNUP))
        past_due = decode_event(PaymentProvider.STRIPE, updated_at("evt_c", "past_due", 150))
        await state_machine.apply_event(past_due)
        await state_machine.apply_event(
            decode_event(PaymentProvider.STRIPE, updated_at("evt_d", "active", 150))
        )

        tracker = TransitionTracker()
        replay = await state_machine.apply_event(past_due, tracker)

        assert replay.changed is False
        assert replay.version == 2
        assert tracker.committed is True
        async with session_factory() as db:
            record = await crud.account_subscription.get_by_account(db, "acct_42")
            history = await crud.audit_entry.get_multi_by_account(db, "acct_42")
        assert record.status == "active"
        assert [entry.event_id for entry in history] == ["evt_1", "evt_c", "evt_d"]
        assert await state_machine.find_applied(past_due) == TransitionResult("acct_42", 2, True)
