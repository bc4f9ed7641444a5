"""Integration tests for the subscription read model."""

from datetime import datetime, timedelta

import pytest

from billsync.core.exceptions import NotFoundException
from billsync.core.shared_models import (
    EventType,
    PaymentProvider,
    SubscriptionStatus,
    SubscriptionTier,
)
from billsync.core.subscription_service import subscription_service
from billsync.schemas.events import NormalizedEvent

T0 = datetime(2024, 3, 1)


def stripe_event(event_id: str, event_type: EventType, at: datetime = T0, **hints):
    return NormalizedEvent(
        provider=PaymentProvider.STRIPE,
        event_id=event_id,
        event_type=event_type,
        provider_event_type=event_type.value,
        provider_event_time=at,
        account_ref="acct_42",
        customer_ref="cus_123",
        subscription_ref="sub_123",
        **hints,
    )


@pytest.mark.integration
class TestSubscriptionService:
    @pytest.mark.parametrize(
        "account_id,checkout_provider",
        [
            ("acct_42", PaymentProvider.STRIPE),
            ("acct_7", PaymentProvider.LEMONSQUEEZY),
            ("acct_99", PaymentProvider.STRIPE),
        ],
    )
    async def test_account_without_record(
        self, db_session, accounts, account_id, checkout_provider
    ):
        info = await subscription_service.get_subscription(db_session, account_id)

        assert info.account_id == account_id
        assert info.version == 0
        assert info.status == SubscriptionStatus.NONE
        assert info.tier == SubscriptionTier.FREE
        assert info.active_provider == PaymentProvider.NONE
        assert info.checkout_provider == checkout_provider

    async def test_unknown_account(self, db_session, accounts):
        with pytest.raises(NotFoundException):
            await subscription_service.get_subscription(db_session, "acct_missing")
        with pytest.raises(NotFoundException):
            await subscription_service.list_audit_history(db_session, "acct_missing")

    async def test_active_subscription_has_no_checkout_provider(
        self, state_machine, session_factory, accounts
    ):
        await state_machine.apply_event(
            stripe_event("evt_1", EventType.SUBSCRIPTION_CREATED, tier_hint=SubscriptionTier.PRO)
        )

        async with session_factory() as db:
            info = await subscription_service.get_subscription(db, "acct_42")

        assert info.version == 1
        assert info.status == SubscriptionStatus.ACTIVE
        assert info.active_provider == PaymentProvider.STRIPE
        assert info.checkout_provider is None

    async def test_expired_subscription_offers_checkout(
        self, state_machine, session_factory, accounts
    ):
        await state_machine.apply_event(stripe_event("evt_1", EventType.SUBSCRIPTION_CREATED))
        await state_machine.apply_event(
            stripe_event("evt_2", EventType.SUBSCRIPTION_EXPIRED, at=T0 + timedelta(days=31))
        )

        async with session_factory() as db:
            info = await subscription_service.get_subscription(db, "acct_42")

        assert info.status == SubscriptionStatus.EXPIRED
        assert info.tier == SubscriptionTier.FREE
        assert info.checkout_provider == PaymentProvider.STRIPE

    async def test_audit_history_and_replay(self, state_machine, session_factory, accounts):
        await state_machine.apply_event(stripe_event("evt_1", EventType.SUBSCRIPTION_CREATED))
        await state_machine.apply_event(
            stripe_event("evt_2", EventType.PAYMENT_FAILED, at=T0 + timedelta(days=30))
        )
        await state_machine.apply_event(
            stripe_event("evt_3", EventType.PAYMENT_SUCCEEDED, at=T0 + timedelta(days=31))
        )

        async with session_factory() as db:
            history = await subscription_service.list_audit_history(db, "acct_42")
            verified = await subscription_service.verify_audit_trail(db, "acct_42")

        assert [entry.version for entry in history] == [1, 2, 3]
        assert [entry.new_status for entry in history] == ["active", "past_due", "active"]
        assert [entry.event_id for entry in history] == ["evt_1", "evt_2", "evt_3"]
        assert verified

    async def test_account_without_history(self, db_session, accounts):
        assert await subscription_service.list_audit_history(db_session, "acct_7") == []
        assert await subscription_service.verify_audit_trail(db_session, "acct_7")
