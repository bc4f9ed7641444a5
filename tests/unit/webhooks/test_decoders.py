"""Unit tests for the provider payload decoders."""

import json
from datetime import datetime

import pytest

from billsync.core.datetime_utils import from_unix
from billsync.core.exceptions import DecodeError
from billsync.core.shared_models import (
    EventType,
    PaymentProvider,
    SubscriptionStatus,
    SubscriptionTier,
)
from billsync.webhooks.decoders import LemonSqueezyDecoder, StripeDecoder, decode_event
from tests.fixtures.payloads import (
    iso,
    lemonsqueezy_event,
    stripe_event,
    stripe_invoice,
    stripe_subscription,
)

PERIOD_END = from_unix(1_900_000_000)


@pytest.fixture
def stripe_decoder():
    return StripeDecoder(price_tiers={"price_pro_monthly": "pro", "price_ent": "enterprise"})


@pytest.fixture
def lemonsqueezy_decoder():
    return LemonSqueezyDecoder(variant_tiers={"42": "pro", "43": "enterprise"})


@pytest.mark.unit
class TestStripeDecoder:
    def test_subscription_created(self, stripe_decoder):
        body = stripe_event(
            "evt_1", "customer.subscription.created", stripe_subscription(), created=100
        )

        event = stripe_decoder.decode(body)

        assert event.provider == PaymentProvider.STRIPE
        assert event.event_id == "evt_1"
        assert event.event_type == EventType.SUBSCRIPTION_CREATED
        assert event.provider_event_type == "customer.subscription.created"
        assert event.provider_event_time == datetime(1970, 1, 1, 0, 1, 40)
        assert event.account_ref == "acct_42"
        assert event.customer_ref == "cus_123"
        assert event.subscription_ref == "sub_123"
        assert event.status_hint == SubscriptionStatus.ACTIVE
        assert event.tier_hint == SubscriptionTier.PRO
        assert event.period_end_hint == PERIOD_END
        assert event.is_signup

    @pytest.mark.parametrize(
        "stripe_status,expected",
        [
            ("trialing", SubscriptionStatus.TRIALING),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("unpaid", SubscriptionStatus.ON_HOLD),
            ("paused", SubscriptionStatus.PAUSED),
            ("canceled", SubscriptionStatus.CANCELLED),
            ("incomplete_expired", SubscriptionStatus.EXPIRED),
            ("incomplete", None),
        ],
    )
    def test_status_mapping(self, stripe_decoder, stripe_status, expected):
        body = stripe_event(
            "evt_2", "customer.subscription.updated", stripe_subscription(status=stripe_status)
        )
        assert stripe_decoder.decode(body).status_hint == expected

    def test_tier_falls_back_to_price_mapping(self, stripe_decoder):
        subscription = stripe_subscription(tier=None, price_id="price_ent")
        body = stripe_event("evt_3", "customer.subscription.updated", subscription)
        assert stripe_decoder.decode(body).tier_hint == SubscriptionTier.ENTERPRISE

    def test_unknown_tier_gives_no_hint(self, stripe_decoder):
        subscription = stripe_subscription(tier="platinum", price_id="price_unmapped")
        body = stripe_event("evt_4", "customer.subscription.updated", subscription)
        assert stripe_decoder.decode(body).tier_hint is None

    def test_checkout_session_uses_client_reference_id(self, stripe_decoder):
        session = {
            "id": "cs_1",
            "object": "checkout.session",
            "client_reference_id": "acct_42",
            "customer": "cus_9",
            "subscription": "sub_9",
            "metadata": {},
        }
        event = stripe_decoder.decode(stripe_event("evt_5", "checkout.session.completed", session))

        assert event.event_type == EventType.CHECKOUT_COMPLETED
        assert event.account_ref == "acct_42"
        assert event.subscription_ref == "sub_9"
        assert event.status_hint == SubscriptionStatus.ACTIVE
        assert event.tier_hint is None

    def test_invoice_events(self, stripe_decoder):
        body = stripe_event("evt_6", "invoice.payment_failed", stripe_invoice(account_id="acct_42"))

        event = stripe_decoder.decode(body)

        assert event.event_type == EventType.PAYMENT_FAILED
        assert event.account_ref == "acct_42"
        assert event.subscription_ref == "sub_123"
        assert event.status_hint is None
        assert event.tier_hint == SubscriptionTier.PRO
        assert event.period_end_hint == PERIOD_END

    @pytest.mark.parametrize("event_name", ["invoice.payment_succeeded", "invoice.paid"])
    def test_payment_succeeded_aliases(self, stripe_decoder, event_name):
        event = stripe_decoder.decode(stripe_event("evt_7", event_name, stripe_invoice()))
        assert event.event_type == EventType.PAYMENT_SUCCEEDED

    def test_unknown_event_type_is_not_an_error(self, stripe_decoder):
        event = stripe_decoder.decode(stripe_event("evt_8", "customer.created", {"id": "cus_1"}))
        assert event.event_type == EventType.UNKNOWN
        assert event.provider_event_type == "customer.created"

    @pytest.mark.parametrize(
        "body",
        [
            b"{not json",
            b"[]",
            json.dumps({"type": "invoice.paid", "created": 1}).encode(),
            json.dumps({"id": "evt_9", "created": 1}).encode(),
            json.dumps({"id": "evt_9", "type": "invoice.paid"}).encode(),
            json.dumps({"id": "evt_9", "type": "invoice.paid", "created": "soon"}).encode(),
        ],
    )
    def test_malformed_envelopes_raise_decode_error(self, stripe_decoder, body):
        with pytest.raises(DecodeError):
            stripe_decoder.decode(body)

    def test_deeply_nested_payload_raises_decode_error(self, stripe_decoder):
        body = b'{"id": "evt_deep", "data": ' + b"[" * 200_000 + b"]" * 200_000 + b"}"

        with pytest.raises(DecodeError):
            stripe_decoder.decode(body)

    def test_decoding_is_deterministic(self, stripe_decoder):
        body = stripe_event("evt_10", "customer.subscription.updated", stripe_subscription())
        assert stripe_decoder.decode(body) == stripe_decoder.decode(body)


@pytest.mark.unit
class TestLemonSqueezyDecoder:
    def test_subscription_created(self, lemonsqueezy_decoder):
        body = lemonsqueezy_event("subscription_created", webhook_id="wh_1", updated_at=150)

        event = lemonsqueezy_decoder.decode(body)

        assert event.provider == PaymentProvider.LEMONSQUEEZY
        assert event.event_id == "wh_1"
        assert event.event_type == EventType.SUBSCRIPTION_CREATED
        assert event.provider_event_time == datetime(1970, 1, 1, 0, 2, 30)
        assert event.account_ref == "acct_7"
        assert event.customer_ref == "555"
        assert event.subscription_ref == "9001"
        assert event.status_hint == SubscriptionStatus.ACTIVE
        assert event.tier_hint == SubscriptionTier.PRO
        assert event.period_end_hint == PERIOD_END

    def test_event_id_is_derived_without_webhook_id(self, lemonsqueezy_decoder):
        body = lemonsqueezy_event("subscription_updated", resource_id="77", updated_at=200)

        event = lemonsqueezy_decoder.decode(body)

        assert event.event_id == f"subscription_updated:77:{iso(200)}"
        # Redelivery of the same change yields the same ID
        assert lemonsqueezy_decoder.decode(body).event_id == event.event_id

    @pytest.mark.parametrize(
        "event_name,expected",
        [
            ("order_created", EventType.CHECKOUT_COMPLETED),
            ("order_refunded", EventType.SUBSCRIPTION_EXPIRED),
            ("subscription_cancelled", EventType.SUBSCRIPTION_CANCELLED),
            ("subscription_expired", EventType.SUBSCRIPTION_EXPIRED),
            ("subscription_paused", EventType.SUBSCRIPTION_PAUSED),
            ("subscription_resumed", EventType.SUBSCRIPTION_RESUMED),
            ("subscription_unpaused", EventType.SUBSCRIPTION_RESUMED),
            ("subscription_payment_success", EventType.PAYMENT_SUCCEEDED),
            ("subscription_payment_recovered", EventType.PAYMENT_SUCCEEDED),
            ("subscription_payment_failed", EventType.PAYMENT_FAILED),
            ("license_key_created", EventType.UNKNOWN),
        ],
    )
    def test_event_mapping(self, lemonsqueezy_decoder, event_name, expected):
        assert lemonsqueezy_decoder.decode(lemonsqueezy_event(event_name)).event_type == expected

    @pytest.mark.parametrize(
        "ls_status,expected",
        [
            ("on_trial", SubscriptionStatus.TRIALING),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("unpaid", SubscriptionStatus.ON_HOLD),
            ("paused", SubscriptionStatus.PAUSED),
            ("cancelled", SubscriptionStatus.CANCELLED),
            ("expired", SubscriptionStatus.EXPIRED),
        ],
    )
    def test_status_mapping(self, lemonsqueezy_decoder, ls_status, expected):
        body = lemonsqueezy_event("subscription_updated", status=ls_status)
        assert lemonsqueezy_decoder.decode(body).status_hint == expected

    def test_custom_data_tier_wins_over_variant(self, lemonsqueezy_decoder):
        body = lemonsqueezy_event("subscription_created", tier="enterprise", variant_id=42)
        assert lemonsqueezy_decoder.decode(body).tier_hint == SubscriptionTier.ENTERPRISE

    def test_order_refund_downgrades_to_free(self, lemonsqueezy_decoder):
        body = lemonsqueezy_event("order_refunded", resource_type="orders", status="refunded")
        event = lemonsqueezy_decoder.decode(body)
        assert event.tier_hint == SubscriptionTier.FREE
        assert event.status_hint is None
        assert event.period_end_hint is None

    def test_missing_timestamp_raises_decode_error(self, lemonsqueezy_decoder):
        body = json.dumps(
            {
                "meta": {"event_name": "subscription_updated"},
                "data": {"type": "subscriptions", "id": "1", "attributes": {}},
            }
        ).encode()
        with pytest.raises(DecodeError):
            lemonsqueezy_decoder.decode(body)

    def test_missing_event_name_raises_decode_error(self, lemonsqueezy_decoder):
        body = json.dumps({"meta": {}, "data": {"id": "1", "attributes": {}}}).encode()
        with pytest.raises(DecodeError):
            lemonsqueezy_decoder.decode(body)


@pytest.mark.unit
def test_decode_event_uses_configured_mappings():
    body = lemonsqueezy_event("subscription_created", variant_id=43)
    event = decode_event(PaymentProvider.LEMONSQUEEZY, body)
    assert event.tier_hint == SubscriptionTier.ENTERPRISE
