"""Provider payload decoders.

Each decoder turns a verified raw body into a `NormalizedEvent`. Decoding is pure:
the same body and plan mapping always give the same event, and nothing here touches
the database. Unknown event types decode to `EventType.UNKNOWN`, never to an error.
"""

import json
from datetime import datetime
from typing import Any, Optional

from billsync.core.config import settings
from billsync.core.datetime_utils import from_iso, from_unix
from billsync.core.exceptions import DecodeError
from billsync.core.shared_models import (
    EventType,
    PaymentProvider,
    SubscriptionStatus,
    SubscriptionTier,
)
from billsync.schemas.events import NormalizedEvent


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_ref(value: Any) -> Optional[str]:
    """Provider reference as a string; expanded objects contribute their `id`."""
    if isinstance(value, dict):
        value = value.get("id")
    if value is None or value == "":
        return None
    return str(value)


def _unix_or_none(value: Any) -> Optional[datetime]:
    try:
        return from_unix(value)
    except (TypeError, ValueError, OverflowError):
        return None


def parse_tier(value: Any) -> Optional[SubscriptionTier]:
    """Parse a tier name, returning None for anything unrecognized."""
    if not isinstance(value, str):
        return None
    try:
        return SubscriptionTier(value.strip().lower())
    except ValueError:
        return None


def _load_json(provider: PaymentProvider, body: bytes) -> dict:
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(provider.value, f"Payload is not valid JSON: {e}") from e
    except RecursionError as e:
        raise DecodeError(provider.value, "Payload is nested too deeply") from e
    if not isinstance(payload, dict):
        raise DecodeError(provider.value, "Payload is not a JSON object")
    return payload


class StripeDecoder:
    """Decode Stripe event envelopes (`id`, `type`, `created`, `data.object`)."""

    provider = PaymentProvider.STRIPE

    EVENT_TYPES = {
        "checkout.session.completed": EventType.CHECKOUT_COMPLETED,
        "customer.subscription.created": EventType.SUBSCRIPTION_CREATED,
        "customer.subscription.updated": EventType.SUBSCRIPTION_UPDATED,
        "customer.subscription.deleted": EventType.SUBSCRIPTION_CANCELLED,
        "customer.subscription.paused": EventType.SUBSCRIPTION_PAUSED,
        "customer.subscription.resumed": EventType.SUBSCRIPTION_RESUMED,
        "invoice.payment_succeeded": EventType.PAYMENT_SUCCEEDED,
        "invoice.paid": EventType.PAYMENT_SUCCEEDED,  # $0 invoices
        "invoice.payment_failed": EventType.PAYMENT_FAILED,
    }

    # `incomplete` gives no hint: the first payment is still pending
    STATUSES = {
        "trialing": SubscriptionStatus.TRIALING,
        "active": SubscriptionStatus.ACTIVE,
        "past_due": SubscriptionStatus.PAST_DUE,
        "unpaid": SubscriptionStatus.ON_HOLD,
        "paused": SubscriptionStatus.PAUSED,
        "canceled": SubscriptionStatus.CANCELLED,
        "incomplete_expired": SubscriptionStatus.EXPIRED,
    }

    def __init__(self, price_tiers: Optional[dict[str, str]] = None):
        """Initialize the decoder with a price ID to tier mapping."""
        self.price_tiers = price_tiers if price_tiers is not None else settings.STRIPE_PRICE_TIERS

    def decode(self, body: bytes) -> NormalizedEvent:
        """Decode a Stripe event.

        Raises:
            DecodeError: If the body is not JSON or lacks `id`, `type` or `created`
        """
        payload = _load_json(self.provider, body)

        event_id = payload.get("id")
        event_name = payload.get("type")
        if not isinstance(event_id, str) or not event_id:
            raise DecodeError(self.provider.value, "Event has no id")
        if not isinstance(event_name, str) or not event_name:
            raise DecodeError(self.provider.value, f"Event {event_id} has no type")
        try:
            event_time = from_unix(payload.get("created"))
        except (TypeError, ValueError, OverflowError) as e:
            raise DecodeError(self.provider.value, f"Event {event_id} has a bad timestamp") from e
        if event_time is None:
            raise DecodeError(self.provider.value, f"Event {event_id} has no created timestamp")

        obj = _as_dict(_as_dict(payload.get("data")).get("object"))
        event_type = self.EVENT_TYPES.get(event_name, EventType.UNKNOWN)
        metadata = self._metadata(obj)

        return NormalizedEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
            provider_event_type=event_name,
            provider_event_time=event_time,
            account_ref=self._account_ref(obj, metadata),
            customer_ref=_as_ref(obj.get("customer")),
            subscription_ref=self._subscription_ref(obj),
            status_hint=self._status_hint(event_type, obj),
            tier_hint=self._tier_hint(obj, metadata),
            period_end_hint=self._period_end(obj),
        )

    @staticmethod
    def _metadata(obj: dict) -> dict:
        metadata = _as_dict(obj.get("metadata"))
        if metadata:
            return metadata
        # Invoices carry the subscription's metadata in a nested block
        details = _as_dict(obj.get("subscription_details")) or _as_dict(
            _as_dict(obj.get("parent")).get("subscription_details")
        )
        return _as_dict(details.get("metadata"))

    @staticmethod
    def _account_ref(obj: dict, metadata: dict) -> Optional[str]:
        return (
            _as_ref(metadata.get("userId"))
            or _as_ref(metadata.get("user_id"))
            or _as_ref(obj.get("client_reference_id"))
        )

    @staticmethod
    def _subscription_ref(obj: dict) -> Optional[str]:
        if obj.get("object") == "subscription":
            return _as_ref(obj.get("id"))
        ref = _as_ref(obj.get("subscription"))
        if ref:
            return ref
        details = _as_dict(_as_dict(obj.get("parent")).get("subscription_details"))
        return _as_ref(details.get("subscription"))

    def _status_hint(self, event_type: EventType, obj: dict) -> Optional[SubscriptionStatus]:
        if event_type == EventType.CHECKOUT_COMPLETED:
            return SubscriptionStatus.ACTIVE
        if obj.get("object") != "subscription":
            return None
        return self.STATUSES.get(obj.get("status"))

    def _tier_hint(self, obj: dict, metadata: dict) -> Optional[SubscriptionTier]:
        tier = parse_tier(metadata.get("tier"))
        if tier:
            return tier
        for price_id in self._price_ids(obj):
            tier = parse_tier(self.price_tiers.get(price_id))
            if tier:
                return tier
        return None

    @staticmethod
    def _line_items(obj: dict) -> list[dict]:
        # Subscriptions list `items`, invoices list `lines`
        container = obj.get("items") if obj.get("object") == "subscription" else obj.get("lines")
        return [item for item in _as_dict(container).get("data") or [] if isinstance(item, dict)]

    def _price_ids(self, obj: dict) -> list[str]:
        price_ids = []
        for item in self._line_items(obj):
            price_id = _as_ref(item.get("price"))
            if not price_id:
                price_details = _as_dict(_as_dict(item.get("pricing")).get("price_details"))
                price_id = _as_ref(price_details.get("price"))
            if price_id:
                price_ids.append(price_id)
        return price_ids

    def _period_end(self, obj: dict) -> Optional[datetime]:
        if obj.get("current_period_end"):
            return _unix_or_none(obj["current_period_end"])
        items = self._line_items(obj)
        if not items:
            return None
        first = items[0]
        # Newer API versions moved the period onto subscription items
        if first.get("current_period_end"):
            return _unix_or_none(first["current_period_end"])
        return _unix_or_none(_as_dict(first.get("period")).get("end"))


class LemonSqueezyDecoder:
    """Decode LemonSqueezy webhooks (`meta.event_name`, `meta.custom_data`, `data`)."""

    provider = PaymentProvider.LEMONSQUEEZY

    EVENT_TYPES = {
        "order_created": EventType.CHECKOUT_COMPLETED,
        "order_refunded": EventType.SUBSCRIPTION_EXPIRED,
        "subscription_created": EventType.SUBSCRIPTION_CREATED,
        "subscription_updated": EventType.SUBSCRIPTION_UPDATED,
        "subscription_cancelled": EventType.SUBSCRIPTION_CANCELLED,
        "subscription_expired": EventType.SUBSCRIPTION_EXPIRED,
        "subscription_paused": EventType.SUBSCRIPTION_PAUSED,
        "subscription_resumed": EventType.SUBSCRIPTION_RESUMED,
        "subscription_unpaused": EventType.SUBSCRIPTION_RESUMED,
        "subscription_payment_success": EventType.PAYMENT_SUCCEEDED,
        "subscription_payment_recovered": EventType.PAYMENT_SUCCEEDED,
        "subscription_payment_failed": EventType.PAYMENT_FAILED,
    }

    STATUSES = {
        "on_trial": SubscriptionStatus.TRIALING,
        "active": SubscriptionStatus.ACTIVE,
        "past_due": SubscriptionStatus.PAST_DUE,
        "unpaid": SubscriptionStatus.ON_HOLD,
        "paused": SubscriptionStatus.PAUSED,
        "cancelled": SubscriptionStatus.CANCELLED,
        "expired": SubscriptionStatus.EXPIRED,
    }

    def __init__(self, variant_tiers: Optional[dict[str, str]] = None):
        """Initialize the decoder with a variant ID to tier mapping."""
        self.variant_tiers = (
            variant_tiers if variant_tiers is not None else settings.LEMONSQUEEZY_VARIANT_TIERS
        )

    def decode(self, body: bytes) -> NormalizedEvent:
        """Decode a LemonSqueezy webhook.

        LemonSqueezy has no event ID in older payloads. Without `meta.webhook_id`, the
        ID is derived from the event name, resource ID and resource `updated_at`, which
        is stable across redeliveries of the same change.

        Raises:
            DecodeError: If the body is not JSON or lacks event name, resource ID or time
        """
        payload = _load_json(self.provider, body)
        meta = _as_dict(payload.get("meta"))
        data = _as_dict(payload.get("data"))
        attributes = _as_dict(data.get("attributes"))
        custom_data = _as_dict(meta.get("custom_data"))

        event_name = meta.get("event_name")
        resource_id = _as_ref(data.get("id"))
        if not isinstance(event_name, str) or not event_name:
            raise DecodeError(self.provider.value, "Webhook has no meta.event_name")
        if not resource_id:
            raise DecodeError(self.provider.value, f"{event_name} webhook has no data.id")

        raw_time = attributes.get("updated_at") or attributes.get("created_at")
        try:
            event_time = from_iso(raw_time) if isinstance(raw_time, str) else None
        except ValueError as e:
            raise DecodeError(self.provider.value, f"Bad timestamp {raw_time!r}") from e
        if event_time is None:
            raise DecodeError(self.provider.value, f"{event_name} webhook has no timestamp")

        event_id = _as_ref(meta.get("webhook_id")) or f"{event_name}:{resource_id}:{raw_time}"
        event_type = self.EVENT_TYPES.get(event_name, EventType.UNKNOWN)

        return NormalizedEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
            provider_event_type=event_name,
            provider_event_time=event_time,
            account_ref=_as_ref(custom_data.get("user_id")),
            customer_ref=_as_ref(attributes.get("customer_id")),
            subscription_ref=self._subscription_ref(data, attributes),
            status_hint=self._status_hint(event_type, data, attributes),
            tier_hint=self._tier_hint(event_name, custom_data, attributes),
            period_end_hint=self._period_end(data, attributes),
        )

    @staticmethod
    def _subscription_ref(data: dict, attributes: dict) -> Optional[str]:
        resource_type = data.get("type")
        if resource_type == "subscriptions":
            return _as_ref(data.get("id"))
        if resource_type == "orders":
            first_item = _as_dict(attributes.get("first_subscription_item"))
            return _as_ref(first_item.get("subscription_id"))
        # subscription-invoices
        return _as_ref(attributes.get("subscription_id"))

    def _status_hint(
        self, event_type: EventType, data: dict, attributes: dict
    ) -> Optional[SubscriptionStatus]:
        if event_type == EventType.CHECKOUT_COMPLETED:
            return SubscriptionStatus.ACTIVE
        if data.get("type") != "subscriptions":
            return None
        return self.STATUSES.get(attributes.get("status"))

    def _tier_hint(
        self, event_name: str, custom_data: dict, attributes: dict
    ) -> Optional[SubscriptionTier]:
        if event_name == "order_refunded":
            return SubscriptionTier.FREE
        tier = parse_tier(custom_data.get("tier"))
        if tier:
            return tier
        variant_id = _as_ref(attributes.get("variant_id")) or _as_ref(
            _as_dict(attributes.get("first_order_item")).get("variant_id")
        )
        if variant_id:
            return parse_tier(self.variant_tiers.get(variant_id))
        return None

    @staticmethod
    def _period_end(data: dict, attributes: dict) -> Optional[datetime]:
        if data.get("type") != "subscriptions":
            return None
        value = attributes.get("renews_at") or attributes.get("ends_at")
        if not isinstance(value, str):
            return None
        try:
            return from_iso(value)
        except ValueError:
            return None


def get_decoder(provider: PaymentProvider):
    """Decoder for a provider, using the configured plan mappings."""
    if provider == PaymentProvider.STRIPE:
        return StripeDecoder()
    if provider == PaymentProvider.LEMONSQUEEZY:
        return LemonSqueezyDecoder()
    raise ValueError(f"No decoder for provider {provider}")


def decode_event(provider: PaymentProvider, body: bytes) -> NormalizedEvent:
    """Decode a verified webhook body into a normalized event.

    Args:
        provider: Provider that sent the body
        body: Raw, already verified request body

    Returns:
        NormalizedEvent: The provider-independent event

    Raises:
        DecodeError: If the payload is malformed
    """
    return get_decoder(provider).decode(body)
