"""Shared models for the service."""

from enum import Enum


class PaymentProvider(str, Enum):
    """Payment provider authoritative for an account."""

    NONE = "none"
    STRIPE = "stripe"
    LEMONSQUEEZY = "lemonsqueezy"


class SubscriptionStatus(str, Enum):
    """Subscription status enum."""

    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    ON_HOLD = "on_hold"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class SubscriptionTier(str, Enum):
    """Plan tier, shared by both providers."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class EventType(str, Enum):
    """Normalized webhook event type."""

    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    UNKNOWN = "unknown"


class LedgerOutcome(str, Enum):
    """Outcome recorded for a webhook event in the idempotency ledger."""

    RECEIVED = "received"  # claimed, not finalized yet
    APPLIED = "applied"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    REJECTED_STALE = "rejected_stale"
    ERROR = "error"


class DispatchOutcome(str, Enum):
    """Outcome of a single webhook delivery, as reported back to the caller."""

    APPLIED = "applied"
    IGNORED = "ignored"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    REJECTED_STALE = "rejected_stale"
    ERROR = "error"
    DECODE_ERROR = "decode_error"
    AUTHENTICATION_FAILED = "authentication_failed"
    INFRASTRUCTURE_ERROR = "infrastructure_error"
