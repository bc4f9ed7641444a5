# flake8: noqa: F401
"""Schemas for the service."""

from .account_subscription import AccountSubscription, SubscriptionInfo, SubscriptionState
from .audit_entry import AuditEntry, AuditEntryCreate
from .events import NormalizedEvent
from .processed_event import (
    ProcessedEvent,
    ProcessedEventCreate,
    WebhookDelivery,
    WebhookDeliveryCreate,
)
from .webhook import WebhookResponse
