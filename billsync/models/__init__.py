"""Models for the service."""

from .account import Account
from .account_subscription import AccountSubscription
from .audit_entry import AuditEntry
from .processed_event import ProcessedEvent, WebhookDelivery

__all__ = [
    "Account",
    "AccountSubscription",
    "AuditEntry",
    "ProcessedEvent",
    "WebhookDelivery",
]
