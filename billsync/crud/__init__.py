"""CRUD layer operations."""

from .crud_account import account
from .crud_account_subscription import account_subscription
from .crud_audit_entry import audit_entry
from .crud_processed_event import processed_event, webhook_delivery

__all__ = [
    "account",
    "account_subscription",
    "audit_entry",
    "processed_event",
    "webhook_delivery",
]
