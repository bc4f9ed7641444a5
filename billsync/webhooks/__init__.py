"""Webhook processing pipeline.

Verify -> decode -> claim -> transition, with each stage usable on its own:

Usage:
    from billsync.webhooks import WebhookDispatcher

    dispatcher = WebhookDispatcher(AsyncSessionLocal)
    result = await dispatcher.dispatch(PaymentProvider.STRIPE, body, headers)
"""

from billsync.webhooks.dispatcher import DispatchResult, WebhookDispatcher

__all__ = [
    "DispatchResult",
    "WebhookDispatcher",
]
