"""Webhook endpoints for the payment providers.

Both endpoints hand the raw body to the dispatcher untouched, since the signature
covers the exact bytes sent by the provider.
"""

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from billsync import schemas
from billsync.api import deps
from billsync.api.router import TrailingSlashRouter
from billsync.core.shared_models import PaymentProvider
from billsync.webhooks.dispatcher import DispatchResult, WebhookDispatcher

router = TrailingSlashRouter()


def _to_response(result: DispatchResult) -> JSONResponse:
    body = schemas.WebhookResponse(
        received=result.received, outcome=result.outcome, event_id=result.event_id
    )
    return JSONResponse(status_code=result.status_code, content=body.model_dump(mode="json"))


@router.post("/stripe", response_model=schemas.WebhookResponse, include_in_schema=False)
async def stripe_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(deps.get_dispatcher),
) -> JSONResponse:
    """Handle Stripe webhook events.

    Security:
    - Verifies the `Stripe-Signature` header and its timestamp before parsing
    - Idempotent per Stripe event ID

    Returns:
        200 unless the signature is invalid (401) or the event should be retried (503)
    """
    body = await request.body()
    result = await dispatcher.dispatch(PaymentProvider.STRIPE, body, request.headers)
    return _to_response(result)


@router.post("/lemonsqueezy", response_model=schemas.WebhookResponse, include_in_schema=False)
async def lemonsqueezy_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(deps.get_dispatcher),
) -> JSONResponse:
    """Handle LemonSqueezy webhook events.

    Security:
    - Verifies the `X-Signature` header before parsing
    - Idempotent per webhook ID (or a derived event ID for older payloads)

    Returns:
        200 unless the signature is invalid (401) or the event should be retried (503)
    """
    body = await request.body()
    result = await dispatcher.dispatch(PaymentProvider.LEMONSQUEEZY, body, request.headers)
    return _to_response(result)
