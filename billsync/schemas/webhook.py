"""Webhook response schemas."""

from typing import Optional

from pydantic import BaseModel, Field

from billsync.core.shared_models import DispatchOutcome


class WebhookResponse(BaseModel):
    """Body returned to the provider for every delivery."""

    received: bool = Field(..., description="Whether the provider should stop redelivering")
    outcome: DispatchOutcome
    event_id: Optional[str] = None
