"""Webhook signature verification.

Runs before anything looks at the payload: an unverified body is never parsed.
"""

import hashlib
import hmac
from typing import Mapping, Optional

import stripe

from billsync.core.config import settings
from billsync.core.exceptions import AuthenticationError, InfrastructureError
from billsync.core.shared_models import PaymentProvider

STRIPE_SIGNATURE_HEADER = "stripe-signature"
LEMONSQUEEZY_SIGNATURE_HEADER = "x-signature"


def verify_stripe_signature(
    body: bytes, signature_header: Optional[str], secret: str, tolerance: int
) -> None:
    """Verify a `Stripe-Signature` header against the raw body.

    The header carries `t=<unix>,v1=<hex>`; the HMAC covers `"{t}.{body}"`. Deliveries
    whose timestamp is older than `tolerance` seconds are rejected even if signed.

    Args:
        body: Raw request body
        signature_header: Value of the Stripe-Signature header
        secret: Endpoint signing secret
        tolerance: Replay window in seconds

    Raises:
        AuthenticationError: If the signature is missing, wrong or expired
    """
    provider = PaymentProvider.STRIPE.value
    if not signature_header:
        raise AuthenticationError(provider, "Missing Stripe-Signature header")
    if not body:
        raise AuthenticationError(provider, "Empty webhook body")

    try:
        payload = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise AuthenticationError(provider, "Webhook body is not valid UTF-8") from e

    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise AuthenticationError(provider, f"Invalid webhook signature: {e}") from e


def verify_lemonsqueezy_signature(
    body: bytes, signature_header: Optional[str], secret: str
) -> None:
    """Verify an `X-Signature` header (hex HMAC-SHA256 of the raw body).

    Args:
        body: Raw request body
        signature_header: Value of the X-Signature header
        secret: Webhook signing secret

    Raises:
        AuthenticationError: If the signature is missing or wrong
    """
    provider = PaymentProvider.LEMONSQUEEZY.value
    if not signature_header:
        raise AuthenticationError(provider, "Missing X-Signature header")
    if not body:
        raise AuthenticationError(provider, "Empty webhook body")

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature_header.strip().lower()):
        raise AuthenticationError(provider, "Invalid webhook signature")


class SignatureVerifier:
    """Checks that a delivery really comes from the provider it claims."""

    def __init__(
        self,
        stripe_secret: Optional[str] = None,
        lemonsqueezy_secret: Optional[str] = None,
        tolerance: Optional[int] = None,
    ):
        """Initialize the verifier.

        Secrets and tolerance fall back to the settings when not given.
        """
        self._stripe_secret = stripe_secret
        self._lemonsqueezy_secret = lemonsqueezy_secret
        self._tolerance = tolerance

    def _secret_for(self, provider: PaymentProvider) -> str:
        if provider == PaymentProvider.STRIPE:
            secret = self._stripe_secret or settings.STRIPE_WEBHOOK_SECRET
        elif provider == PaymentProvider.LEMONSQUEEZY:
            secret = self._lemonsqueezy_secret or settings.LEMONSQUEEZY_WEBHOOK_SECRET
        else:
            raise ValueError(f"No webhooks for provider {provider}")

        if not secret:
            # Not the sender's fault: make the provider retry once the deployment is fixed
            raise InfrastructureError(f"Webhook secret for {provider.value} is not configured")
        return secret

    def verify(
        self, provider: PaymentProvider, body: bytes, headers: Mapping[str, str]
    ) -> None:
        """Verify a delivery.

        Args:
            provider: Provider the delivery claims to come from
            body: Raw request body
            headers: Request headers

        Raises:
            AuthenticationError: If the signature does not check out
            InfrastructureError: If no secret is configured for the provider
        """
        secret = self._secret_for(provider)
        lowered = {key.lower(): value for key, value in headers.items()}

        if provider == PaymentProvider.STRIPE:
            tolerance = self._tolerance
            if tolerance is None:
                tolerance = settings.WEBHOOK_TOLERANCE_SECONDS
            verify_stripe_signature(body, lowered.get(STRIPE_SIGNATURE_HEADER), secret, tolerance)
        else:
            verify_lemonsqueezy_signature(body, lowered.get(LEMONSQUEEZY_SIGNATURE_HEADER), secret)
