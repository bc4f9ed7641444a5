"""Payment provider selection by locale.

US users (locale `en`) are billed through Stripe. Every other locale goes through
LemonSqueezy, which acts as merchant of record. Both providers share the same tiers.
"""

from typing import Optional

from billsync.core.config import settings
from billsync.core.shared_models import PaymentProvider

STRIPE_LOCALES = frozenset({"en"})


def provider_for_locale(locale: Optional[str]) -> PaymentProvider:
    """Pick the checkout provider for a locale.

    Region suffixes are ignored (`en-US` and `en_GB` count as `en`). A missing locale
    falls back to DEFAULT_LOCALE.

    Args:
        locale: The user's active locale.

    Returns:
        PaymentProvider: STRIPE or LEMONSQUEEZY.
    """
    language = (locale or settings.DEFAULT_LOCALE).strip().lower().replace("_", "-")
    language = language.split("-", 1)[0]
    if language in STRIPE_LOCALES:
        return PaymentProvider.STRIPE
    return PaymentProvider.LEMONSQUEEZY
