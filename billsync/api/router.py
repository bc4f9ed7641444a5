"""Router that answers on a path with and without its trailing slash.

Payment providers are configured with a fixed webhook URL, and a redirect on a
POST would drop the signed body. The app therefore disables slash redirects and
registers every route under both spellings instead.
"""

from typing import Any, Callable

from fastapi import APIRouter
from fastapi.types import DecoratedCallable


class TrailingSlashRouter(APIRouter):
    """APIRouter registering `/path` and `/path/` for every endpoint.

    Only the slash-less path is part of the OpenAPI schema:

        @router.post("/stripe")   # serves /webhooks/stripe and /webhooks/stripe/
        @router.get("")           # serves /health and /health/
    """

    def api_route(
        self, path: str, *, include_in_schema: bool = True, **kwargs: Any
    ) -> Callable[[DecoratedCallable], DecoratedCallable]:
        """Register the endpoint under both spellings of `path`.

        Args:
            path: Route path, with or without a trailing slash
            include_in_schema: Whether the slash-less route appears in the schema
            **kwargs: Passed through to `APIRouter.api_route`

        Returns:
            A decorator registering the endpoint twice
        """
        canonical = path.rstrip("/")
        register_canonical = super().api_route(
            canonical, include_in_schema=include_in_schema, **kwargs
        )
        register_slashed = super().api_route(canonical + "/", include_in_schema=False, **kwargs)

        def decorator(func: DecoratedCallable) -> DecoratedCallable:
            register_slashed(func)
            return register_canonical(func)

        return decorator
