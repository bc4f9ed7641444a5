"""Shared exceptions module.

Webhook failures are split by what the provider should do next. Only
`InfrastructureError` makes the provider redeliver; every other webhook error is
handled locally and acknowledged.
"""

from typing import Optional

from pydantic import ValidationError


class BillsyncException(Exception):
    """Base exception for billsync services."""

    def __init__(self, message: Optional[str] = None):
        """Create a new BillsyncException instance.

        Args:
        ----
            message (str, optional): The error message.

        """
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class NotFoundException(BillsyncException):
    """Exception raised when an object is not found."""

    def __init__(self, message: Optional[str] = "Object not found"):
        """Create a new NotFoundException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class WebhookError(BillsyncException):
    """Base class for errors raised while processing a provider webhook."""


class AuthenticationError(WebhookError):
    """Raised when a webhook signature is missing, invalid or outside the replay window."""

    def __init__(self, provider: str, message: Optional[str] = "Invalid webhook signature"):
        """Create a new AuthenticationError instance.

        Args:
        ----
            provider (str): The provider the request claimed to come from.
            message (str, optional): The error message. Has default message.

        """
        self.provider = provider
        super().__init__(message)


class DecodeError(WebhookError):
    """Raised when a verified payload cannot be turned into a normalized event."""

    def __init__(self, provider: str, message: Optional[str] = "Malformed webhook payload"):
        """Create a new DecodeError instance.

        Args:
        ----
            provider (str): The provider of the payload.
            message (str, optional): The error message. Has default message.

        """
        self.provider = provider
        super().__init__(message)


class OrphanAccountError(WebhookError):
    """Raised when an event cannot be resolved to exactly one account."""

    def __init__(self, account_ref: Optional[str], message: Optional[str] = None):
        """Create a new OrphanAccountError instance.

        Args:
        ----
            account_ref (str, optional): The account reference carried by the event.
            message (str, optional): Custom error message. If not provided, generates one.

        """
        self.account_ref = account_ref
        super().__init__(message or f"No unique account for reference {account_ref!r}")


class PolicyViolationError(WebhookError):
    """Raised when a provider tries to mutate an account owned by the other provider."""

    def __init__(
        self,
        account_id: Optional[str] = None,
        event_provider: Optional[str] = None,
        active_provider: Optional[str] = None,
        message: Optional[str] = None,
    ):
        """Create a new PolicyViolationError instance.

        Args:
        ----
            account_id (str, optional): The account the event targeted.
            event_provider (str, optional): The provider that sent the event.
            active_provider (str, optional): The provider that owns the account.
            message (str, optional): Custom error message. If not provided, generates one.

        """
        self.account_id = account_id
        self.event_provider = event_provider
        self.active_provider = active_provider
        if message is None:
            message = (
                f"Provider {event_provider} cannot modify account {account_id} "
                f"owned by {active_provider}"
            )
        super().__init__(message)


class InvalidTransitionError(PolicyViolationError):
    """Raised when an event asks for a status change the state machine does not allow."""

    def __init__(self, account_id: str, current_status: str, target_status: str):
        """Create a new InvalidTransitionError instance.

        Args:
        ----
            account_id (str): The account the event targeted.
            current_status (str): The recorded status.
            target_status (str): The status the event asked for.

        """
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            account_id=account_id,
            message=f"Transition {current_status} -> {target_status} is not allowed",
        )


class StaleTransitionError(WebhookError):
    """Raised when an event is older than the data already reflected by the record."""

    def __init__(self, account_id: str, event_time: str, recorded_time: str):
        """Create a new StaleTransitionError instance.

        Args:
        ----
            account_id (str): The account the event targeted.
            event_time (str): Provider time of the incoming event.
            recorded_time (str): Provider time of the event behind the current version.

        """
        self.account_id = account_id
        super().__init__(
            f"Event from {event_time} is older than recorded state from {recorded_time}"
        )


class InfrastructureError(WebhookError):
    """Raised when storage is unavailable, CAS retries are exhausted or the deadline passed.

    This is the only webhook error the provider sees as a failure, so that it redelivers.
    """

    def __init__(self, message: Optional[str] = "Infrastructure failure"):
        """Create a new InfrastructureError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


def unpack_validation_error(exc: ValidationError) -> dict:
    """Flatten a validation error into `{"errors": [{"<location>": "<message>"}, ...]}`."""
    return {
        "errors": [
            {".".join(str(part) for part in error["loc"]): error["msg"]}
            for error in exc.errors()
        ]
    }
