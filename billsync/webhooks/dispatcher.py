"""Webhook dispatcher.

Runs one delivery through verify -> decode -> ledger -> state machine and decides
what the provider hears back. Only infrastructure failures are reported as failures
(so the provider redelivers); everything else is acknowledged with a 200.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from billsync.core.config import settings
from billsync.core.exceptions import (
    AuthenticationError,
    DecodeError,
    InfrastructureError,
    OrphanAccountError,
    PolicyViolationError,
    StaleTransitionError,
    WebhookError,
)
from billsync.core.logging import ContextualLogger, logger
from billsync.core.shared_models import (
    DispatchOutcome,
    EventType,
    LedgerOutcome,
    PaymentProvider,
)
from billsync.schemas.events import NormalizedEvent
from billsync.webhooks.decoders import decode_event
from billsync.webhooks.ledger import IdempotencyLedger
from billsync.webhooks.signature import SignatureVerifier
from billsync.webhooks.state_machine import (
    SubscriptionStateMachine,
    TransitionResult,
    TransitionTracker,
)

STATUS_CODES = {
    DispatchOutcome.APPLIED: 200,
    DispatchOutcome.IGNORED: 200,
    DispatchOutcome.DUPLICATE_SKIPPED: 200,
    DispatchOutcome.REJECTED_STALE: 200,
    DispatchOutcome.ERROR: 200,
    DispatchOutcome.DECODE_ERROR: 200,
    DispatchOutcome.AUTHENTICATION_FAILED: 401,
    DispatchOutcome.INFRASTRUCTURE_ERROR: 503,
}


@dataclass(frozen=True)
class DispatchResult:
    """What the provider is told about one delivery."""

    outcome: DispatchOutcome
    event_id: Optional[str] = None
    detail: Optional[str] = None

    @property
    def status_code(self) -> int:
        """HTTP status code for the outcome."""
        return STATUS_CODES[self.outcome]

    @property
    def received(self) -> bool:
        """Whether the provider should consider the delivery done."""
        return self.status_code == 200


class _Delivery:
    """Progress of one delivery, readable after the processing deadline cancelled it."""

    def __init__(self) -> None:
        self.event: Optional[NormalizedEvent] = None
        self.reached_ledger = False
        self.claimed = False
        self.tracker = TransitionTracker()


class WebhookDispatcher:
    """Process provider webhook deliveries."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        verifier: Optional[SignatureVerifier] = None,
        ledger: Optional[IdempotencyLedger] = None,
        state_machine: Optional[SubscriptionStateMachine] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """Initialize the dispatcher.

        Args:
            session_factory: Opens a fresh session for each stage
            verifier: Signature verifier
            ledger: Idempotency ledger
            state_machine: Subscription state machine
            timeout_seconds: Processing deadline (defaults to the setting)
        """
        self.session_factory = session_factory
        self.verifier = verifier or SignatureVerifier()
        self.ledger = ledger or IdempotencyLedger()
        self.state_machine = state_machine or SubscriptionStateMachine(session_factory)
        self.timeout_seconds = timeout_seconds or settings.WEBHOOK_PROCESSING_TIMEOUT_SECONDS

        # Handled webhook errors: ledger outcome, dispatch outcome, error class for logs
        self.error_outcomes = {
            StaleTransitionError: (LedgerOutcome.REJECTED_STALE, DispatchOutcome.REJECTED_STALE),
            PolicyViolationError: (LedgerOutcome.ERROR, DispatchOutcome.ERROR),
            OrphanAccountError: (LedgerOutcome.ERROR, DispatchOutcome.ERROR),
        }

    async def dispatch(
        self, provider: PaymentProvider, body: bytes, headers: Mapping[str, str]
    ) -> DispatchResult:
        """Process one delivery.

        Args:
            provider: Provider whose endpoint received the delivery
            body: Raw request body, exactly as received
            headers: Request headers

        Returns:
            DispatchResult: Outcome, status code and event ID
        """
        log = logger.with_context(provider=provider.value)

        try:
            self.verifier.verify(provider, body, headers)
        except AuthenticationError as e:
            log.with_context(error_class="authentication").warning(
                f"Rejected webhook delivery: {e.message}"
            )
            return DispatchResult(DispatchOutcome.AUTHENTICATION_FAILED, detail=e.message)
        except InfrastructureError as e:
            log.with_context(error_class="infrastructure").error(e.message)
            return DispatchResult(DispatchOutcome.INFRASTRUCTURE_ERROR, detail=e.message)

        delivery = _Delivery()
        try:
            result = await asyncio.wait_for(
                self._process(provider, body, delivery, log), self.timeout_seconds
            )
        except asyncio.TimeoutError:
            result = await self._handle_infrastructure_failure(
                delivery,
                InfrastructureError(f"Processing exceeded {self.timeout_seconds}s deadline"),
                log,
            )
        except InfrastructureError as e:
            result = await self._handle_infrastructure_failure(delivery, e, log)
        except Exception as e:
            log.error(f"Unexpected error processing webhook: {e}", exc_info=True)
            result = await self._handle_infrastructure_failure(
                delivery, InfrastructureError(f"Unexpected error: {e}"), log
            )

        if delivery.reached_ledger:
            await self._record_delivery(delivery.event, result.outcome, log)
        return result

    async def _process(
        self,
        provider: PaymentProvider,
        body: bytes,
        delivery: _Delivery,
        log: ContextualLogger,
    ) -> DispatchResult:
        """Decode, claim and apply a verified delivery."""
        try:
            event = decode_event(provider, body)
        except DecodeError as e:
            log.with_context(error_class="decode").error(
                f"Data-quality alert, undecodable payload: {e.message}"
            )
            return DispatchResult(DispatchOutcome.DECODE_ERROR, detail=e.message)

        delivery.event = event
        log = log.with_context(event_id=event.event_id, event_type=event.provider_event_type)

        async with self.session_factory() as db:
            claim = await self.ledger.record_if_new(db, event)
        delivery.reached_ledger = True

        if not claim.is_new:
            log.info("Event already claimed, skipping duplicate delivery")
            return DispatchResult(DispatchOutcome.DUPLICATE_SKIPPED, event_id=event.event_id)
        delivery.claimed = True

        log.info(f"Processing webhook event: {event.provider_event_type}")
        try:
            transition = await self.state_machine.apply_event(event, delivery.tracker, log)
        except (StaleTransitionError, PolicyViolationError, OrphanAccountError) as e:
            return await self._handle_rejection(event, e, log)

        await self._finalize(event, LedgerOutcome.APPLIED, transition.account_id, None)

        if event.event_type == EventType.UNKNOWN:
            return DispatchResult(DispatchOutcome.IGNORED, event_id=event.event_id)
        return DispatchResult(DispatchOutcome.APPLIED, event_id=event.event_id)

    def _classify(self, error: WebhookError) -> tuple[LedgerOutcome, DispatchOutcome]:
        for error_type in type(error).__mro__:
            if error_type in self.error_outcomes:
                return self.error_outcomes[error_type]
        raise error

    async def _handle_rejection(
        self, event: NormalizedEvent, error: WebhookError, log: ContextualLogger
    ) -> DispatchResult:
        """Finalize an event the state machine refused, and acknowledge it."""
        ledger_outcome, outcome = self._classify(error)
        account_id = getattr(error, "account_id", None)
        log = log.with_context(account_id=account_id, error_class=type(error).__name__)

        if isinstance(error, StaleTransitionError):
            log.info(f"Rejected stale event: {error.message}")
        elif isinstance(error, OrphanAccountError):
            log.error(f"Needs manual reconciliation, no account for event: {error.message}")
        else:
            log.error(f"Needs investigation, event not applied: {error.message}")

        await self._finalize(event, ledger_outcome, account_id, error.message)
        return DispatchResult(outcome, event_id=event.event_id, detail=error.message)

    async def _finalize(
        self,
        event: NormalizedEvent,
        outcome: LedgerOutcome,
        account_id: Optional[str],
        error_message: Optional[str],
    ) -> None:
        async with self.session_factory() as db:
            await self.ledger.finalize(
                db, event, outcome, account_id=account_id, error_message=error_message
            )

    async def _handle_infrastructure_failure(
        self, delivery: _Delivery, error: InfrastructureError, log: ContextualLogger
    ) -> DispatchResult:
        """Decide the response after processing failed or ran out of time.

        A committed transition is acknowledged even if bookkeeping failed afterwards;
        otherwise the claim is released so the provider's retry can process the event.
        The deadline can fire after the database committed but before the commit
        returned, so the audit trail is consulted before giving up the claim.
        """
        event_id = delivery.event.event_id if delivery.event else None
        if delivery.event:
            log = log.with_context(event_id=event_id)

        if delivery.claimed and not delivery.tracker.committed:
            applied = await self._find_applied(delivery.event, log)
            if applied is not None:
                log.with_context(account_id=applied.account_id).warning(
                    f"Transition to version {applied.version} committed before the failure, "
                    f"acknowledging: {error.message}"
                )
                try:
                    await self._finalize(
                        delivery.event, LedgerOutcome.APPLIED, applied.account_id, None
                    )
                except InfrastructureError as finalize_error:
                    log.error(
                        f"Transition committed but ledger not finalized, "
                        f"left for reconciliation: {finalize_error.message}"
                    )
                return DispatchResult(DispatchOutcome.APPLIED, event_id=event_id)

        if delivery.tracker.committed:
            log.error(
                f"Transition committed but ledger not finalized, "
                f"left for reconciliation: {error.message}"
            )
            return DispatchResult(DispatchOutcome.APPLIED, event_id=event_id)

        log.with_context(error_class="infrastructure").error(
            f"Webhook processing failed, provider will retry: {error.message}"
        )
        if delivery.claimed:
            try:
                async with self.session_factory() as db:
                    await self.ledger.release(db, delivery.event)
            except InfrastructureError as release_error:
                log.error(
                    f"Could not release claim, left for reconciliation: {release_error.message}"
                )
        return DispatchResult(
            DispatchOutcome.INFRASTRUCTURE_ERROR, event_id=event_id, detail=error.message
        )

    async def _find_applied(
        self, event: NormalizedEvent, log: ContextualLogger
    ) -> Optional[TransitionResult]:
        # A failed lookup falls back to releasing; a redelivery still finds the audit entry
        try:
            return await self.state_machine.find_applied(event)
        except InfrastructureError as e:
            log.error(f"Could not check the audit trail before releasing: {e.message}")
            return None

    async def _record_delivery(
        self, event: NormalizedEvent, outcome: DispatchOutcome, log: ContextualLogger
    ) -> None:
        try:
            async with self.session_factory() as db:
                await self.ledger.record_delivery(db, event, outcome.value)
        except InfrastructureError as e:
            log.with_context(event_id=event.event_id).error(
                f"Could not log webhook delivery: {e.message}"
            )
