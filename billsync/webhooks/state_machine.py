"""Subscription state machine.

Turns normalized events into transitions of an account's subscription record.
Planning a transition is pure (`plan_transition`); applying it is an optimistic
compare-and-swap on the record's `version`, written in the same transaction as the
audit entry, and retried from a fresh read when another transition got there first.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from billsync import crud, schemas
from billsync.core.config import settings
from billsync.core.exceptions import (
    InfrastructureError,
    InvalidTransitionError,
    PolicyViolationError,
    StaleTransitionError,
)
from billsync.core.logging import ContextualLogger, logger
from billsync.core.shared_models import (
    EventType,
    PaymentProvider,
    SubscriptionStatus,
    SubscriptionTier,
)
from billsync.db.unit_of_work import UnitOfWork
from billsync.schemas.events import NormalizedEvent
from billsync.webhooks.account_resolver import AccountResolver
from billsync.webhooks.audit import AuditTrailWriter

Status = SubscriptionStatus

_RUNNING_TARGETS = {
    Status.ACTIVE,
    Status.PAST_DUE,
    Status.ON_HOLD,
    Status.PAUSED,
    Status.CANCELLED,
}
_ENDED = {Status.NONE, Status.CANCELLED, Status.EXPIRED}

LEGAL_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    Status.NONE: frozenset({Status.TRIALING, Status.ACTIVE}),
    Status.TRIALING: frozenset({Status.TRIALING, Status.EXPIRED} | _RUNNING_TARGETS),
    Status.ACTIVE: frozenset({Status.EXPIRED} | _RUNNING_TARGETS),
    Status.PAST_DUE: frozenset({Status.EXPIRED} | _RUNNING_TARGETS),
    Status.ON_HOLD: frozenset({Status.EXPIRED} | _RUNNING_TARGETS),
    Status.PAUSED: frozenset({Status.ACTIVE, Status.PAUSED, Status.CANCELLED, Status.EXPIRED}),
    Status.CANCELLED: frozenset({Status.ACTIVE, Status.CANCELLED, Status.EXPIRED}),
    Status.EXPIRED: frozenset(),
}

# A cancelled subscription only comes back through an explicit resume in its grace period
_RESUME_EVENT_TYPES = frozenset({EventType.SUBSCRIPTION_RESUMED, EventType.SUBSCRIPTION_UPDATED})


class ConcurrentUpdateError(Exception):
    """Raised when the record changed between read and compare-and-swap."""


@dataclass(frozen=True)
class TransitionPlan:
    """What applying one event to one record would do."""

    account_id: str
    expected_version: int
    before: schemas.SubscriptionState
    after: schemas.SubscriptionState
    starts_new_relationship: bool

    @property
    def is_noop(self) -> bool:
        """Whether the event leaves the record exactly as it is."""
        return self.before == self.after


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of applying an event."""

    account_id: Optional[str]
    version: int
    changed: bool


class TransitionTracker:
    """Shared flag telling the caller whether the state transaction committed.

    The caller may be cancelled at any await; the flag is what decides whether the
    ledger claim can still be released.
    """

    def __init__(self) -> None:
        """Initialize the tracker."""
        self.committed = False


def _target_status(event: NormalizedEvent, current: SubscriptionStatus) -> SubscriptionStatus:
    event_type = event.event_type
    if event_type == EventType.CHECKOUT_COMPLETED:
        return Status.ACTIVE
    if event_type == EventType.SUBSCRIPTION_CREATED:
        return event.status_hint or Status.ACTIVE
    if event_type == EventType.SUBSCRIPTION_UPDATED:
        return event.status_hint or current
    if event_type == EventType.SUBSCRIPTION_CANCELLED:
        return Status.CANCELLED
    if event_type == EventType.SUBSCRIPTION_EXPIRED:
        return Status.EXPIRED
    if event_type == EventType.SUBSCRIPTION_PAUSED:
        return Status.PAUSED
    if event_type in (EventType.SUBSCRIPTION_RESUMED, EventType.PAYMENT_SUCCEEDED):
        return Status.ACTIVE
    if event_type == EventType.PAYMENT_FAILED:
        return Status.PAST_DUE
    raise ValueError(f"No transition for event type {event_type}")


def _target_tier(event: NormalizedEvent, current: SubscriptionTier) -> SubscriptionTier:
    if event.event_type == EventType.SUBSCRIPTION_EXPIRED:
        return SubscriptionTier.FREE
    if event.is_signup:
        # A signup is always for a paid plan, so FREE is never carried over
        if event.tier_hint:
            return event.tier_hint
        return current if current != SubscriptionTier.FREE else SubscriptionTier.PRO
    if event.event_type == EventType.SUBSCRIPTION_UPDATED:
        return event.tier_hint or current
    return current


def plan_transition(
    record: schemas.AccountSubscription, event: NormalizedEvent
) -> TransitionPlan:
    """Work out the transition an event asks for, without touching storage.

    Checks run in order: ownership, staleness, then legality of the status change.

    Args:
        record: Current record (version 0 when the account has none yet)
        event: The decoded event, not UNKNOWN

    Returns:
        TransitionPlan: Before and after states; `is_noop` when nothing changes

    Raises:
        PolicyViolationError: If another provider owns the account
        StaleTransitionError: If the owning provider already sent newer data
        InvalidTransitionError: If the status change is not allowed
    """
    current = record.state
    owner = current.active_provider
    starts_new = event.is_signup and current.status in _ENDED

    if owner not in (PaymentProvider.NONE, event.provider) and not starts_new:
        raise PolicyViolationError(
            account_id=record.account_id,
            event_provider=event.provider.value,
            active_provider=owner.value,
        )

    if (
        owner == event.provider
        and record.last_event_at is not None
        and event.provider_event_time < record.last_event_at
    ):
        raise StaleTransitionError(
            record.account_id,
            event.provider_event_time.isoformat(),
            record.last_event_at.isoformat(),
        )

    base = schemas.SubscriptionState(tier=current.tier) if starts_new else current
    from_status = base.status
    target_status = _target_status(event, from_status)

    if from_status == Status.NONE and not event.is_signup:
        raise InvalidTransitionError(record.account_id, from_status.value, target_status.value)
    if target_status not in LEGAL_TRANSITIONS[from_status]:
        raise InvalidTransitionError(record.account_id, from_status.value, target_status.value)
    if (
        from_status == Status.CANCELLED
        and target_status == Status.ACTIVE
        and event.event_type not in _RESUME_EVENT_TYPES
    ):
        raise InvalidTransitionError(record.account_id, from_status.value, target_status.value)

    if event.event_type == EventType.PAYMENT_FAILED:
        period_end = base.period_end
    else:
        period_end = event.period_end_hint or base.period_end

    after = schemas.SubscriptionState(
        active_provider=event.provider,
        provider_customer_ref=event.customer_ref or base.provider_customer_ref,
        provider_subscription_ref=event.subscription_ref or base.provider_subscription_ref,
        status=target_status,
        tier=_target_tier(event, base.tier),
        period_end=period_end,
    )

    return TransitionPlan(
        account_id=record.account_id,
        expected_version=record.version,
        before=current,
        after=after,
        starts_new_relationship=starts_new,
    )


class SubscriptionStateMachine:
    """Apply normalized events to subscription records."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        resolver: Optional[AccountResolver] = None,
        audit_writer: Optional[AuditTrailWriter] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        """Initialize the state machine.

        Args:
            session_factory: Opens a fresh session per attempt
            resolver: Account resolver
            audit_writer: Audit trail writer
            max_retries: Compare-and-swap attempts (defaults to the setting)
            backoff_seconds: Backoff multiplier between attempts (defaults to the setting)
        """
        self.session_factory = session_factory
        self.resolver = resolver or AccountResolver()
        self.audit_writer = audit_writer or AuditTrailWriter()
        self.max_retries = max_retries or settings.SUBSCRIPTION_CAS_MAX_RETRIES
        self.backoff_seconds = (
            backoff_seconds
            if backoff_seconds is not None
            else settings.SUBSCRIPTION_CAS_BACKOFF_SECONDS
        )

    async def apply_event(
        self,
        event: NormalizedEvent,
        tracker: Optional[TransitionTracker] = None,
        log: Optional[ContextualLogger] = None,
    ) -> TransitionResult:
        """Apply an event to the record of the account it belongs to.

        Args:
            event: The decoded event
            tracker: Set to committed once the transition is durable
            log: Contextual logger of the delivery

        Returns:
            TransitionResult: Resolved account, resulting version and whether it changed

        Raises:
            OrphanAccountError: If the event resolves to no single account
            PolicyViolationError: If the event's provider does not own the account
            StaleTransitionError: If the event is older than the recorded state
            InfrastructureError: If storage fails or the compare-and-swap keeps losing
        """
        log = log or logger
        tracker = tracker or TransitionTracker()

        if event.event_type == EventType.UNKNOWN:
            log.info(f"Ignoring unhandled event type {event.provider_event_type}")
            return TransitionResult(account_id=None, version=0, changed=False)

        try:
            async with self.session_factory() as db:
                account_id = await self.resolver.resolve(db, event)
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Account resolution failed: {e}") from e

        log = log.with_context(account_id=account_id)

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ConcurrentUpdateError),
            wait=wait_random_exponential(multiplier=self.backoff_seconds, max=1),
            stop=stop_after_attempt(self.max_retries),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(account_id, event, tracker, log)
        except ConcurrentUpdateError as e:
            raise InfrastructureError(
                f"Gave up on account {account_id} after {self.max_retries} conflicting updates"
            ) from e

    async def find_applied(self, event: NormalizedEvent) -> Optional[TransitionResult]:
        """Look up the transition an earlier delivery of this event committed.

        Returns:
            TransitionResult or None: The committed transition, None if there is none

        Raises:
            InfrastructureError: If the audit trail cannot be read
        """
        try:
            async with self.session_factory() as db:
                entry = await self.audit_writer.find_by_event(db, event)
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Audit lookup failed: {e}") from e
        if entry is None:
            return None
        return TransitionResult(account_id=entry.account_id, version=entry.version, changed=True)

    async def _attempt(
        self,
        account_id: str,
        event: NormalizedEvent,
        tracker: TransitionTracker,
        log: ContextualLogger,
    ) -> TransitionResult:
        """Read, plan and compare-and-swap once."""
        try:
            async with self.session_factory() as db:
                applied = await self.audit_writer.find_by_event(db, event)
                if applied is not None:
                    # Committed by a delivery whose acknowledgement was lost
                    tracker.committed = True
                    log.info(f"Event already applied at version {applied.version}")
                    return TransitionResult(
                        account_id=applied.account_id, version=applied.version, changed=False
                    )

                db_record = await crud.account_subscription.get_by_account(db, account_id)
                if db_record is None:
                    record = schemas.AccountSubscription(account_id=account_id)
                else:
                    record = schemas.AccountSubscription.model_validate(db_record)

                plan = plan_transition(record, event)
                if plan.is_noop:
                    async with UnitOfWork(db) as uow:
                        touched = await crud.account_subscription.touch_watermark(
                            db,
                            account_id=account_id,
                            expected_version=plan.expected_version,
                            event_time=event.provider_event_time,
                            event_id=event.event_id,
                            uow=uow,
                        )
                        if not touched:
                            raise ConcurrentUpdateError(account_id)
                    log.info(f"Event leaves account at version {record.version} unchanged")
                    return TransitionResult(
                        account_id=account_id, version=record.version, changed=False
                    )

                new_version = plan.expected_version + 1
                try:
                    async with UnitOfWork(db) as uow:
                        if plan.expected_version == 0:
                            swapped = await crud.account_subscription.insert_initial(
                                db,
                                account_id=account_id,
                                state=plan.after,
                                event_time=event.provider_event_time,
                                event_id=event.event_id,
                                uow=uow,
                            )
                        else:
                            swapped = await crud.account_subscription.compare_and_swap(
                                db,
                                account_id=account_id,
                                expected_version=plan.expected_version,
                                state=plan.after,
                                event_time=event.provider_event_time,
                                event_id=event.event_id,
                                uow=uow,
                            )
                        if not swapped:
                            raise ConcurrentUpdateError(account_id)

                        await self.audit_writer.append(
                            db,
                            account_id=account_id,
                            version=new_version,
                            before=plan.before,
                            after=plan.after,
                            event=event,
                            uow=uow,
                        )
                except IntegrityError as e:
                    # Another transition inserted the record or this version's entry first
                    raise ConcurrentUpdateError(account_id) from e
                tracker.committed = True
        except ConcurrentUpdateError:
            log.info(f"Account {account_id} changed concurrently, re-reading")
            raise
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Subscription update failed: {e}") from e

        log.info(
            f"Account moved {plan.before.status.value} -> {plan.after.status.value} "
            f"at version {new_version}"
        )
        return TransitionResult(account_id=account_id, version=new_version, changed=True)
