"""Read-only subscription endpoints for billing-display collaborators."""

from typing import List

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from billsync import schemas
from billsync.api import deps
from billsync.api.router import TrailingSlashRouter
from billsync.core.subscription_service import subscription_service

router = TrailingSlashRouter(dependencies=[Depends(deps.require_internal_api_key)])


@router.get("/{account_id}", response_model=schemas.SubscriptionInfo)
async def get_subscription(
    account_id: str,
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.SubscriptionInfo:
    """Get the current subscription record of an account.

    Args:
        account_id: Account ID
        db: Database session

    Returns:
        The record; version 0 and status `none` for accounts that never subscribed
    """
    return await subscription_service.get_subscription(db, account_id)


@router.get("/{account_id}/audit", response_model=List[schemas.AuditEntry])
async def list_audit_history(
    account_id: str,
    db: AsyncSession = Depends(deps.get_db),
) -> List[schemas.AuditEntry]:
    """List every accepted transition of an account, oldest first."""
    return await subscription_service.list_audit_history(db, account_id)
