"""Administrative and scheduled job routes.

These are invoked by the platform scheduler with a service-role token, or
manually by an administrator.
"""

import logging

from fastapi import APIRouter

from marketplace.api.deps import AdminUser
from marketplace.schemas.revenue import (
    HoldExpiryResponse,
    ReconcileRequest,
    ReconcileResponse,
    ReminderDispatchResponse,
    RevenueRecord,
)
from marketplace.services.escrow_service import EscrowService
from marketplace.services.notification_service import NotificationService
from marketplace.services.revenue_service import RevenueService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/revenue/reconcile",
    response_model=ReconcileResponse,
    responses={503: {"description": "Order data could not be read; no record was written"}},
    summary="Reconcile platform revenue",
    description="Computes the revenue record for a period. Existing records are returned unless recalculate is set.",
)
async def reconcile_revenue(data: ReconcileRequest, user: AdminUser) -> ReconcileResponse:
    """Run revenue reconciliation for one period.

    Returns:
        ReconcileResponse: The stored record and whether a prior record was
            overwritten.
    """
    logger.info("Revenue reconciliation requested by %s", user.user_id)
    record, recalculated = await RevenueService().reconcile(
        day=data.day,
        period_type=data.period_type,
        recalculate=data.recalculate,
    )
    return ReconcileResponse(record=RevenueRecord(**record), recalculated=recalculated)


@router.post(
    "/escrow/expire-holds",
    response_model=HoldExpiryResponse,
    summary="Settle expired payment holds",
    description="Releases or refunds holds authorized longer than the configured maximum.",
)
async def expire_holds(user: AdminUser) -> HoldExpiryResponse:
    summary = await EscrowService().expire_stale_holds()
    return HoldExpiryResponse(**summary)


@router.post(
    "/reminders/dispatch",
    response_model=ReminderDispatchResponse,
    summary="Send due reminders",
)
async def dispatch_reminders(user: AdminUser) -> ReminderDispatchResponse:
    summary = await NotificationService().dispatch_due_reminders()
    return ReminderDispatchResponse(**summary)
