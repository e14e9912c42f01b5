"""Administrative job schemas: reconciliation, hold expiry, reminders."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.revenue import PeriodType


class ReconcileRequest(BaseModel):
    """Schema for POST /admin/revenue/reconcile."""

    model_config = ConfigDict(populate_by_name=True)

    day: date | None = Field(default=None, alias="date", description="Any date in the period (defaults to yesterday)")
    period_type: PeriodType = Field(default=PeriodType.DAILY)
    recalculate: bool = Field(default=False, description="Overwrite an existing record")


class RevenueRecord(BaseModel):
    """A platform_revenue row. Money fields are in cents."""

    model_config = ConfigDict(from_attributes=True)

    period_date: date
    period_type: PeriodType
    gross_sales: int
    total_commissions: int
    stripe_fees: int = Field(description="Estimated gateway fees")
    refunds_issued: int
    chargebacks: int = 0
    net_revenue: int
    order_count: int
    successful_order_count: int = 0
    cancelled_order_count: int = 0
    refunded_order_count: int = 0
    seller_count: int
    buyer_count: int
    new_seller_count: int = 0
    new_buyer_count: int = 0
    calculation_method: str
    recalculated_at: datetime


class ReconcileResponse(BaseModel):
    record: RevenueRecord
    recalculated: bool = Field(description="Whether a prior record for the period was overwritten")


class HoldExpiryResponse(BaseModel):
    """Outcome counts of POST /admin/escrow/expire-holds."""

    released: int = 0
    refunded: int = 0
    skipped: int = Field(default=0, description="Settled concurrently by a buyer or seller")
    failed: int = Field(default=0, description="Gateway failures, retried on the next run")


class ReminderDispatchResponse(BaseModel):
    processed: int = 0
    sent: int = 0
    cancelled: int = 0
