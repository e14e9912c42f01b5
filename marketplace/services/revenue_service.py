"""Platform revenue reconciliation.

A period's record is computed entirely in memory from the orders created in
its window and then written with one upsert keyed on
(period_date, period_type). Re-running the job replaces the row; it never
appends or patches individual columns.
"""

import logging
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from marketplace.api.middleware.error_handler import ReconciliationError
from marketplace.core.config import get_settings
from marketplace.core.supabase import get_supabase_client
from marketplace.models.order import OrderStatus, PaymentHoldStatus
from marketplace.models.revenue import PeriodType

logger = logging.getLogger(__name__)

CALCULATION_METHOD = "automated"

# Columns compared when deciding whether a recalculation changed anything.
FIGURE_COLUMNS = (
    "gross_sales",
    "total_commissions",
    "stripe_fees",
    "refunds_issued",
    "chargebacks",
    "net_revenue",
    "order_count",
    "successful_order_count",
    "cancelled_order_count",
    "refunded_order_count",
    "seller_count",
    "buyer_count",
    "new_seller_count",
    "new_buyer_count",
)


def period_bounds(day: date, period_type: PeriodType) -> tuple[date, date]:
    """Return the [start, end) dates of the period containing day."""
    if period_type == PeriodType.DAILY:
        start = day
        end = date.fromordinal(day.toordinal() + 1)
    elif period_type == PeriodType.MONTHLY:
        start = day.replace(day=1)
        end = date(day.year + 1, 1, 1) if day.month == 12 else date(day.year, day.month + 1, 1)
    else:
        start = date(day.year, 1, 1)
        end = date(day.year + 1, 1, 1)
    return start, end


def _as_utc(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def estimate_gateway_fee(total_cents: int, percent: Decimal, fixed_cents: int) -> int:
    """Approximate the card processing fee for one captured order.

    This is a flat percentage-plus-fixed estimate, not the gateway's actual
    settlement figure.
    """
    variable = (Decimal(total_cents) * percent).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(variable) + fixed_cents


def summarize(
    orders: list[dict[str, Any]],
    fee_percent: Decimal,
    fee_fixed_cents: int,
) -> dict[str, int]:
    """Compute a period's figures from the orders created within it.

    Args:
        orders: Order rows in the period window.
        fee_percent: Gateway fee percentage per captured order.
        fee_fixed_cents: Gateway fixed fee per captured order.

    Returns:
        dict: Revenue figures in cents plus order, seller and buyer counts.
    """
    captured = [o for o in orders if o["payment_hold_status"] == PaymentHoldStatus.CAPTURED.value]
    refunded = [o for o in orders if o["payment_hold_status"] == PaymentHoldStatus.REFUNDED.value]
    cancelled = [o for o in orders if o["status"] == OrderStatus.CANCELLED.value]

    gross_sales = sum(o["total_amount"] for o in captured)
    total_commissions = sum(o["commission_amount"] for o in captured)
    stripe_fees = sum(
        estimate_gateway_fee(o["total_amount"], fee_percent, fee_fixed_cents) for o in captured
    )
    refunds_issued = sum(o["total_amount"] for o in refunded)

    return {
        "gross_sales": gross_sales,
        "total_commissions": total_commissions,
        "stripe_fees": stripe_fees,
        "refunds_issued": refunds_issued,
        "chargebacks": 0,
        "net_revenue": total_commissions - stripe_fees,
        "order_count": len(orders),
        "successful_order_count": len(captured),
        "cancelled_order_count": len(cancelled),
        "refunded_order_count": len(refunded),
        "seller_count": len({o["seller_id"] for o in captured}),
        "buyer_count": len({o["buyer_id"] for o in captured}),
    }


class RevenueService:
    """Service for aggregating orders into platform_revenue rows."""

    TABLE = "platform_revenue"

    def __init__(self) -> None:
        """Initialize revenue service with Supabase client."""
        self.client = get_supabase_client()
        self.settings = get_settings()

    async def get_record(self, period_date: date, period_type: PeriodType) -> dict[str, Any] | None:
        """Get the stored record for a period, if any."""
        response = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("period_date", period_date.isoformat())
            .eq("period_type", period_type.value)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    def _fetch_orders(self, start: date, end: date) -> list[dict[str, Any]]:
        response = (
            self.client.table("orders")
            .select("id, buyer_id, seller_id, total_amount, commission_amount, status, payment_hold_status")
            .gte("created_at", _as_utc(start).isoformat())
            .lt("created_at", _as_utc(end).isoformat())
            .execute()
        )
        return response.data or []

    def _count_signups(self, start: date, end: date, is_seller: bool) -> int:
        response = (
            self.client.table("profiles")
            .select("id", count="exact")
            .eq("is_seller", is_seller)
            .gte("created_at", _as_utc(start).isoformat())
            .lt("created_at", _as_utc(end).isoformat())
            .execute()
        )
        return response.count or 0

    async def reconcile(
        self,
        day: date | None = None,
        period_type: PeriodType = PeriodType.DAILY,
        recalculate: bool = False,
    ) -> tuple[dict[str, Any], bool]:
        """Compute and store the revenue record for the period containing day.

        Args:
            day: Any date in the period; defaults to yesterday (UTC).
            period_type: daily, monthly or yearly.
            recalculate: Overwrite an existing record instead of returning it.

        Returns:
            tuple: The stored record and whether a prior record was overwritten.

        Raises:
            ReconciliationError: If the stored record, order or profile reads
                fail. Nothing is written in that case and any prior record is
                left intact.
        """
        if day is None:
            day = date.fromordinal(datetime.now(timezone.utc).date().toordinal() - 1)
        start, end = period_bounds(day, period_type)

        try:
            existing = await self.get_record(start, period_type)
            if existing and not recalculate:
                logger.info("Revenue for %s %s already recorded", period_type.value, start)
                return existing, False

            orders = self._fetch_orders(start, end)
            new_sellers = self._count_signups(start, end, is_seller=True)
            new_buyers = self._count_signups(start, end, is_seller=False)
        except Exception as e:
            logger.error("Revenue aggregation for %s %s failed: %s", period_type.value, start, str(e))
            raise ReconciliationError(
                "Revenue data could not be read, no record was written",
                details=[{"period_date": start.isoformat(), "period_type": period_type.value}],
            ) from e

        figures = summarize(orders, self.settings.gateway_fee_percent, self.settings.gateway_fee_fixed_cents)
        figures["new_seller_count"] = new_sellers
        figures["new_buyer_count"] = new_buyers

        if existing and all(existing.get(column) == figures[column] for column in FIGURE_COLUMNS):
            recalculated_at = existing["recalculated_at"]
        else:
            recalculated_at = datetime.now(timezone.utc).isoformat()

        record = {
            "period_date": start.isoformat(),
            "period_type": period_type.value,
            **figures,
            "calculation_method": CALCULATION_METHOD,
            "recalculated_at": recalculated_at,
        }

        response = (
            self.client.table(self.TABLE)
            .upsert(record, on_conflict="period_date,period_type")
            .execute()
        )
        stored = response.data[0] if response.data else record

        logger.info(
            "Revenue for %s %s: %d orders, gross %d, commissions %d",
            period_type.value,
            start,
            figures["order_count"],
            figures["gross_sales"],
            figures["total_commissions"],
        )
        return stored, existing is not None
