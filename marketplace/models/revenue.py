"""Platform revenue model type definitions."""

from datetime import date, datetime
from enum import Enum
from typing import TypedDict


class PeriodType(str, Enum):
    """Aggregation period granularity."""

    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PlatformRevenue(TypedDict):
    """platform_revenue table row, unique on (period_date, period_type).

    Money columns are integer cents.
    """

    period_date: date
    period_type: PeriodType
    gross_sales: int
    total_commissions: int
    stripe_fees: int
    refunds_issued: int
    chargebacks: int
    net_revenue: int
    order_count: int
    successful_order_count: int
    cancelled_order_count: int
    refunded_order_count: int
    seller_count: int
    buyer_count: int
    new_seller_count: int
    new_buyer_count: int
    calculation_method: str
    recalculated_at: datetime
