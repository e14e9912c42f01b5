"""Order model type definitions and lifecycle transition tables."""

from datetime import datetime
from enum import Enum
from typing import TypedDict
from uuid import UUID


class OrderStatus(str, Enum):
    """Order fulfillment status values matching database enum."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    READY_FOR_PICKUP = "ready_for_pickup"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class PaymentHoldStatus(str, Enum):
    """Escrow hold status values matching database enum."""

    NONE = "none"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    REFUNDED = "refunded"


class FulfillmentMethod(str, Enum):
    """How the buyer receives the goods."""

    PICKUP = "pickup"
    SHIPPING = "shipping"


class ReleaseReason(str, Enum):
    """Why a hold is being captured."""

    SELLER_CONFIRM = "seller_confirm"
    BUYER_CONFIRM = "buyer_confirm"
    AUTO_TIMEOUT = "auto_timeout"


class ActorRole(str, Enum):
    """Standing of an actor relative to one order."""

    BUYER = "buyer"
    SELLER = "seller"
    SYSTEM = "system"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

# Every permitted edge of the order lifecycle. Edges into COMPLETED are only
# taken by escrow capture; fulfillment events never complete an order.
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.SHIPPED,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

HOLD_TRANSITIONS: dict[PaymentHoldStatus, frozenset[PaymentHoldStatus]] = {
    PaymentHoldStatus.NONE: frozenset({PaymentHoldStatus.AUTHORIZED}),
    PaymentHoldStatus.AUTHORIZED: frozenset({PaymentHoldStatus.CAPTURED, PaymentHoldStatus.REFUNDED}),
    PaymentHoldStatus.CAPTURED: frozenset(),
    PaymentHoldStatus.REFUNDED: frozenset(),
}

# Which actor roles may request capture for each reason.
RELEASE_AUTHORITY: dict[ReleaseReason, frozenset[ActorRole]] = {
    ReleaseReason.SELLER_CONFIRM: frozenset({ActorRole.SELLER}),
    ReleaseReason.BUYER_CONFIRM: frozenset({ActorRole.BUYER}),
    ReleaseReason.AUTO_TIMEOUT: frozenset({ActorRole.SYSTEM}),
}

REFUND_AUTHORITY: frozenset[ActorRole] = frozenset({ActorRole.BUYER, ActorRole.SELLER, ActorRole.SYSTEM})

# Holds may only be cancelled alongside the order when nothing is held.
CANCELLABLE_HOLD_STATUSES = frozenset({PaymentHoldStatus.NONE, PaymentHoldStatus.REFUNDED})

# Timestamp column stamped when an order enters a status.
STATUS_TIMESTAMP_FIELDS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.READY_FOR_PICKUP: "ready_for_pickup_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Check whether the lifecycle has an edge from current to target."""
    return target in ORDER_TRANSITIONS[current]


def statuses_leading_to(target: OrderStatus) -> list[OrderStatus]:
    """List every status with an edge into target, in declaration order."""
    return [status for status, targets in ORDER_TRANSITIONS.items() if target in targets]


def can_transition_hold(current: PaymentHoldStatus, target: PaymentHoldStatus) -> bool:
    """Check whether the hold may move from current to target."""
    return target in HOLD_TRANSITIONS[current]


class Order(TypedDict):
    """Order table row representation.

    Amounts are integer minor units (cents).
    """

    id: UUID
    buyer_id: UUID
    seller_id: UUID
    subtotal_amount: int
    discount_amount: int
    total_amount: int
    commission_amount: int
    currency: str
    fulfillment_method: FulfillmentMethod
    status: OrderStatus
    payment_hold_status: PaymentHoldStatus
    payment_hold_ref: str | None
    hold_authorized_at: datetime | None
    settlement_claim: str | None
    settlement_claimed_at: datetime | None
    released_by: UUID | None
    release_reason: ReleaseReason | None
    discount_code_id: UUID | None
    tracking_number: str | None
    carrier: str | None
    seller_notes: str | None
    created_at: datetime
    updated_at: datetime
    pickup_confirmed_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
